"""
Guardrail & Backup Manager — the gate in front of every disruptive action.

Behavioral Contract:
- Never perform a disruptive action (gateway restart, job disable) while the
  host's critical config file is known to be broken. Acting on a broken
  config produces restart loops.
- Snapshot the config before each disruptive action and record the snapshot
  as pending in state.
- Delete pending snapshots only once the config parses AND the host answers
  a liveness check. A crash between backup and cleanup leaves the snapshot
  pending; the next successful sweep removes it.
"""

import json
import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

from heal_kernel.config.manager import ConfigManager
from heal_kernel.errors import BackupError
from heal_kernel.execution.runner import CommandRunner
from heal_kernel.models.state import PendingBackup
from heal_kernel.state.store import StateStore, now_sec

logger = logging.getLogger(__name__)

LIVENESS_TIMEOUT_SEC = 15.0


def _backup_path(backups_dir: Path, config_file: Path, at: int) -> Path:
    stamp = datetime.fromtimestamp(at, tz=timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    candidate = backups_dir / f"{config_file.name}.{stamp}.bak"
    suffix = 1
    while candidate.exists():
        candidate = backups_dir / f"{config_file.name}.{stamp}-{suffix}.bak"
        suffix += 1
    return candidate


class GuardrailManager:
    """Config validity gate, pre-action backups and the backup sweep."""

    def __init__(
        self,
        config: ConfigManager,
        store: StateStore,
        runner: CommandRunner,
    ):
        self.config = config
        self.store = store
        self.runner = runner

    def is_config_valid(self) -> Tuple[bool, Optional[str]]:
        """The host config is valid when it can be read and parsed as JSON."""
        path = self.config.current.config_file
        try:
            with open(path, "r", encoding="utf-8") as f:
                json.load(f)
        except (OSError, ValueError) as e:
            return False, str(e)
        return True, None

    def check(self, action: str) -> bool:
        """Gate a disruptive action. Logs an error and returns False when blocked."""
        ok, error = self.is_config_valid()
        if not ok:
            logger.error(
                "[self-heal] refusing to %s: host config %s is invalid (%s)",
                action, self.config.current.config_file, error,
            )
        return ok

    def backup_config(self, reason: str, now: Optional[int] = None) -> str:
        """
        Copy the host config to a timestamped file and record it as pending.
        Raises BackupError if the copy fails.
        """
        if now is None:
            now = now_sec()
        cfg = self.config.current
        source = Path(cfg.config_file)
        backups_dir = Path(cfg.config_backups_dir)

        try:
            backups_dir.mkdir(parents=True, exist_ok=True)
            target = _backup_path(backups_dir, source, now)
            shutil.copy2(source, target)
        except OSError as e:
            raise BackupError(f"could not back up {source}: {e}") from e

        with self.store.transaction() as state:
            state.pending_backups[str(target)] = PendingBackup(created_at=now, reason=reason)

        logger.info("[self-heal] backed up host config to %s (%s)", target, reason)
        return str(target)

    async def cleanup_pending_backups(self, where: str) -> List[str]:
        """
        Delete pending backups once the host is confirmed healthy.
        Returns the paths removed from state.
        """
        if not self.store.load().pending_backups:
            return []

        ok, error = self.is_config_valid()
        if not ok:
            logger.warning(
                "[self-heal] keeping config backups (%s): host config invalid (%s)", where, error
            )
            return []

        live = await self.runner.run(
            self.config.current.commands.gateway_status, LIVENESS_TIMEOUT_SEC
        )
        if not live.ok:
            logger.warning(
                "[self-heal] keeping config backups (%s): host liveness check failed", where
            )
            return []

        removed = []
        with self.store.transaction() as state:
            for path in list(state.pending_backups):
                try:
                    Path(path).unlink(missing_ok=True)
                except OSError as e:
                    logger.warning("[self-heal] could not delete backup %s: %s", path, e)
                    continue
                del state.pending_backups[path]
                removed.append(path)

        if removed:
            logger.info("[self-heal] removed %d config backup(s) (%s)", len(removed), where)
        return removed
