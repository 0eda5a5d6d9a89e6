"""
Channel-Disconnect Healer — streak-based detection and guarded gateway restart.

A restart needs BOTH a disconnect streak at threshold AND enough time since
the last restart. Either condition alone is not enough; together they keep a
flapping channel from causing a restart storm.
"""

import logging
from typing import Any, Optional

from heal_kernel.config.manager import ConfigManager
from heal_kernel.errors import BackupError
from heal_kernel.events.emitter import EventEmitter
from heal_kernel.execution.runner import CommandRunner
from heal_kernel.governance.guardrail import GuardrailManager
from heal_kernel.models.events import EventType
from heal_kernel.state.store import StateStore, now_sec, safe_json_parse

logger = logging.getLogger(__name__)

STATUS_TIMEOUT_SEC = 15.0
RESTART_TIMEOUT_SEC = 60.0


def is_whatsapp_connected(status: Any) -> bool:
    """Interpret ``channels status --json`` output for the WhatsApp channel."""
    if not isinstance(status, dict):
        return False
    channels = status.get("channels")
    wa = channels.get("whatsapp") if isinstance(channels, dict) else None
    if not isinstance(wa, dict):
        return False
    return wa.get("status") == "connected" or wa.get("connected") is True


class ChannelHealer:
    def __init__(
        self,
        config: ConfigManager,
        store: StateStore,
        runner: CommandRunner,
        guardrail: GuardrailManager,
        emitter: EventEmitter,
    ):
        self.config = config
        self.store = store
        self.runner = runner
        self.guardrail = guardrail
        self.emitter = emitter

    async def run(self, now: Optional[int] = None) -> Optional[str]:
        """
        One observation of the channel.
        Returns "restarted", "blocked" or None when no restart was due.
        """
        cfg = self.config.current
        if not cfg.auto_fix.restart_whatsapp_on_disconnect:
            return None
        if now is None:
            now = now_sec()

        result = await self.runner.run(cfg.commands.channel_status, STATUS_TIMEOUT_SEC)
        if not result.ok:
            logger.warning("[self-heal] channel status unavailable: %s", result.stderr.strip()[:200])
            return None
        status = safe_json_parse(result.stdout)
        if not isinstance(status, dict):
            logger.warning("[self-heal] channel status output is not JSON; skipping")
            return None

        with self.store.transaction() as state:
            wa = state.whatsapp
            if is_whatsapp_connected(status):
                wa.last_seen_connected_at = now
                wa.disconnect_streak = 0
                return None

            wa.disconnect_streak += 1
            streak = wa.disconnect_streak
            since_restart = now - (wa.last_restart_at or 0)

        threshold = cfg.auto_fix.whatsapp_disconnect_threshold
        if streak < threshold or since_restart < cfg.auto_fix.whatsapp_min_restart_interval_sec:
            return None

        if not self.guardrail.check("restart gateway"):
            return "blocked"
        logger.warning(
            "[self-heal] WhatsApp appears disconnected (streak=%d). Restarting gateway.", streak
        )

        if cfg.dry_run:
            logger.warning(
                "[self-heal] dry-run: would restart gateway: %s",
                " ".join(cfg.commands.gateway_restart),
            )
        else:
            try:
                self.guardrail.backup_config("whatsapp-restart", now=now)
            except BackupError as e:
                logger.error("[self-heal] refusing to restart gateway without a backup: %s", e)
                return "blocked"
            restart = await self.runner.run(cfg.commands.gateway_restart, RESTART_TIMEOUT_SEC)
            if not restart.ok:
                logger.error(
                    "[self-heal] gateway restart failed (exit=%s): %s",
                    restart.exit_code, restart.stderr.strip()[:200],
                )
            await self.guardrail.cleanup_pending_backups("after gateway restart")

        with self.store.transaction() as state:
            state.whatsapp.last_restart_at = now
            state.whatsapp.disconnect_streak = 0

        self.emitter.emit(
            EventType.WHATSAPP_RESTART,
            disconnect_streak=streak,
            dry_run=cfg.dry_run,
        )
        return "restarted"
