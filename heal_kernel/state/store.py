"""
State Store — durable JSON persistence for HealState.

Behavioral Contract:
- load never raises. Missing, unreadable or malformed files yield an empty state.
- Absent sub-maps are back-filled so consumers never branch on presence.
- save writes a sibling temp file and renames it over the target, so a
  concurrent reader never observes a partial file.
- StateStore serializes every read-modify-write through one in-process lock.
  The lock is never held across an await.
"""

import json
import logging
import os
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from pydantic import ValidationError

from heal_kernel.models.state import HealState

logger = logging.getLogger(__name__)


def now_sec() -> int:
    """Current wall-clock time in whole epoch seconds."""
    return int(time.time())


def safe_json_parse(text: Optional[str]):
    """Parse JSON, returning None instead of raising."""
    if not text:
        return None
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError, ValueError):
        return None


def load_state(path: str) -> HealState:
    """Load state from disk, degrading to an empty state on any defect."""
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return HealState()
    except OSError as e:
        logger.warning("[self-heal] state file unreadable (%s): %s", path, e)
        return HealState()

    data = safe_json_parse(raw)
    if not isinstance(data, dict):
        logger.warning("[self-heal] state file is not a JSON object, starting empty: %s", path)
        return HealState()

    try:
        return HealState.model_validate(data)
    except ValidationError as e:
        logger.warning(
            "[self-heal] state file failed validation, starting empty: %s (%d errors)",
            path, e.error_count(),
        )
        return HealState()


def atomic_write_json(path: str, data, indent: Optional[int] = 2) -> None:
    """Write JSON via tmp file + fsync + os.replace()."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = target.parent / f".{target.name}.{os.getpid()}.{threading.get_ident()}.tmp"
    separators = None if indent is not None else (",", ":")
    content = json.dumps(data, indent=indent, separators=separators, ensure_ascii=False)
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(str(tmp_path), str(target))
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


def save_state(path: str, state: HealState) -> None:
    """Persist the full state atomically, creating parent directories."""
    atomic_write_json(path, state.to_json_dict())


class StateStore:
    """
    Single point of access to the state file.

    Signal handlers and the monitor tick both go through transaction(), so
    their read-modify-write cycles never interleave inside one process.
    """

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.RLock()

    def load(self) -> HealState:
        with self._lock:
            return load_state(self.path)

    def save(self, state: HealState) -> None:
        with self._lock:
            save_state(self.path, state)

    @contextmanager
    def transaction(self) -> Iterator[HealState]:
        """
        Load fresh state under the lock, yield it, and save on normal exit.
        Changes are discarded if the block raises.
        """
        with self._lock:
            state = load_state(self.path)
            yield state
            save_state(self.path, state)
