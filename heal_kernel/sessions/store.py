"""
Session Store — minimal read/patch contract over the host's session pin file.

The file is a JSON object keyed by session key; each record carries a
``model`` field. Everything else in a record is preserved untouched.
"""

import json
import logging
from pathlib import Path
from typing import Optional

from heal_kernel.state.store import atomic_write_json

logger = logging.getLogger(__name__)


def read_sessions(path: str) -> dict:
    """Best-effort read. Unreadable or malformed files read as empty."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def get_pinned_model(path: str, session_key: Optional[str]) -> Optional[str]:
    """The model a session is pinned to, if it can be determined."""
    if not session_key:
        return None
    record = read_sessions(path).get(session_key)
    if not isinstance(record, dict):
        return None
    model = record.get("model")
    return model if isinstance(model, str) and model else None


def patch_session_model(path: str, session_key: str, model: str) -> bool:
    """
    Re-pin a session to ``model``.
    Returns False when the key is absent or the file cannot be read or written.
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(data, dict) or not isinstance(data.get(session_key), dict):
            return False
        previous = data[session_key].get("model")
        data[session_key]["model"] = model
        atomic_write_json(path, data, indent=None)
    except (OSError, ValueError) as e:
        logger.error("[self-heal] failed to patch session model: %s", e)
        return False

    logger.warning("[self-heal] patched session model: %s %s -> %s", session_key, previous, model)
    return True
