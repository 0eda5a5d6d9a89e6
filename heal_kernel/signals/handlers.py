"""
Signal handlers — synchronous entry points invoked by the host.

  agent_end     a turn finished; on a rate-limit or auth failure the model
                that served it is put on cooldown and the session re-pinned.
  message_sent  an outbound message leaked a raw rate-limit error; the
                preferred model is put on cooldown.

Handlers never raise into the host and never wait on the monitor tick.
"""

import logging
from typing import Any, Mapping, Optional

from heal_kernel.classifier.patterns import (
    FailureKind,
    classify_failure,
    is_auth_scope_like,
    is_rate_limit_like,
)
from heal_kernel.config.manager import ConfigManager
from heal_kernel.events.emitter import EventEmitter
from heal_kernel.models.events import EventType
from heal_kernel.models.state import CooldownEntry
from heal_kernel.routing.fallback import pick_fallback
from heal_kernel.sessions.store import get_pinned_model, patch_session_model
from heal_kernel.state.store import StateStore, now_sec

logger = logging.getLogger(__name__)

AUTH_PENALTY_MINUTES = 12 * 60
MAX_REASON_CHARS = 160
OUTBOUND_REASON = "outbound error observed"


def _get(obj: Any, key: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        return obj.get(key, default)
    return getattr(obj, key, default)


class SignalHandlers:
    def __init__(self, config: ConfigManager, store: StateStore, emitter: EventEmitter):
        self.config = config
        self.store = store
        self.emitter = emitter

    def on_agent_end(self, event: Any, ctx: Any = None) -> None:
        try:
            self._handle_agent_end(event, ctx)
        except Exception:
            logger.exception("[self-heal] agent_end handler failed")

    def on_message_sent(self, event: Any, ctx: Any = None) -> None:
        try:
            self._handle_message_sent(event, ctx)
        except Exception:
            logger.exception("[self-heal] message_sent handler failed")

    def _handle_agent_end(self, event: Any, ctx: Any, now: Optional[int] = None) -> None:
        if _get(event, "success") is not False:
            return
        error = _get(event, "error")
        error = str(error) if error is not None else None
        kind = classify_failure(error)
        if kind is FailureKind.NONE:
            return

        cfg = self.config.current
        if now is None:
            now = now_sec()
        session_key = _get(ctx, "sessionKey")
        pinned = get_pinned_model(cfg.sessions_file, session_key)
        model = pinned or cfg.model_order[0]

        minutes = cfg.cooldown_minutes
        if kind is FailureKind.AUTH_SCOPE:
            minutes += AUTH_PENALTY_MINUTES
        cooldown_sec = int(minutes * 60)

        self._apply_cooldown(model, error[:MAX_REASON_CHARS], cooldown_sec, "agent_end", now)
        self._repin(session_key, pinned, "agent_end", now)

    def _handle_message_sent(self, event: Any, ctx: Any, now: Optional[int] = None) -> None:
        content = str(_get(event, "content") or "")
        if not content:
            return
        if not is_rate_limit_like(content) and not is_auth_scope_like(content):
            return

        cfg = self.config.current
        if now is None:
            now = now_sec()
        session_key = _get(ctx, "sessionKey")
        pinned = get_pinned_model(cfg.sessions_file, session_key)

        self._apply_cooldown(
            cfg.model_order[0], OUTBOUND_REASON, int(cfg.cooldown_minutes * 60), "message_sent", now
        )
        self._repin(session_key, pinned, "message_sent", now)

    def _apply_cooldown(self, model: str, reason: str, cooldown_sec: int, trigger: str, now: int) -> None:
        with self.store.transaction() as state:
            state.limited[model] = CooldownEntry(
                last_hit_at=now,
                next_available_at=now + cooldown_sec,
                reason=reason,
            )
        logger.warning(
            "[self-heal] %s cooling down for %ds (%s): %s", model, cooldown_sec, trigger, reason
        )
        self.emitter.emit(
            EventType.MODEL_COOLDOWN,
            model=model,
            reason=reason,
            cooldown_sec=cooldown_sec,
            trigger=trigger,
            dry_run=self.config.current.dry_run,
        )

    def _repin(self, session_key: Optional[str], pinned: Optional[str], trigger: str, now: int) -> None:
        cfg = self.config.current
        if not cfg.auto_fix.patch_session_pins or not session_key:
            return

        fallback = pick_fallback(cfg.model_order, self.store.load(), now)
        if fallback == pinned:
            return

        if cfg.dry_run:
            logger.warning(
                "[self-heal] dry-run: would patch session %s: %s -> %s", session_key, pinned, fallback
            )
        elif not patch_session_model(cfg.sessions_file, session_key, fallback):
            return

        self.emitter.emit(
            EventType.SESSION_PATCHED,
            session_key=session_key,
            old_model=pinned,
            new_model=fallback,
            trigger=trigger,
            dry_run=cfg.dry_run,
        )
