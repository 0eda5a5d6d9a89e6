"""Heal events — one structured record per state-changing action."""

from enum import Enum
from typing import Dict, Optional, Type

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class EventType(str, Enum):
    MODEL_COOLDOWN = "model-cooldown"
    SESSION_PATCHED = "session-patched"
    WHATSAPP_RESTART = "whatsapp-restart"
    CRON_DISABLED = "cron-disabled"
    MODEL_RECOVERED = "model-recovered"


class _Payload(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )


class ModelCooldownPayload(_Payload):
    model: str
    reason: str
    cooldown_sec: int
    trigger: str
    dry_run: bool


class SessionPatchedPayload(_Payload):
    session_key: str
    old_model: Optional[str]
    new_model: str
    trigger: str
    dry_run: bool


class WhatsappRestartPayload(_Payload):
    disconnect_streak: int
    dry_run: bool


class CronDisabledPayload(_Payload):
    cron_id: str
    cron_name: str
    consecutive_failures: int
    last_error: str
    dry_run: bool


class ModelRecoveredPayload(_Payload):
    model: str
    is_preferred: bool


PAYLOAD_MODELS: Dict[EventType, Type[_Payload]] = {
    EventType.MODEL_COOLDOWN: ModelCooldownPayload,
    EventType.SESSION_PATCHED: SessionPatchedPayload,
    EventType.WHATSAPP_RESTART: WhatsappRestartPayload,
    EventType.CRON_DISABLED: CronDisabledPayload,
    EventType.MODEL_RECOVERED: ModelRecoveredPayload,
}


class HealEvent(BaseModel):
    """An emitted event. ``payload`` carries camelCase keys."""

    type: EventType
    payload: dict
    emitted_at: int

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "payload": self.payload,
            "emittedAt": self.emitted_at,
        }
