"""Persisted self-heal state — cooldowns, channel health, job and plugin health, pending backups."""

from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

STATE_VERSION = 1


class _StateModel(BaseModel):
    """
    Persisted with camelCase keys, addressed with snake_case attributes.
    Keys written by newer versions are carried through load and save.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )


class CooldownEntry(_StateModel):
    """A model that is treated as unavailable until next_available_at."""

    last_hit_at: int
    next_available_at: int
    reason: str = ""
    last_probe_at: Optional[int] = None

    @model_validator(mode="after")
    def _clamp_window(self) -> "CooldownEntry":
        if self.next_available_at < self.last_hit_at:
            self.next_available_at = self.last_hit_at
        return self


class ChannelHealth(_StateModel):
    """Messaging channel (WhatsApp) connectivity bookkeeping."""

    last_seen_connected_at: Optional[int] = None
    last_restart_at: Optional[int] = None
    disconnect_streak: int = Field(ge=0, default=0)


class JobHealth(_StateModel):
    """Per scheduled job: consecutive failures and last issue report time."""

    fail_counts: Dict[str, int] = {}
    last_issue_created_at: Dict[str, int] = {}


class PluginHealth(_StateModel):
    """Per plugin disable timestamps. Carried for schema compatibility only."""

    last_disable_at: Dict[str, int] = {}


class PendingBackup(_StateModel):
    """A host config snapshot not yet confirmed safe to delete."""

    created_at: int
    reason: str = ""


class HealState(_StateModel):
    """Aggregate root persisted to the state file."""

    version: int = STATE_VERSION
    limited: Dict[str, CooldownEntry] = {}
    whatsapp: ChannelHealth = Field(default_factory=ChannelHealth)
    cron: JobHealth = Field(default_factory=JobHealth)
    plugins: PluginHealth = Field(default_factory=PluginHealth)
    pending_backups: Dict[str, PendingBackup] = {}

    @field_validator(
        "limited", "whatsapp", "cron", "plugins", "pending_backups", mode="before"
    )
    @classmethod
    def _null_as_empty(cls, v):
        # Older writers store null for sub-maps they never touched.
        return {} if v is None else v

    def to_json_dict(self) -> dict:
        """Serialize with persisted (camelCase) keys."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
