"""Normalized plugin configuration — defaulted, path-expanded, immutable."""

import shlex
from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from heal_kernel.config.paths import expand_home

DEFAULT_MODEL_ORDER = [
    "anthropic/claude-opus-4-6",
    "openai-codex/gpt-5.2",
    "google-gemini-cli/gemini-2.5-flash",
]


class _FrozenConfig(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )


class AutoFixConfig(_FrozenConfig):
    """Toggles and thresholds for the corrective actions."""

    patch_session_pins: bool = True
    disable_failing_crons: bool = False
    disable_failing_plugins: bool = False
    restart_whatsapp_on_disconnect: bool = True
    whatsapp_disconnect_threshold: int = Field(ge=1, default=2)
    whatsapp_min_restart_interval_sec: int = Field(ge=0, default=300)
    cron_fail_threshold: int = Field(ge=1, default=3)
    issue_cooldown_sec: int = Field(ge=0, default=6 * 3600)
    plugin_disable_cooldown_sec: int = Field(ge=0, default=3600)
    issue_repo: str = "homeofe/openclaw-self-healing"
    issue_label: str = "security"


class CommandTemplates(_FrozenConfig):
    """
    Argv templates for host interactions. ``{placeholders}`` are filled per call.
    A plain string is split shell-style.
    """

    channel_status: List[str] = ["openclaw", "channels", "status", "--json"]
    gateway_restart: List[str] = ["openclaw", "gateway", "restart"]
    gateway_status: List[str] = ["openclaw", "gateway", "status"]
    cron_list: List[str] = ["openclaw", "cron", "list", "--json"]
    cron_disable: List[str] = ["openclaw", "cron", "edit", "{id}", "--disable"]
    model_probe: List[str] = ["openclaw", "models", "probe", "{model}"]
    issue_create: List[str] = [
        "gh", "issue", "create",
        "-R", "{repo}",
        "--title", "{title}",
        "--body", "{body}",
        "--label", "{label}",
    ]

    @field_validator("*", mode="before")
    @classmethod
    def _split_strings(cls, v):
        if isinstance(v, str):
            return shlex.split(v)
        return v


class NormalizedConfig(_FrozenConfig):
    """The defaulted, expanded view of raw plugin configuration."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        validate_default=True,
    )

    enabled: bool = True
    model_order: List[str] = Field(default_factory=lambda: list(DEFAULT_MODEL_ORDER))
    cooldown_minutes: float = Field(ge=0, default=300)
    state_file: str = "~/.openclaw/workspace/memory/self-heal-state.json"
    sessions_file: str = "~/.openclaw/agents/main/sessions/sessions.json"
    config_file: str = "~/.openclaw/openclaw.json"
    config_backups_dir: str = "~/.openclaw/backups/self-heal"
    auto_fix: AutoFixConfig = Field(default_factory=AutoFixConfig)
    probe_enabled: bool = True
    probe_interval_sec: int = Field(ge=0, default=300)
    dry_run: bool = False
    tick_interval_sec: float = Field(gt=0, default=60)
    commands: CommandTemplates = Field(default_factory=CommandTemplates)

    @field_validator("model_order", mode="before")
    @classmethod
    def _default_order(cls, v):
        if not v:
            return list(DEFAULT_MODEL_ORDER)
        return v

    @field_validator(
        "state_file", "sessions_file", "config_file", "config_backups_dir",
        mode="after",
    )
    @classmethod
    def _expand(cls, v: str) -> str:
        return expand_home(v)

    @field_validator("auto_fix", "commands", mode="before")
    @classmethod
    def _none_as_defaults(cls, v):
        return {} if v is None else v

    @property
    def preferred_model(self) -> str:
        return self.model_order[0]
