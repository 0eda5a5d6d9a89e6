"""Self-heal kernel data models."""

from heal_kernel.models.config import (
    DEFAULT_MODEL_ORDER,
    AutoFixConfig,
    CommandTemplates,
    NormalizedConfig,
)
from heal_kernel.models.events import EventType, HealEvent
from heal_kernel.models.execution import CommandResult
from heal_kernel.models.state import (
    ChannelHealth,
    CooldownEntry,
    HealState,
    JobHealth,
    PendingBackup,
    PluginHealth,
)

__all__ = [
    "AutoFixConfig",
    "ChannelHealth",
    "CommandResult",
    "CommandTemplates",
    "CooldownEntry",
    "DEFAULT_MODEL_ORDER",
    "EventType",
    "HealEvent",
    "HealState",
    "JobHealth",
    "NormalizedConfig",
    "PendingBackup",
    "PluginHealth",
]
