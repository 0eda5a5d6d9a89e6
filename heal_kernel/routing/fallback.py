"""Cooldown & Fallback Selector."""

from typing import Dict, Optional, Sequence

from heal_kernel.models.state import CooldownEntry, HealState
from heal_kernel.state.store import now_sec


def is_cooling_down(entry: Optional[CooldownEntry], now: int) -> bool:
    """A model is cooling down while its window has not elapsed."""
    return entry is not None and entry.next_available_at > now


def active_cooldowns(state: HealState, now: Optional[int] = None) -> Dict[str, CooldownEntry]:
    """Entries whose window is still open. Expired entries are ignored, not removed."""
    if now is None:
        now = now_sec()
    return {m: e for m, e in state.limited.items() if is_cooling_down(e, now)}


def pick_fallback(
    model_order: Sequence[str],
    state: HealState,
    now: Optional[int] = None,
) -> str:
    """
    Return the first model in preference order that is usable now.

    When every model is cooling down, the last (most downstream) model is
    returned rather than nothing.
    """
    if not model_order:
        raise ValueError("model_order must not be empty")
    if now is None:
        now = now_sec()

    for model in model_order:
        if not is_cooling_down(state.limited.get(model), now):
            return model
    return model_order[-1]

