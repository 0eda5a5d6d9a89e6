"""
Config Manager — normalization, diffing and hot-reload of plugin configuration.

Behavioral Contract:
- parse_config never aliases caller-owned storage (the raw mapping is deep-copied).
- A NormalizedConfig is never mutated; reload swaps it wholesale.
- Hot-reload cannot disable the system. Turning it off requires a restart.
- A failed reload leaves the previous configuration active.
"""

import copy
import logging
import threading
from typing import Any, Callable, List, Mapping, Optional

from pydantic import BaseModel, ValidationError
from pydantic.alias_generators import to_camel

from heal_kernel.errors import ConfigError
from heal_kernel.models.config import NormalizedConfig

logger = logging.getLogger(__name__)

ConfigSource = Callable[[], Optional[Mapping[str, Any]]]


def _drop_nulls(raw: Mapping[str, Any]) -> dict:
    """Null means "use the default", as with an absent key."""
    cleaned = {}
    for key, value in raw.items():
        if value is None:
            continue
        if isinstance(value, Mapping):
            value = _drop_nulls(value)
        cleaned[key] = value
    return cleaned


def parse_config(raw: Optional[Mapping[str, Any]]) -> NormalizedConfig:
    """Normalize raw plugin configuration, applying defaults for every field."""
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise ConfigError(f"plugin config must be a mapping, got {type(raw).__name__}")

    data = _drop_nulls(copy.deepcopy(dict(raw)))
    try:
        return NormalizedConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"invalid plugin config: {e}") from e


def diff_configs(a: NormalizedConfig, b: NormalizedConfig) -> List[str]:
    """
    Names of fields that differ between two configs.

    Nested sections are reported per field using the persisted names,
    e.g. ``autoFix.cronFailThreshold``. List comparison is order-sensitive.
    """
    return _diff_models(a, b, prefix="")


def _diff_models(a: BaseModel, b: BaseModel, prefix: str) -> List[str]:
    changed = []
    for name in type(a).model_fields:
        label = prefix + to_camel(name)
        va = getattr(a, name)
        vb = getattr(b, name)
        if isinstance(va, BaseModel) and isinstance(vb, BaseModel):
            changed.extend(_diff_models(va, vb, prefix=label + "."))
        elif va != vb:
            changed.append(label)
    return changed


class ConfigManager:
    """
    Holds the active NormalizedConfig and re-reads the raw source on reload().

    ``source`` is called anew on every reload, so a host that mutates its
    plugin config object is picked up on the next tick.
    """

    def __init__(self, source: ConfigSource, initial: Optional[NormalizedConfig] = None):
        self._source = source
        self._lock = threading.Lock()
        self._current = initial if initial is not None else parse_config(source())

    @property
    def current(self) -> NormalizedConfig:
        return self._current

    def reload(self) -> List[str]:
        """
        Re-parse the source and adopt it if it changed.
        Returns the changed field names (empty when nothing was adopted).
        """
        try:
            candidate = parse_config(self._source())
        except ConfigError as e:
            logger.warning("[self-heal] config reload rejected, keeping previous config: %s", e)
            return []
        except Exception as e:
            logger.warning("[self-heal] config source failed, keeping previous config: %s", e)
            return []

        if not candidate.enabled:
            logger.warning(
                "[self-heal] config reload would disable self-heal; ignored "
                "(restart the host to turn it off)"
            )
            return []

        with self._lock:
            changed = diff_configs(self._current, candidate)
            if changed:
                self._current = candidate
        if changed:
            logger.info("[self-heal] config reloaded, changed: %s", ", ".join(changed))
        return changed
