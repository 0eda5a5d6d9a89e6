"""
Recovery Probe Scheduler — early release of cooled-down models.

Each cooling model is probed at most once per probe interval. A successful
probe deletes the cooldown entry; a failed one only records the attempt.
An entry hit again while its probe was in flight is left as it is.
Models are probed independently within a tick.
"""

import logging
from typing import List, Optional

from heal_kernel.config.manager import ConfigManager
from heal_kernel.events.emitter import EventEmitter
from heal_kernel.execution.runner import CommandRunner
from heal_kernel.models.events import EventType
from heal_kernel.routing.fallback import active_cooldowns
from heal_kernel.state.store import StateStore, now_sec

logger = logging.getLogger(__name__)

PROBE_TIMEOUT_SEC = 30.0


class RecoveryProber:
    def __init__(
        self,
        config: ConfigManager,
        store: StateStore,
        runner: CommandRunner,
        emitter: EventEmitter,
    ):
        self.config = config
        self.store = store
        self.runner = runner
        self.emitter = emitter

    async def run(self, now: Optional[int] = None) -> List[str]:
        """Probe every due model. Returns the models that recovered."""
        cfg = self.config.current
        if not cfg.probe_enabled:
            return []
        if now is None:
            now = now_sec()

        recovered = []
        for model, entry in active_cooldowns(self.store.load(), now).items():
            if entry.last_probe_at is not None and now - entry.last_probe_at < cfg.probe_interval_sec:
                continue
            if cfg.dry_run:
                logger.info("[self-heal] dry-run: would probe %s for early recovery", model)
                continue
            if await self._probe(model, entry.last_hit_at, now):
                recovered.append(model)
        return recovered

    async def _probe(self, model: str, hit_at: int, now: int) -> bool:
        cfg = self.config.current
        result = await self.runner.run_template(
            cfg.commands.model_probe, PROBE_TIMEOUT_SEC, model=model
        )

        with self.store.transaction() as state:
            entry = state.limited.get(model)
            if entry is None or entry.last_hit_at != hit_at:
                # Cleared or hit again while the probe was in flight.
                return False
            if not result.ok:
                entry.last_probe_at = now
                return False
            del state.limited[model]

        is_preferred = model == cfg.model_order[0]
        logger.info(
            "[self-heal] %s recovered early (probe ok)%s",
            model, "; preferred model is available again" if is_preferred else "",
        )
        self.emitter.emit(EventType.MODEL_RECOVERED, model=model, is_preferred=is_preferred)
        return True
