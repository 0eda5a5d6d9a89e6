"""
Monitor Loop — the self-heal heartbeat.

Each tick:
  1. Reload configuration (hot-reload; cannot disable the loop)
  2. Channel-disconnect healer
  3. Job-failure healer
  4. Plugin-health healer (placeholder)
  5. Recovery probes for cooled-down models
  6. Sweep pending config backups

One tick runs immediately on start, then one per tick interval. Ticks never
overlap: the next wait begins only after the previous tick completes, and a
manually triggered tick waits for any tick already in flight.
Every step is isolated; a failing step is logged and the next one runs.
"""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Tuple

from heal_kernel.config.manager import ConfigManager
from heal_kernel.governance.guardrail import GuardrailManager
from heal_kernel.healers.channel import ChannelHealer
from heal_kernel.healers.jobs import JobHealer
from heal_kernel.healers.plugins import PluginHealer
from heal_kernel.healers.probe import RecoveryProber
from heal_kernel.state.store import StateStore

logger = logging.getLogger(__name__)

SERVICE_ID = "self-heal-monitor"


class MonitorLoop:
    """
    Owns the periodic task. One instance per registration.

    States:
      STOPPED → start() → RUNNING (tick, wait, tick, ...) → stop() → STOPPED
    """

    def __init__(
        self,
        config: ConfigManager,
        store: StateStore,
        guardrail: GuardrailManager,
        channel_healer: ChannelHealer,
        job_healer: JobHealer,
        plugin_healer: PluginHealer,
        prober: RecoveryProber,
    ):
        self.config = config
        self.store = store
        self.guardrail = guardrail
        self.channel_healer = channel_healer
        self.job_healer = job_healer
        self.plugin_healer = plugin_healer
        self.prober = prober

        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._tick_count = 0
        self._last_tick_at: Optional[datetime] = None
        self._tick_lock: Optional[asyncio.Lock] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def status(self) -> dict:
        return {
            "status": "running" if self.running else "stopped",
            "ticks": self._tick_count,
            "lastTickAt": self._last_tick_at.isoformat() if self._last_tick_at else None,
            "tickIntervalSec": self.config.current.tick_interval_sec,
        }

    def _steps(self) -> List[Tuple[str, Callable[[], Awaitable]]]:
        return [
            ("whatsapp", self.channel_healer.run),
            ("cron", self.job_healer.run),
            ("plugins", self.plugin_healer.run),
            ("probe", self.prober.run),
            ("backups", self._sweep_backups),
        ]

    async def tick(self) -> None:
        """Run one full monitoring cycle. Concurrent callers run one at a time."""
        if self._tick_lock is None:
            self._tick_lock = asyncio.Lock()
        async with self._tick_lock:
            await self._tick()

    async def _tick(self) -> None:
        self.config.reload()
        self._tick_count += 1
        self._last_tick_at = datetime.utcnow()
        if not self.config.current.enabled:
            logger.info("[self-heal] disabled; skipping tick")
            return

        for name, step in self._steps():
            try:
                await step()
            except Exception:
                logger.exception("[self-heal] monitor step %s failed", name)

    async def _sweep_backups(self) -> None:
        if self.store.load().pending_backups:
            await self.guardrail.cleanup_pending_backups("monitor tick")

    async def _run(self, stop_event: asyncio.Event) -> None:
        first = True
        while not stop_event.is_set():
            try:
                await self.tick()
            except Exception:
                logger.exception(
                    "[self-heal] monitor %s tick failed", "start" if first else "periodic"
                )
            first = False
            try:
                await asyncio.wait_for(
                    stop_event.wait(),
                    timeout=self.config.current.tick_interval_sec,
                )
            except asyncio.TimeoutError:
                continue

    async def start(self) -> None:
        """Start ticking. Calling start on a running loop is a no-op."""
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(self._stop_event), name=SERVICE_ID)
        logger.info(
            "[self-heal] monitor started (every %ss)", self.config.current.tick_interval_sec
        )

    async def stop(self) -> None:
        """Stop scheduling ticks. An in-flight tick is allowed to finish."""
        if self._task is None:
            return
        self._stop_event.set()
        task = self._task
        self._task = None
        await task
        logger.info("[self-heal] monitor stopped")
