"""
Host registration — wires the kernel into an agent-hosting runtime.

The host talks to the kernel through plain function references: two
synchronous signal handlers and one background service with async
start/stop. Everything the kernel needs from the host is described by
HostApi.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol

from heal_kernel.config.manager import ConfigManager, parse_config
from heal_kernel.errors import ConfigError
from heal_kernel.events.emitter import EventEmitter
from heal_kernel.execution.runner import CommandRunner, run_subprocess
from heal_kernel.governance.guardrail import GuardrailManager
from heal_kernel.healers.channel import ChannelHealer
from heal_kernel.healers.jobs import JobHealer
from heal_kernel.healers.plugins import PluginHealer
from heal_kernel.healers.probe import RecoveryProber
from heal_kernel.models.events import HealEvent
from heal_kernel.reconciler.loop import SERVICE_ID, MonitorLoop
from heal_kernel.routing.fallback import active_cooldowns, pick_fallback
from heal_kernel.signals.handlers import SignalHandlers
from heal_kernel.state.store import StateStore, now_sec

logger = logging.getLogger(__name__)


class HostApi(Protocol):
    """What the kernel needs from the hosting runtime."""

    plugin_config: Any

    def on(self, event_name: str, handler: Callable[..., None]) -> None: ...

    def register_service(self, service: dict) -> None: ...

    def run_command_with_timeout(self, argv: list, timeout_sec: float) -> Awaitable[Any]: ...


def _config_source(host: Any) -> Callable[[], Optional[Mapping[str, Any]]]:
    """The host's plugin config, read anew on every call."""
    def source():
        raw = getattr(host, "plugin_config", None)
        return raw() if callable(raw) else raw
    return source


class SelfHealPlugin:
    """All collaborators for one registration. Nothing is module-global."""

    def __init__(
        self,
        config: ConfigManager,
        host_command: Callable[[list, float], Awaitable[Any]] = run_subprocess,
    ):
        self.config = config
        cfg = config.current
        self.store = StateStore(cfg.state_file)
        self.emitter = EventEmitter()
        self.runner = CommandRunner(host_command)
        self.guardrail = GuardrailManager(config, self.store, self.runner)
        self.signals = SignalHandlers(config, self.store, self.emitter)
        self.prober = RecoveryProber(config, self.store, self.runner, self.emitter)
        self.monitor = MonitorLoop(
            config=config,
            store=self.store,
            guardrail=self.guardrail,
            channel_healer=ChannelHealer(config, self.store, self.runner, self.guardrail, self.emitter),
            job_healer=JobHealer(config, self.store, self.runner, self.guardrail, self.emitter),
            plugin_healer=PluginHealer(config),
            prober=self.prober,
        )

    def service(self) -> dict:
        return {"id": SERVICE_ID, "start": self.monitor.start, "stop": self.monitor.stop}

    def status_snapshot(self, recent_limit: int = 20, now: Optional[int] = None) -> dict:
        """Current cooldowns, channel health and recent actions for inspection."""
        if now is None:
            now = now_sec()
        cfg = self.config.current
        state = self.store.load()
        return {
            "enabled": cfg.enabled,
            "dryRun": cfg.dry_run,
            "monitorRunning": self.monitor.running,
            "modelOrder": list(cfg.model_order),
            "preferredModel": cfg.model_order[0],
            "activeModel": pick_fallback(cfg.model_order, state, now),
            "cooldowns": {
                model: entry.model_dump(mode="json", by_alias=True, exclude_none=True)
                for model, entry in active_cooldowns(state, now).items()
            },
            "channel": state.whatsapp.model_dump(mode="json", by_alias=True),
            "jobs": state.cron.model_dump(mode="json", by_alias=True),
            "pendingBackups": {
                path: b.model_dump(mode="json", by_alias=True)
                for path, b in state.pending_backups.items()
            },
            "recentActions": [e.to_dict() for e in self.emitter.recent(recent_limit)],
        }


def register(host: HostApi) -> Optional[SelfHealPlugin]:
    """
    Register the self-heal kernel with a host.
    Returns None when the plugin is disabled or its config is unusable.
    """
    source = _config_source(host)
    try:
        initial = parse_config(source())
    except ConfigError as e:
        logger.error("[self-heal] not starting: %s", e)
        return None
    if not initial.enabled:
        return None

    host_command = getattr(host, "run_command_with_timeout", None) or run_subprocess
    plugin = SelfHealPlugin(ConfigManager(source, initial=initial), host_command)

    host_emit = getattr(host, "emit", None)
    if callable(host_emit):
        def forward(event: HealEvent) -> None:
            host_emit(event.type.value, event.payload)
        plugin.emitter.subscribe(forward)

    logger.info("[self-heal] enabled. order=%s", " -> ".join(initial.model_order))

    host.on("agent_end", plugin.signals.on_agent_end)
    host.on("message_sent", plugin.signals.on_message_sent)
    host.register_service(plugin.service())
    return plugin
