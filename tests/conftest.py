"""Shared fixtures: a scripted host command capability and plugin builders."""

import json
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from heal_kernel.config.manager import ConfigManager
from heal_kernel.plugin import SelfHealPlugin


class FakeHost:
    """
    Scripted stand-in for the host runtime.

    Responses are matched by the longest argv prefix; unmatched commands fail
    like an unavailable CLI would.
    """

    def __init__(self, plugin_config: Optional[dict] = None):
        self.plugin_config = plugin_config if plugin_config is not None else {}
        self.calls: List[List[str]] = []
        self.handlers: Dict[str, list] = {}
        self.services: List[dict] = []
        self.emitted: List[Tuple[str, dict]] = []
        self._responses: Dict[tuple, object] = {}

    def respond(self, prefix, exit_code: int = 0, stdout="", stderr: str = "") -> None:
        if not isinstance(stdout, str):
            stdout = json.dumps(stdout)
        self._responses[tuple(prefix)] = {
            "exitCode": exit_code, "stdout": stdout, "stderr": stderr,
        }

    def raise_on(self, prefix, exc: BaseException) -> None:
        self._responses[tuple(prefix)] = exc

    async def run_command_with_timeout(self, argv, timeout_sec):
        self.calls.append(list(argv))
        for prefix in sorted(self._responses, key=len, reverse=True):
            if tuple(argv[:len(prefix)]) == prefix:
                resp = self._responses[prefix]
                if isinstance(resp, BaseException):
                    raise resp
                return resp
        return {"exitCode": 1, "stdout": "", "stderr": "not available"}

    def called(self, prefix) -> bool:
        return any(tuple(c[:len(prefix)]) == tuple(prefix) for c in self.calls)

    # host dispatcher surface
    def on(self, event_name, handler):
        self.handlers.setdefault(event_name, []).append(handler)

    def register_service(self, service):
        self.services.append(service)

    def emit(self, name, payload):
        self.emitted.append((name, payload))

    def fire(self, event_name, *args):
        for handler in self.handlers.get(event_name, []):
            handler(*args)


def make_raw_config(tmp_path: Path, **overrides) -> dict:
    """Raw plugin config with every file under tmp_path and a valid host config."""
    config_file = tmp_path / "openclaw.json"
    if not config_file.exists():
        config_file.write_text(json.dumps({"gateway": {"port": 18789}}))
    raw = {
        "modelOrder": ["model-a", "model-b", "model-c"],
        "cooldownMinutes": 10,
        "stateFile": str(tmp_path / "state" / "self-heal-state.json"),
        "sessionsFile": str(tmp_path / "sessions.json"),
        "configFile": str(config_file),
        "configBackupsDir": str(tmp_path / "backups"),
    }
    raw.update(overrides)
    return raw


def make_plugin(tmp_path: Path, host: FakeHost, **overrides) -> SelfHealPlugin:
    raw = make_raw_config(tmp_path, **overrides)
    host.plugin_config = raw
    return SelfHealPlugin(ConfigManager(lambda: host.plugin_config), host.run_command_with_timeout)


def write_sessions(tmp_path: Path, sessions: dict) -> Path:
    path = tmp_path / "sessions.json"
    path.write_text(json.dumps(sessions))
    return path


@pytest.fixture
def host():
    return FakeHost()
