"""Tests for the channel, job and probe healers."""

import asyncio
import logging
from pathlib import Path

from conftest import make_plugin
from heal_kernel.models.events import EventType
from heal_kernel.models.state import CooldownEntry

NOW = 1_700_000_000

STATUS = ["openclaw", "channels", "status", "--json"]
RESTART = ["openclaw", "gateway", "restart"]
LIVENESS = ["openclaw", "gateway", "status"]
CRON_LIST = ["openclaw", "cron", "list", "--json"]
ISSUE = ["gh", "issue", "create"]


def _events(plugin, event_type):
    return [e for e in plugin.emitter.recent() if e.type is event_type]


def _whatsapp(connected: bool) -> dict:
    return {"channels": {"whatsapp": {"status": "connected" if connected else "disconnected"}}}


class TestChannelHealer:
    def _plugin(self, tmp_path, host, **overrides):
        plugin = make_plugin(tmp_path, host, **overrides)
        host.respond(LIVENESS, exit_code=0)
        return plugin

    def _seed(self, plugin, streak=0, last_restart_at=None):
        with plugin.store.transaction() as state:
            state.whatsapp.disconnect_streak = streak
            state.whatsapp.last_restart_at = last_restart_at

    def _run(self, plugin):
        return asyncio.run(plugin.monitor.channel_healer.run(now=NOW))

    def test_connected_resets_streak(self, tmp_path, host):
        plugin = self._plugin(tmp_path, host)
        self._seed(plugin, streak=1)
        host.respond(STATUS, stdout=_whatsapp(True))

        assert self._run(plugin) is None

        wa = plugin.store.load().whatsapp
        assert wa.disconnect_streak == 0
        assert wa.last_seen_connected_at == NOW

    def test_connected_flag_form(self, tmp_path, host):
        plugin = self._plugin(tmp_path, host)
        self._seed(plugin, streak=1)
        host.respond(STATUS, stdout={"channels": {"whatsapp": {"connected": True}}})
        self._run(plugin)
        assert plugin.store.load().whatsapp.disconnect_streak == 0

    def test_disconnect_below_threshold_only_counts(self, tmp_path, host):
        plugin = self._plugin(tmp_path, host)
        host.respond(STATUS, stdout=_whatsapp(False))

        assert self._run(plugin) is None

        assert plugin.store.load().whatsapp.disconnect_streak == 1
        assert not host.called(RESTART)

    def test_restart_at_threshold(self, tmp_path, host):
        plugin = self._plugin(tmp_path, host)
        self._seed(plugin, streak=1)
        host.respond(STATUS, stdout=_whatsapp(False))
        host.respond(RESTART, exit_code=0)

        assert self._run(plugin) == "restarted"

        assert host.called(RESTART)
        state = plugin.store.load()
        assert state.whatsapp.last_restart_at == NOW
        assert state.whatsapp.disconnect_streak == 0
        # backup taken before the restart and swept once the host answered
        assert state.pending_backups == {}
        assert list((tmp_path / "backups").iterdir()) == []

        events = _events(plugin, EventType.WHATSAPP_RESTART)
        assert len(events) == 1
        assert events[0].payload == {"disconnectStreak": 2, "dryRun": False}

    def test_backup_stays_pending_when_host_not_live(self, tmp_path, host):
        plugin = self._plugin(tmp_path, host)
        host.respond(LIVENESS, exit_code=1)
        self._seed(plugin, streak=1)
        host.respond(STATUS, stdout=_whatsapp(False))
        host.respond(RESTART, exit_code=0)

        self._run(plugin)

        assert len(plugin.store.load().pending_backups) == 1

    def test_streak_alone_is_not_enough(self, tmp_path, host):
        plugin = self._plugin(tmp_path, host)
        self._seed(plugin, streak=5, last_restart_at=NOW - 60)
        host.respond(STATUS, stdout=_whatsapp(False))

        assert self._run(plugin) is None

        assert not host.called(RESTART)
        wa = plugin.store.load().whatsapp
        assert wa.disconnect_streak == 6
        assert wa.last_restart_at == NOW - 60

    def test_elapsed_time_alone_is_not_enough(self, tmp_path, host):
        plugin = self._plugin(tmp_path, host, autoFix={"whatsappDisconnectThreshold": 3})
        self._seed(plugin, streak=0, last_restart_at=None)
        host.respond(STATUS, stdout=_whatsapp(False))

        assert self._run(plugin) is None
        assert not host.called(RESTART)

    def test_guardrail_blocks_restart(self, tmp_path, host, caplog):
        plugin = self._plugin(tmp_path, host)
        Path(plugin.config.current.config_file).write_text("{ not json")
        self._seed(plugin, streak=1, last_restart_at=NOW - 3600)
        host.respond(STATUS, stdout=_whatsapp(False))

        with caplog.at_level(logging.WARNING):
            assert self._run(plugin) == "blocked"

        assert not host.called(RESTART)
        wa = plugin.store.load().whatsapp
        assert wa.disconnect_streak == 2
        assert wa.last_restart_at == NOW - 3600
        assert plugin.store.load().pending_backups == {}
        assert _events(plugin, EventType.WHATSAPP_RESTART) == []
        assert any(r.levelno == logging.ERROR for r in caplog.records)
        assert "Restarting gateway" not in caplog.text

    def test_dry_run_advances_bookkeeping_only(self, tmp_path, host, caplog):
        plugin = self._plugin(tmp_path, host, dryRun=True)
        self._seed(plugin, streak=1)
        host.respond(STATUS, stdout=_whatsapp(False))

        with caplog.at_level(logging.WARNING):
            assert self._run(plugin) == "restarted"

        assert not host.called(RESTART)
        assert "would restart" in caplog.text
        wa = plugin.store.load().whatsapp
        assert wa.last_restart_at == NOW
        assert wa.disconnect_streak == 0
        assert plugin.store.load().pending_backups == {}
        events = _events(plugin, EventType.WHATSAPP_RESTART)
        assert [e.payload["dryRun"] for e in events] == [True]

    def test_status_failure_changes_nothing(self, tmp_path, host):
        plugin = self._plugin(tmp_path, host)
        self._seed(plugin, streak=1)
        host.respond(STATUS, exit_code=1, stderr="gateway down")

        assert self._run(plugin) is None
        assert plugin.store.load().whatsapp.disconnect_streak == 1

    def test_unparseable_status_changes_nothing(self, tmp_path, host):
        plugin = self._plugin(tmp_path, host)
        self._seed(plugin, streak=1)
        host.respond(STATUS, stdout="WhatsApp: linked")

        self._run(plugin)
        assert plugin.store.load().whatsapp.disconnect_streak == 1

    def test_disabled(self, tmp_path, host):
        plugin = self._plugin(tmp_path, host, autoFix={"restartWhatsappOnDisconnect": False})
        assert self._run(plugin) is None
        assert host.calls == []


def _jobs(*jobs) -> dict:
    return {"jobs": list(jobs)}


def _job(job_id="j1", name="nightly-digest", status="error", error="boom"):
    return {"id": job_id, "name": name, "state": {"lastStatus": status, "lastError": error}}


class TestJobHealer:
    def _plugin(self, tmp_path, host, auto_fix=None, **overrides):
        fix = {"disableFailingCrons": True}
        fix.update(auto_fix or {})
        plugin = make_plugin(tmp_path, host, autoFix=fix, **overrides)
        host.respond(LIVENESS, exit_code=0)
        host.respond(["openclaw", "cron", "edit"], exit_code=0)
        host.respond(ISSUE, exit_code=0)
        return plugin

    def _seed(self, plugin, count, last_issue_at=None, job_id="j1"):
        with plugin.store.transaction() as state:
            state.cron.fail_counts[job_id] = count
            if last_issue_at is not None:
                state.cron.last_issue_created_at[job_id] = last_issue_at

    def _run(self, plugin):
        return asyncio.run(plugin.monitor.job_healer.run(now=NOW))

    def test_success_resets_count(self, tmp_path, host):
        plugin = self._plugin(tmp_path, host)
        self._seed(plugin, 2)
        host.respond(CRON_LIST, stdout=_jobs(_job(status="ok")))

        assert self._run(plugin) == []
        assert plugin.store.load().cron.fail_counts["j1"] == 0

    def test_failure_below_threshold_counts(self, tmp_path, host):
        plugin = self._plugin(tmp_path, host)
        host.respond(CRON_LIST, stdout=_jobs(_job(), _job(job_id="j2", status="ok")))

        assert self._run(plugin) == []
        assert plugin.store.load().cron.fail_counts == {"j1": 1, "j2": 0}
        assert not host.called(["openclaw", "cron", "edit"])

    def test_threshold_disables_and_reports(self, tmp_path, host):
        plugin = self._plugin(tmp_path, host)
        self._seed(plugin, 2)
        host.respond(CRON_LIST, stdout=_jobs(_job()))

        assert self._run(plugin) == ["j1"]

        assert ["openclaw", "cron", "edit", "j1", "--disable"] in host.calls
        issue_calls = [c for c in host.calls if c[:3] == ISSUE]
        assert len(issue_calls) == 1
        body = issue_calls[0][issue_calls[0].index("--body") + 1]
        assert "nightly-digest" in body and "j1" in body and "Consecutive failures: 3" in body
        assert "Cron disabled: nightly-digest" in issue_calls[0]

        state = plugin.store.load()
        assert state.cron.fail_counts["j1"] == 0
        assert state.cron.last_issue_created_at["j1"] == NOW
        assert state.pending_backups == {}

        events = _events(plugin, EventType.CRON_DISABLED)
        assert len(events) == 1
        assert events[0].payload == {
            "cronId": "j1",
            "cronName": "nightly-digest",
            "consecutiveFailures": 3,
            "lastError": "boom",
            "dryRun": False,
        }

    def test_guardrail_blocks_disable_but_not_issue(self, tmp_path, host, caplog):
        plugin = self._plugin(tmp_path, host)
        Path(plugin.config.current.config_file).write_text("{")
        self._seed(plugin, 2)
        host.respond(CRON_LIST, stdout=_jobs(_job()))

        with caplog.at_level(logging.ERROR):
            self._run(plugin)

        assert not host.called(["openclaw", "cron", "edit"])
        assert host.called(ISSUE)
        assert _events(plugin, EventType.CRON_DISABLED) == []
        state = plugin.store.load()
        assert state.cron.fail_counts["j1"] == 0
        assert state.cron.last_issue_created_at["j1"] == NOW
        assert "refusing to disable cron j1" in caplog.text

    def test_issue_rate_limited(self, tmp_path, host):
        plugin = self._plugin(tmp_path, host)
        self._seed(plugin, 2, last_issue_at=NOW - 60)
        host.respond(CRON_LIST, stdout=_jobs(_job()))

        self._run(plugin)

        assert host.called(["openclaw", "cron", "edit"])
        assert not host.called(ISSUE)
        assert plugin.store.load().cron.last_issue_created_at["j1"] == NOW - 60

    def test_dry_run(self, tmp_path, host, caplog):
        plugin = self._plugin(tmp_path, host, dryRun=True)
        self._seed(plugin, 2)
        host.respond(CRON_LIST, stdout=_jobs(_job()))

        with caplog.at_level(logging.WARNING):
            self._run(plugin)

        assert not host.called(["openclaw", "cron", "edit"])
        assert not host.called(ISSUE)
        assert "would disable cron j1" in caplog.text
        state = plugin.store.load()
        assert state.cron.fail_counts["j1"] == 0
        assert state.cron.last_issue_created_at["j1"] == NOW
        assert [e.payload["dryRun"] for e in _events(plugin, EventType.CRON_DISABLED)] == [True]

    def test_last_error_truncated(self, tmp_path, host):
        plugin = self._plugin(tmp_path, host)
        self._seed(plugin, 2)
        host.respond(CRON_LIST, stdout=_jobs(_job(error="x" * 5000)))

        self._run(plugin)

        assert len(_events(plugin, EventType.CRON_DISABLED)[0].payload["lastError"]) == 1200

    def test_disable_failure_emits_nothing(self, tmp_path, host):
        plugin = self._plugin(tmp_path, host)
        host.respond(["openclaw", "cron", "edit"], exit_code=2, stderr="no such job")
        self._seed(plugin, 2)
        host.respond(CRON_LIST, stdout=_jobs(_job()))

        self._run(plugin)

        assert _events(plugin, EventType.CRON_DISABLED) == []
        assert plugin.store.load().cron.fail_counts["j1"] == 0

    def test_disabled_toggle(self, tmp_path, host):
        plugin = make_plugin(tmp_path, host)
        assert asyncio.run(plugin.monitor.job_healer.run(now=NOW)) == []
        assert host.calls == []


class TestRecoveryProber:
    def _plugin(self, tmp_path, host, **overrides):
        overrides.setdefault("probeIntervalSec", 300)
        return make_plugin(tmp_path, host, **overrides)

    def _cool(self, plugin, model, last_probe_at=None, hit_ago=400, remaining=600):
        with plugin.store.transaction() as state:
            state.limited[model] = CooldownEntry(
                last_hit_at=NOW - hit_ago,
                next_available_at=NOW + remaining,
                reason="429",
                last_probe_at=last_probe_at,
            )

    def _run(self, plugin):
        return asyncio.run(plugin.prober.run(now=NOW))

    def test_successful_probe_clears_cooldown(self, tmp_path, host):
        plugin = self._plugin(tmp_path, host)
        self._cool(plugin, "model-a")
        host.respond(["openclaw", "models", "probe", "model-a"], exit_code=0)

        assert self._run(plugin) == ["model-a"]

        assert "model-a" not in plugin.store.load().limited
        events = _events(plugin, EventType.MODEL_RECOVERED)
        assert [e.payload for e in events] == [{"model": "model-a", "isPreferred": True}]

    def test_fresh_hit_during_probe_keeps_cooldown(self, tmp_path, host):
        plugin = self._plugin(tmp_path, host)
        self._cool(plugin, "model-a")

        async def probe_while_throttled(argv, timeout_sec):
            plugin.signals.on_agent_end({"success": False, "error": "HTTP 429 rate limit"}, {})
            return {"exitCode": 0, "stdout": "", "stderr": ""}

        plugin.runner._host_command = probe_while_throttled

        assert self._run(plugin) == []

        entry = plugin.store.load().limited["model-a"]
        assert entry.last_hit_at != NOW - 400
        assert entry.reason == "HTTP 429 rate limit"
        assert _events(plugin, EventType.MODEL_RECOVERED) == []

    def test_recent_probe_is_skipped(self, tmp_path, host):
        plugin = self._plugin(tmp_path, host)
        self._cool(plugin, "model-a", last_probe_at=NOW - 60)
        host.respond(["openclaw", "models", "probe"], exit_code=0)

        assert self._run(plugin) == []

        assert host.calls == []
        assert plugin.store.load().limited["model-a"].last_probe_at == NOW - 60

    def test_failed_probe_records_attempt(self, tmp_path, host):
        plugin = self._plugin(tmp_path, host)
        self._cool(plugin, "model-a", last_probe_at=NOW - 301)
        host.respond(["openclaw", "models", "probe"], exit_code=1)

        assert self._run(plugin) == []

        entry = plugin.store.load().limited["model-a"]
        assert entry.last_probe_at == NOW
        assert entry.next_available_at == NOW + 600
        assert _events(plugin, EventType.MODEL_RECOVERED) == []

    def test_models_probed_independently(self, tmp_path, host):
        plugin = self._plugin(tmp_path, host)
        self._cool(plugin, "model-a")
        self._cool(plugin, "model-b")
        host.respond(["openclaw", "models", "probe", "model-a"], exit_code=1)
        host.respond(["openclaw", "models", "probe", "model-b"], exit_code=0)

        assert self._run(plugin) == ["model-b"]

        limited = plugin.store.load().limited
        assert limited["model-a"].last_probe_at == NOW
        assert "model-b" not in limited
        events = _events(plugin, EventType.MODEL_RECOVERED)
        assert [e.payload for e in events] == [{"model": "model-b", "isPreferred": False}]

    def test_probe_exception_does_not_stop_others(self, tmp_path, host):
        plugin = self._plugin(tmp_path, host)
        self._cool(plugin, "model-a")
        self._cool(plugin, "model-b")
        host.raise_on(["openclaw", "models", "probe", "model-a"], RuntimeError("spawn failed"))
        host.respond(["openclaw", "models", "probe", "model-b"], exit_code=0)

        assert self._run(plugin) == ["model-b"]
        assert plugin.store.load().limited["model-a"].last_probe_at == NOW

    def test_expired_cooldown_not_probed(self, tmp_path, host):
        plugin = self._plugin(tmp_path, host)
        self._cool(plugin, "model-a", remaining=-10, hit_ago=1000)
        assert self._run(plugin) == []
        assert host.calls == []

    def test_probing_disabled(self, tmp_path, host):
        plugin = self._plugin(tmp_path, host, probeEnabled=False)
        self._cool(plugin, "model-a")
        assert self._run(plugin) == []
        assert host.calls == []

    def test_dry_run_logs_intent_only(self, tmp_path, host, caplog):
        plugin = self._plugin(tmp_path, host, dryRun=True)
        self._cool(plugin, "model-a")

        with caplog.at_level(logging.INFO):
            assert self._run(plugin) == []

        assert host.calls == []
        assert "would probe model-a" in caplog.text
        assert plugin.store.load().limited["model-a"].last_probe_at is None
