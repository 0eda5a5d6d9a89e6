"""
Job-Failure Healer — consecutive-failure detection, guarded disable, issue reports.

Issue reporting is rate-limited on its own clock and is not gated by the
guardrail, so a failing job stays visible even while disabling is blocked.
"""

import logging
from typing import List, Optional

from heal_kernel.config.manager import ConfigManager
from heal_kernel.errors import BackupError
from heal_kernel.events.emitter import EventEmitter
from heal_kernel.execution.runner import CommandRunner, render_argv
from heal_kernel.governance.guardrail import GuardrailManager
from heal_kernel.models.events import EventType
from heal_kernel.state.store import StateStore, now_sec, safe_json_parse

logger = logging.getLogger(__name__)

LIST_TIMEOUT_SEC = 15.0
DISABLE_TIMEOUT_SEC = 15.0
ISSUE_TIMEOUT_SEC = 20.0
MAX_ERROR_EXCERPT = 1200


def parse_jobs(stdout: str) -> List[dict]:
    """Jobs from ``cron list --json``; anything unexpected reads as no jobs."""
    parsed = safe_json_parse(stdout)
    jobs = parsed.get("jobs") if isinstance(parsed, dict) else None
    if not isinstance(jobs, list):
        return []
    return [j for j in jobs if isinstance(j, dict) and j.get("id")]


def _job_state(job: dict) -> dict:
    state = job.get("state")
    return state if isinstance(state, dict) else {}


def build_issue_body(name: str, job_id: str, failures: int, last_error: str, disabled: bool) -> str:
    outcome = "was disabled by" if disabled else "could not be disabled by"
    return "\n".join([
        f"Cron job failed repeatedly and {outcome} openclaw-self-healing.",
        "",
        f"Name: {name}",
        f"ID: {job_id}",
        f"Consecutive failures: {failures}",
        "Last error:",
        "```",
        last_error[:MAX_ERROR_EXCERPT],
        "```",
    ])


class JobHealer:
    def __init__(
        self,
        config: ConfigManager,
        store: StateStore,
        runner: CommandRunner,
        guardrail: GuardrailManager,
        emitter: EventEmitter,
    ):
        self.config = config
        self.store = store
        self.runner = runner
        self.guardrail = guardrail
        self.emitter = emitter

    async def run(self, now: Optional[int] = None) -> List[str]:
        """Observe all jobs once. Returns the ids that crossed the failure threshold."""
        cfg = self.config.current
        if not cfg.auto_fix.disable_failing_crons:
            return []
        if now is None:
            now = now_sec()

        result = await self.runner.run(cfg.commands.cron_list, LIST_TIMEOUT_SEC)
        if not result.ok:
            logger.warning("[self-heal] cron list unavailable: %s", result.stderr.strip()[:200])
            return []
        jobs = parse_jobs(result.stdout)

        tripped = []
        with self.store.transaction() as state:
            counts = state.cron.fail_counts
            for job in jobs:
                job_id = str(job["id"])
                failing = _job_state(job).get("lastStatus") == "error"
                counts[job_id] = counts.get(job_id, 0) + 1 if failing else 0
                if failing and counts[job_id] >= cfg.auto_fix.cron_fail_threshold:
                    tripped.append((job, counts[job_id]))

        for job, failures in tripped:
            await self._handle_tripped(job, failures, now)
        return [str(job["id"]) for job, _ in tripped]

    async def _handle_tripped(self, job: dict, failures: int, now: int) -> None:
        cfg = self.config.current
        job_id = str(job["id"])
        name = str(job.get("name") or job_id)
        last_error = str(_job_state(job).get("lastError") or "")

        disabled = False
        logger.warning(
            "[self-heal] cron %s (%s) failed %d times in a row; disabling.", name, job_id, failures
        )
        if self.guardrail.check(f"disable cron {job_id}"):
            disabled = await self._disable(job_id, name, failures, last_error)

        last_issue_at = self.store.load().cron.last_issue_created_at.get(job_id, 0)
        if now - last_issue_at >= cfg.auto_fix.issue_cooldown_sec:
            await self._report_issue(job_id, name, failures, last_error, disabled)
            with self.store.transaction() as state:
                state.cron.last_issue_created_at[job_id] = now

        # TODO: decide whether a guardrail-blocked disable should keep the streak
        # instead of starting over; see the open question in DESIGN.md.
        with self.store.transaction() as state:
            state.cron.fail_counts[job_id] = 0

    async def _disable(self, job_id: str, name: str, failures: int, last_error: str) -> bool:
        cfg = self.config.current
        argv = render_argv(cfg.commands.cron_disable, id=job_id)

        if cfg.dry_run:
            logger.warning("[self-heal] dry-run: would disable cron %s: %s", job_id, " ".join(argv))
        else:
            try:
                self.guardrail.backup_config(f"cron-disable:{job_id}")
            except BackupError as e:
                logger.error("[self-heal] refusing to disable cron %s without a backup: %s", job_id, e)
                return False
            result = await self.runner.run(argv, DISABLE_TIMEOUT_SEC)
            await self.guardrail.cleanup_pending_backups(f"after disabling cron {job_id}")
            if not result.ok:
                logger.error(
                    "[self-heal] failed to disable cron %s (exit=%s): %s",
                    job_id, result.exit_code, result.stderr.strip()[:200],
                )
                return False

        self.emitter.emit(
            EventType.CRON_DISABLED,
            cron_id=job_id,
            cron_name=name,
            consecutive_failures=failures,
            last_error=last_error[:MAX_ERROR_EXCERPT],
            dry_run=cfg.dry_run,
        )
        return True

    async def _report_issue(
        self, job_id: str, name: str, failures: int, last_error: str, disabled: bool
    ) -> None:
        cfg = self.config.current
        title = f"Cron disabled: {name}" if disabled else f"Cron failing repeatedly: {name}"
        argv = render_argv(
            cfg.commands.issue_create,
            repo=cfg.auto_fix.issue_repo,
            title=title,
            body=build_issue_body(name, job_id, failures, last_error, disabled),
            label=cfg.auto_fix.issue_label,
        )
        if cfg.dry_run:
            logger.warning("[self-heal] dry-run: would file issue %r", title)
            return
        result = await self.runner.run(argv, ISSUE_TIMEOUT_SEC)
        if not result.ok:
            logger.warning(
                "[self-heal] issue creation for cron %s failed: %s", job_id, result.stderr.strip()[:200]
            )
