"""
Command Runner — the single capability through which the kernel touches the host.

Status checks, restarts, job listing and editing, probes and issue filing
are all argv invocations dispatched through the host's
"run command with timeout" capability.

Behavioral Contract:
- Every call runs under an explicit timeout.
- Never raises: timeouts, host exceptions and non-zero exits all come back
  as a failed CommandResult.
- No automatic retries. The next monitor tick re-evaluates instead.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, List, Mapping, Sequence

from heal_kernel.models.execution import CommandResult

logger = logging.getLogger(__name__)

HostCommand = Callable[[List[str], float], Awaitable[Any]]

DEFAULT_TIMEOUT_SEC = 15.0


def render_argv(template: Sequence[str], **params: Any) -> List[str]:
    """Fill ``{placeholders}`` in each argv element. Values are never re-parsed."""
    return [part.format(**params) for part in template]


def _field(result: Any, *names: str, default: Any = None) -> Any:
    for name in names:
        if isinstance(result, Mapping) and name in result:
            return result[name]
        if hasattr(result, name):
            return getattr(result, name)
    return default


async def run_subprocess(argv: List[str], timeout_sec: float) -> dict:
    """
    Standalone capability for running outside a host: spawn the process directly.
    The caller's timeout still applies on top of this one.
    """
    proc = await asyncio.create_subprocess_exec(
        *argv,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout_sec)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise
    return {
        "exitCode": proc.returncode,
        "stdout": stdout.decode("utf-8", errors="replace"),
        "stderr": stderr.decode("utf-8", errors="replace"),
    }


class CommandRunner:
    """Dispatches argv commands to the host capability under a timeout."""

    def __init__(self, host_command: HostCommand):
        self._host_command = host_command

    async def run(
        self,
        argv: Sequence[str],
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
    ) -> CommandResult:
        argv = list(argv)
        start = time.monotonic()
        try:
            raw = await asyncio.wait_for(
                self._host_command(argv, timeout_sec),
                timeout=timeout_sec,
            )
        except asyncio.TimeoutError:
            elapsed = time.monotonic() - start
            logger.warning("[self-heal] command timed out after %.0fs: %s", timeout_sec, argv[:3])
            return CommandResult(
                argv=argv,
                ok=False,
                stderr=f"timed out after {timeout_sec}s",
                timed_out=True,
                duration_seconds=round(elapsed, 3),
            )
        except Exception as e:
            elapsed = time.monotonic() - start
            logger.warning("[self-heal] command failed to run: %s: %s", argv[:3], e)
            return CommandResult(
                argv=argv,
                ok=False,
                stderr=str(e),
                duration_seconds=round(elapsed, 3),
            )

        elapsed = time.monotonic() - start
        exit_code = _field(raw, "exitCode", "exit_code", "returncode")
        return CommandResult(
            argv=argv,
            ok=exit_code == 0,
            exit_code=exit_code,
            stdout=str(_field(raw, "stdout", default="") or ""),
            stderr=str(_field(raw, "stderr", default="") or ""),
            duration_seconds=round(elapsed, 3),
        )

    async def run_template(
        self,
        template: Sequence[str],
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        **params: Any,
    ) -> CommandResult:
        """Render a configured argv template and run it."""
        return await self.run(render_argv(template, **params), timeout_sec)
