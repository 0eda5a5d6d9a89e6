"""Command Result — outcome of one host capability call."""

from typing import List, Optional

from pydantic import BaseModel


class CommandResult(BaseModel):
    """Outcome of running an external command through the host."""

    argv: List[str]
    ok: bool
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    duration_seconds: float = 0.0
