# streamprobe/services/process/errors.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(eq=False)
class SupervisorError(RuntimeError):
    """
    Failure of a supervised tool. `phase` is one of spawn | run | parse;
    `output` carries the tail of what the tool printed, for diagnostics.
    """
    message: str
    phase: str = "run"
    rc: Optional[int] = None
    output: Optional[str] = None

    def __str__(self) -> str:
        s = f"{self.phase}: {self.message}"
        if self.rc is not None:
            s += f" (rc={self.rc})"
        if self.output:
            s += f"\n{self.output}"
        return s


@dataclass(eq=False)
class SpawnFailure(SupervisorError):
    """The tool could not be started at all (missing binary, permissions)."""
    phase: str = "spawn"


@dataclass(eq=False)
class AbnormalExit(SupervisorError):
    """The tool exited non-zero and we had not asked it to stop."""
    phase: str = "run"


@dataclass(eq=False)
class ReportParseError(SupervisorError):
    """The analyzer report was empty, truncated or not a JSON object."""
    phase: str = "parse"
