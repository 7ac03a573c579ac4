from __future__ import annotations
from pathlib import Path
from typing import Callable, Optional, Protocol, Tuple
from streamprobe.common.concurrency.context import Gate, RunContext
from streamprobe.domain.entities.probe import ProbeReport

class MediaProbePort(Protocol):
    def probe(self, path: Path) -> ProbeReport: ...
    def parse_report(self, text: str) -> ProbeReport: ...


class SupervisorPort(Protocol):
    # run() blocks until the tool is gone; None on success, raises on failure
    def run(self, ctx: RunContext, cancel: Optional[Callable[[], None]] = None) -> None: ...


class StreamAnalyzerPort(SupervisorPort, Protocol):
    @property
    def probe_done_gate(self) -> Gate: ...
    def result(self) -> Tuple[str, ProbeReport]: ...
