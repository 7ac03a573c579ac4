# streamprobe/services/probe/analyzer.py
from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from streamprobe.common.concurrency.context import Gate, RunContext
from streamprobe.common.logging import get_logger
from streamprobe.domain.entities.probe import ProbeReport
from streamprobe.domain.ports.probe import StreamAnalyzerPort
from streamprobe.services.probe.ffprobe_adapter import FFprobeAdapter
from streamprobe.services.process.errors import ReportParseError
from streamprobe.services.process.runner import ManagedProcess

logger = get_logger(__name__)


class StreamAnalyzer(StreamAnalyzerPort):
    """
    Samples a stream from the server for `duration` seconds and reports what
    it contained.

    Two phases share one deadline of `timeout` seconds (child of the caller's
    ctx):
      1. capture: ffmpeg copies up to `duration` of the stream into `dvr_file`
      2. report:  ffprobe describes `dvr_file` as JSON; stdout is drained into
         an in-memory sink as it arrives, so a killed ffprobe still leaves
         whatever it flushed.

    The probe-done gate fires as soon as the report is parsed, before the
    capture file is removed. result() is valid
    from then on; calling it earlier returns the empty placeholder state.
    """

    def __init__(
        self,
        stream_url: str,
        dvr_file: Path | str,
        *,
        duration: float,
        timeout: float,
        ffmpeg_bin: str = "ffmpeg",
        ffprobe_bin: str = "ffprobe",
        grace_sec: float = 5.0,
        keep_dvr: bool = False,
    ) -> None:
        if duration <= 0:
            raise ValueError("duration must be positive")
        if timeout <= duration:
            raise ValueError(f"timeout ({timeout}s) must exceed duration ({duration}s)")

        self.stream_url = stream_url
        self.dvr_file = Path(dvr_file)
        self.duration = float(duration)
        self.timeout = float(timeout)
        self.ffmpeg_bin = ffmpeg_bin
        self.ffprobe_bin = ffprobe_bin
        self.grace_sec = grace_sec
        self.keep_dvr = keep_dvr

        self._done = Gate("ffprobe.done")
        self._lock = threading.Lock()
        self._raw = ""
        self._report = ProbeReport()
        self._report_error: Optional[ReportParseError] = None
        self._sink: List[str] = []
        self._sink_lock = threading.Lock()

    # ---- gates / results -----------------------------------------------------
    @property
    def probe_done_gate(self) -> Gate:
        return self._done

    def wait_probe_done(self, ctx: RunContext, timeout: Optional[float] = None) -> bool:
        return self._done.wait_or(ctx, timeout=timeout)

    def result(self) -> Tuple[str, ProbeReport]:
        """
        (raw report text, parsed report). Only meaningful after run() returned
        or the probe-done gate fired.
        """
        with self._lock:
            return self._raw, self._report

    @property
    def report_error(self) -> Optional[ReportParseError]:
        """Why the report came back empty, if it did because of bad JSON."""
        with self._lock:
            return self._report_error

    # ---- commands ------------------------------------------------------------
    def capture_cmd(self) -> List[str]:
        return [
            self.ffmpeg_bin,
            "-t", f"{self.duration:g}",
            "-i", self.stream_url,
            "-c", "copy",
            "-y", str(self.dvr_file),
        ]

    def report_cmd(self) -> List[str]:
        return FFprobeAdapter.build_report_cmd(self.ffprobe_bin, self.dvr_file)

    def capture_window(self) -> float:
        """
        Seconds the capture may run. ffmpeg -t is the sampling target; allow
        `grace` of slack for connect overhead, but leave `grace` of the
        overall timeout to the report phase.
        """
        return min(self.duration + self.grace_sec, max(self.duration, self.timeout - self.grace_sec))

    # ---- run -----------------------------------------------------------------
    def run(self, ctx: RunContext, cancel: Optional[Callable[[], None]] = None) -> None:
        """
        Capture, then report. A timeout or a done `ctx` stops whichever tool is
        running; the report is still parsed from what was flushed. Raises
        SpawnFailure when a tool cannot start; `cancel` is called in that case
        so a waiting scenario is released.

        Normally returns within `timeout`. If the capture runs into the
        deadline and ffprobe then ignores SIGTERM, it takes at most about
        `timeout + 3 * grace_sec`: a fresh report budget, the SIGTERM grace
        and the reader join.
        """
        run_ctx = ctx.child(timeout=self.timeout, name="ffprobe.run")
        try:
            self._capture(run_ctx)
            self._report_phase(run_ctx)
        except Exception:
            if cancel is not None:
                cancel()
            raise
        finally:
            self._done.fire()
            run_ctx.cancel()
            self._cleanup()

    def _capture(self, run_ctx: RunContext) -> None:
        capture_ctx = run_ctx.child(timeout=self.capture_window(), name="ffprobe.capture")
        proc = ManagedProcess(
            self.capture_cmd(),
            name="ffprobe.capture",
            grace_sec=self.grace_sec,
            on_line=lambda line: logger.debug("capture: %s", line),
        )
        proc.start()
        try:
            rc = proc.wait(capture_ctx)
        finally:
            capture_ctx.cancel()
            proc.join_reader(timeout=1.0)

        if proc.stopped_by_us:
            logger.info("capture stopped after sampling window, rc=%s", rc)
        elif rc != 0:
            # The server may legitimately refuse the stream; the (empty)
            # report decides, not the capture exit code.
            logger.warning("capture exited rc=%s for %s\n%s", rc, self.stream_url, proc.tail(10))

    def _report_phase(self, run_ctx: RunContext) -> None:
        with self._sink_lock:
            self._sink.clear()
        report_ctx = run_ctx
        if run_ctx.done():
            # Deadline or cancel hit during capture; still describe what was
            # captured, within a short budget of our own.
            report_ctx = RunContext(timeout=self.grace_sec, name="ffprobe.report")
        proc = ManagedProcess(
            self.report_cmd(),
            name="ffprobe.report",
            grace_sec=self.grace_sec,
            on_line=self._collect,
            merge_stderr=False,
        )
        proc.start()
        try:
            rc = proc.wait(report_ctx)
        finally:
            if report_ctx is not run_ctx:
                report_ctx.cancel()
            # The sink is complete once the reader hit EOF.
            proc.join_reader(timeout=self.grace_sec)

        with self._sink_lock:
            raw = "\n".join(self._sink)
        if proc.stopped_by_us:
            logger.warning("report stopped by deadline, parsing %d bytes flushed so far", len(raw))
        elif rc != 0:
            logger.warning("report exited rc=%s", rc)
        self._finalize(raw)

    def _collect(self, line: str) -> None:
        with self._sink_lock:
            self._sink.append(line)

    def _finalize(self, raw: str) -> None:
        err: Optional[ReportParseError] = None
        try:
            report = FFprobeAdapter.parse_report(raw)
        except ReportParseError as e:
            report, err = ProbeReport(), e
            logger.warning("no usable report for %s: %s", self.stream_url, e.message)

        with self._lock:
            self._raw, self._report, self._report_error = raw, report, err
        logger.info("probe %s: %s", self.stream_url, report)
        self._done.fire()

    def _cleanup(self) -> None:
        if self.keep_dvr:
            return
        try:
            self.dvr_file.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("cannot remove %s: %s", self.dvr_file, e)
