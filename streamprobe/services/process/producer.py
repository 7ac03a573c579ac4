# streamprobe/services/process/producer.py
from __future__ import annotations

from pathlib import Path
from typing import Callable, List, Optional, Sequence

from streamprobe.common.concurrency.context import Gate, RunContext
from streamprobe.common.logging import get_logger
from streamprobe.domain.ports.probe import SupervisorPort
from streamprobe.services.process.errors import AbnormalExit
from streamprobe.services.process.runner import ManagedProcess

logger = get_logger(__name__)

# ffmpeg prints this header once the output has been opened and streams mapped,
# i.e. the server accepted the publish.
READY_MARKER = "Stream mapping:"


class FFmpegProducer(SupervisorPort):
    """
    Publishes a stream into the server under test with ffmpeg and reports the
    moment publishing started.

        producer = FFmpegProducer(FFmpegProducer.publish_args(input_file, url))
        tasks.submit("ffmpeg", producer.run, ctx, ctx.cancel)
        if not producer.wait_ready(ctx):
            return  # ctx done or ffmpeg died before publishing

    run() only returns (or raises) once ffmpeg is gone. The ready gate is the
    early signal; it never fires if ffmpeg exits before printing the marker,
    so always wait on it together with a context (wait_ready does).
    """

    def __init__(
        self,
        args: Sequence[str],
        *,
        ffmpeg_bin: str = "ffmpeg",
        ready_marker: str = READY_MARKER,
        grace_sec: float = 5.0,
        cwd: Optional[Path | str] = None,
    ) -> None:
        self.args: List[str] = [str(a) for a in args]
        self.ffmpeg_bin = ffmpeg_bin
        self.ready_marker = ready_marker
        self.grace_sec = grace_sec
        self.cwd = cwd

        self._ready = Gate("ffmpeg.ready")
        self._exited = Gate("ffmpeg.exited")
        self._process: Optional[ManagedProcess] = None

    @staticmethod
    def publish_args(input_file: Path | str, stream_url: str, *, loop: bool = True) -> List[str]:
        """Real-time, codec-copy publish of a local file as FLV (RTMP)."""
        args = ["-re"]
        if loop:
            args += ["-stream_loop", "-1"]
        args += ["-i", str(input_file), "-c", "copy", "-f", "flv", stream_url]
        return args

    # ---- gates ---------------------------------------------------------------
    @property
    def ready_gate(self) -> Gate:
        return self._ready

    @property
    def exited_gate(self) -> Gate:
        return self._exited

    def wait_ready(self, ctx: RunContext, timeout: Optional[float] = None) -> bool:
        """True once publishing started; False if ctx finished, time ran out or ffmpeg exited first."""
        return self._ready.wait_or(ctx, timeout=timeout, stop=self._exited.event)

    # ---- run -----------------------------------------------------------------
    def _on_line(self, line: str) -> None:
        logger.debug("ffmpeg: %s", line)
        if self.ready_marker in line and self._ready.fire():
            logger.info("ffmpeg: publishing, got %r", self.ready_marker)

    def run(self, ctx: RunContext, cancel: Optional[Callable[[], None]] = None) -> None:
        """
        Run ffmpeg until it exits or `ctx` is done.

        Raises SpawnFailure if ffmpeg cannot start and AbnormalExit if it exits
        non-zero on its own. Stopping it because `ctx` finished is a normal
        return. If ffmpeg exits on its own, `cancel` is called so whoever waits
        on the shared context is released.
        """
        self._process = ManagedProcess(
            [self.ffmpeg_bin, *self.args],
            name="ffmpeg",
            cwd=self.cwd,
            grace_sec=self.grace_sec,
            on_line=self._on_line,
        )
        try:
            self._process.start()
        except Exception:
            self._exited.fire()
            if cancel is not None:
                cancel()
            raise

        try:
            rc = self._process.wait(ctx)
        finally:
            self._exited.fire()
            self._process.join_reader(timeout=1.0)

        # A signal death while ctx is done counts as ours even if the race was
        # lost to the process noticing first.
        if self._process.stopped_by_us or (ctx.done() and rc < 0):
            logger.info("ffmpeg: stopped, rc=%s", rc)
            return

        logger.info("ffmpeg: exited, rc=%s, ready=%s", rc, self._ready.is_set())
        if cancel is not None:
            cancel()
        if rc != 0:
            raise AbnormalExit("ffmpeg exited", rc=rc, output=self._process.tail(20))

    @property
    def process(self) -> Optional[ManagedProcess]:
        return self._process
