# streamprobe/services/scenarios/harness.py
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional

from streamprobe.common.concurrency.context import RunContext
from streamprobe.common.concurrency.thread_manager import TaskGroup
from streamprobe.common.errors import filter_errors
from streamprobe.common.logging import get_logger
from streamprobe.common.naming.stream_ids import capture_file_name
from streamprobe.common.settings import Settings
from streamprobe.domain.ports.probe import SupervisorPort
from streamprobe.services.api.client import ApiError, ControlPlaneClient
from streamprobe.services.probe.analyzer import StreamAnalyzer
from streamprobe.services.process.producer import FFmpegProducer

logger = get_logger(__name__)


@dataclass(frozen=True)
class StreamUrls:
    publish: str  # RTMP, with the publish secret
    play_flv: str  # HTTP-FLV

    @classmethod
    def for_stream(cls, settings: Settings, stream_id: str, secret: str = "", app: str = "live") -> "StreamUrls":
        ep = settings.endpoints
        publish = f"{ep.rtmp}/{app}/{stream_id}"
        if secret:
            publish += f"?secret={secret}"
        return cls(publish=publish, play_flv=f"{ep.http_stream}/{app}/{stream_id}.flv")


@contextmanager
def restore_config(
    client: ControlPlaneClient,
    query_path: str,
    apply_path: str,
    *,
    prepare: Optional[Callable[[Any], Any]] = None,
) -> Iterator[Any]:
    """
    Back up a server config section and always put it back.

        with restore_config(api, "/terraform/v1/hooks/record/query",
                            "/terraform/v1/hooks/record/apply") as backup:
            api.with_auth("/terraform/v1/hooks/record/apply", {"all": True})

    The restore runs without the scenario's context, which is usually
    canceled by then. `prepare` may adjust the backup before it is applied.
    A failed restore is logged, not raised.
    """
    backup = client.with_auth(query_path)
    try:
        yield backup
    finally:
        payload = prepare(backup) if prepare is not None else backup
        logger.info("restore config %s: %s", apply_path, payload)
        try:
            client.with_auth(apply_path, payload if payload is not None else {})
        except ApiError as e:
            logger.error("restore config %s failed: %s", apply_path, e)


class MediaScenario:
    """
    One publish/probe scenario: owns the case context and the background
    supervisors, and collects their errors.

        with MediaScenario(settings) as sc:
            producer = sc.publish(urls.publish)
            if not producer.wait_ready(sc.ctx):
                ...
            analyzer = sc.probe(urls.play_flv, stream_id)
            sc.wait_probe(analyzer)
            raw, report = analyzer.result()
        assert sc.error is None
    """

    def __init__(self, settings: Settings, *, timeout: Optional[float] = None) -> None:
        self.settings = settings
        self.ctx = RunContext(timeout=timeout or settings.timeouts.case, name="case")
        self.tasks = TaskGroup(name="case")
        self._closed = False

    def publish(self, stream_url: str, *, loop: bool = True) -> FFmpegProducer:
        m = self.settings.media
        producer = FFmpegProducer(
            FFmpegProducer.publish_args(m.input_file, stream_url, loop=loop),
            ffmpeg_bin=m.ffmpeg_bin,
            grace_sec=self.settings.timeouts.grace,
        )
        self._start(f"ffmpeg-{id(producer)}", producer)
        return producer

    def probe(self, stream_url: str, stream_id: str) -> StreamAnalyzer:
        m, t = self.settings.media, self.settings.timeouts
        analyzer = StreamAnalyzer(
            stream_url,
            self.settings.capture_path(capture_file_name(stream_id)),
            duration=t.probe_duration,
            timeout=t.probe_timeout,
            ffmpeg_bin=m.ffmpeg_bin,
            ffprobe_bin=m.ffprobe_bin,
            grace_sec=t.grace,
        )
        self._start(f"ffprobe-{id(analyzer)}", analyzer)
        return analyzer

    def _start(self, name: str, supervisor: SupervisorPort) -> None:
        # Every supervisor shares the case context and may end it.
        self.tasks.submit(name, supervisor.run, self.ctx, self.ctx.cancel)

    def wait_probe(self, analyzer: StreamAnalyzer) -> bool:
        """Wait for the probe, then end the case so publishers stop."""
        ok = analyzer.wait_probe_done(self.ctx)
        self.ctx.cancel()
        return ok

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.ctx.cancel()
        self.tasks.wait()
        self.tasks.shutdown()

    @property
    def error(self) -> Optional[BaseException]:
        """First real failure of the case, ignoring its own cancellation."""
        return filter_errors(self.ctx.err(), *(e for _, e in self.tasks.errors()))

    def __enter__(self) -> "MediaScenario":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
