from __future__ import annotations
import threading
import time

import pytest

from streamprobe.common.concurrency.context import RunContext
from streamprobe.domain.entities.probe import ProbeReport
from streamprobe.services.probe.analyzer import StreamAnalyzer
from streamprobe.services.process.errors import ReportParseError, SpawnFailure


def _analyzer(tmp_path, ffmpeg, ffprobe, **kw):
    kw.setdefault("duration", 1.0)
    kw.setdefault("timeout", 8.0)
    kw.setdefault("grace_sec", 1.0)
    return StreamAnalyzer(
        "http://localhost:8080/live/s.flv",
        tmp_path / "capture.flv",
        ffmpeg_bin=ffmpeg,
        ffprobe_bin=ffprobe,
        **kw,
    )


def test_rejects_timeout_not_exceeding_duration(tmp_path):
    with pytest.raises(ValueError):
        StreamAnalyzer("u", tmp_path / "x.flv", duration=5, timeout=5)
    with pytest.raises(ValueError):
        StreamAnalyzer("u", tmp_path / "x.flv", duration=0, timeout=5)


def test_commands(tmp_path):
    a = StreamAnalyzer("http://h/live/s.flv", tmp_path / "x.flv", duration=2.5, timeout=5, ffmpeg_bin="ff", ffprobe_bin="fp")
    assert a.capture_cmd() == ["ff", "-t", "2.5", "-i", "http://h/live/s.flv", "-c", "copy", "-y", str(tmp_path / "x.flv")]
    cmd = a.report_cmd()
    assert cmd[0] == "fp"
    assert cmd[-1] == str(tmp_path / "x.flv")
    assert "-show_streams" in cmd and "json" in cmd


def test_result_before_run_is_empty(tmp_path):
    a = StreamAnalyzer("u", tmp_path / "x.flv", duration=1, timeout=2)
    raw, report = a.result()
    assert raw == ""
    assert report == ProbeReport()
    assert not a.probe_done_gate.is_set()


def test_well_formed_report(tmp_path, fake_capture, ffprobe_printing, report_json):
    a = _analyzer(tmp_path, fake_capture, ffprobe_printing(report_json))
    ctx = RunContext(timeout=30)
    a.run(ctx)

    assert a.probe_done_gate.is_set()
    assert a.probe_done_gate.fire() is False
    raw, m = a.result()
    assert '"probe_score": 100' in raw
    assert len(m.streams) == 2
    assert m.format.probe_score == 100
    assert m.audio().channels == 2
    assert m.audio().sample_rate == 44100
    assert m.video().codec_name == "h264"
    assert m.video().profile == "High"
    assert m.duration() == pytest.approx(5.016)
    assert a.report_error is None
    # capture artifact is removed after the run
    assert not (tmp_path / "capture.flv").exists()
    # the case context is left alone
    assert not ctx.done()


def test_keep_dvr(tmp_path, fake_capture, ffprobe_printing, report_json):
    a = _analyzer(tmp_path, fake_capture, ffprobe_printing(report_json), keep_dvr=True)
    a.run(RunContext(timeout=30))
    assert (tmp_path / "capture.flv").exists()


def test_malformed_report_is_not_fatal(tmp_path, fake_capture, ffprobe_printing):
    a = _analyzer(tmp_path, fake_capture, ffprobe_printing('{"streams": [{"codec_type": "vid'))
    a.run(RunContext(timeout=30))
    raw, m = a.result()
    assert raw.startswith('{"streams"')
    assert m.streams == ()
    assert isinstance(a.report_error, ReportParseError)
    assert a.probe_done_gate.is_set()


def test_zero_stream_report(tmp_path, fake_capture, ffprobe_printing):
    a = _analyzer(tmp_path, fake_capture, ffprobe_printing('{"streams": [], "format": {"probe_score": 0}}'))
    a.run(RunContext(timeout=30))
    _, m = a.result()
    assert len(m.streams) == 0
    assert m.duration() == 0
    assert m.audio().channels == 0
    assert m.video().codec_name == ""
    assert a.report_error is None


def test_no_data_returns_within_timeout(tmp_path, fake_tool):
    # Server never sends anything: capture hangs until its window closes,
    # ffprobe then finds nothing to describe.
    ffmpeg = fake_tool("ffmpeg", """
        import time
        time.sleep(60)
    """)
    ffprobe = fake_tool("ffprobe", """
        import os, sys
        path = sys.argv[-1]
        if not os.path.exists(path):
            sys.stdout.write('{"error": {"code": -2, "string": "No such file or directory"}}')
            sys.exit(1)
        sys.stdout.write('{"streams": [], "format": {}}')
    """)
    a = _analyzer(tmp_path, ffmpeg, ffprobe, duration=1.0, timeout=6.0, grace_sec=1.0)
    t0 = time.monotonic()
    a.run(RunContext(timeout=30))
    elapsed = time.monotonic() - t0

    assert elapsed < 6.0 + 2.0
    _, m = a.result()
    assert m.streams == ()
    assert a.probe_done_gate.is_set()


def test_timeout_kills_report_and_keeps_partial_output(tmp_path, fake_capture, fake_tool):
    ffprobe = fake_tool("ffprobe", """
        import sys, time
        sys.stdout.write('{"streams": [\\n')
        sys.stdout.flush()
        time.sleep(60)
    """)
    a = _analyzer(tmp_path, fake_capture, ffprobe, duration=0.5, timeout=2.0, grace_sec=0.5)
    t0 = time.monotonic()
    a.run(RunContext(timeout=30))
    assert time.monotonic() - t0 < 5.0

    raw, m = a.result()
    assert raw.startswith('{"streams": [')
    assert m.streams == ()
    assert isinstance(a.report_error, ReportParseError)


def test_external_cancel_still_reports(tmp_path, fake_tool, ffprobe_printing, report_json):
    ffmpeg = fake_tool("ffmpeg", """
        import sys, time
        args = sys.argv[1:]
        with open(args[args.index("-y") + 1], "wb") as f:
            f.write(b"FLV")
        time.sleep(60)
    """)
    a = _analyzer(tmp_path, ffmpeg, ffprobe_printing(report_json), duration=5.0, timeout=20.0)
    ctx = RunContext(timeout=30)
    t = threading.Thread(target=a.run, args=(ctx,), daemon=True)
    t.start()
    time.sleep(0.5)
    ctx.cancel()

    assert a.wait_probe_done(RunContext(timeout=10))
    t.join(10)
    assert not t.is_alive()
    _, m = a.result()
    assert len(m.streams) == 2


def test_spawn_failure_raises_and_releases(tmp_path, fake_capture):
    a = _analyzer(tmp_path, fake_capture, str(tmp_path / "missing" / "ffprobe"))
    ctx = RunContext(timeout=30)
    with pytest.raises(SpawnFailure):
        a.run(ctx, ctx.cancel)
    assert ctx.done()
    assert a.probe_done_gate.is_set()
    assert a.result()[1].streams == ()


@pytest.mark.parametrize(
    "duration,timeout,grace,expected",
    [
        (16, 21, 5, 16.0),   # defaults: capture leaves grace to the report
        (1, 8, 1, 2.0),      # plenty of room: full slack
        (1, 2, 5, 1.0),      # never below the sampling target
    ],
)
def test_capture_window(tmp_path, duration, timeout, grace, expected):
    a = StreamAnalyzer("u", tmp_path / "x.flv", duration=duration, timeout=timeout, grace_sec=grace)
    assert a.capture_window() == pytest.approx(expected)


def test_stalled_capture_leaves_time_for_report(tmp_path, fake_tool, ffprobe_printing, report_json):
    ffmpeg = fake_tool("ffmpeg", """
        import sys, time
        args = sys.argv[1:]
        with open(args[args.index("-y") + 1], "wb") as f:
            f.write(b"FLV")
        time.sleep(60)
    """)
    a = _analyzer(tmp_path, ffmpeg, ffprobe_printing(report_json), duration=1.0, timeout=4.0, grace_sec=2.0)
    t0 = time.monotonic()
    a.run(RunContext(timeout=30))
    assert time.monotonic() - t0 < 4.0
    assert len(a.result()[1].streams) == 2
