# tests/conftest.py
from __future__ import annotations
import json
import sys
import textwrap
from pathlib import Path
from typing import Callable

import pytest

from streamprobe.common import settings as settings_mod


REPORT_TWO_STREAMS = {
    "streams": [
        {
            "index": 0,
            "codec_name": "h264",
            "profile": "High",
            "codec_type": "video",
            "width": 768,
            "height": 320,
            "duration": "4.960000",
        },
        {
            "index": 1,
            "codec_name": "aac",
            "profile": "LC",
            "codec_type": "audio",
            "sample_rate": "44100",
            "channels": 2,
            "duration": "5.016000",
        },
    ],
    "format": {
        "format_name": "flv",
        "duration": "5.016000",
        "bit_rate": "290514",
        "nb_streams": 2,
        "probe_score": 100,
    },
}


@pytest.fixture()
def fake_tool(tmp_path) -> Callable[[str, str], str]:
    """
    Write an executable Python script standing in for ffmpeg/ffprobe.
    Returns its absolute path.
    """
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)

    def _make(name: str, body: str) -> str:
        p = bin_dir / name
        p.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body).lstrip("\n"))
        p.chmod(0o755)
        return str(p)

    return _make


@pytest.fixture()
def ffprobe_printing(fake_tool) -> Callable[[str], str]:
    """Fake ffprobe that prints `text` on stdout and exits 0."""
    def _make(text: str, name: str = "ffprobe") -> str:
        return fake_tool(name, f"""
            import sys
            sys.stdout.write({text!r})
            sys.stdout.flush()
        """)
    return _make


@pytest.fixture()
def report_json() -> str:
    return json.dumps(REPORT_TWO_STREAMS)


@pytest.fixture()
def fake_capture(fake_tool) -> str:
    """Fake ffmpeg in capture mode: writes a few bytes to the -y target and exits."""
    return fake_tool("ffmpeg", """
        import sys
        args = sys.argv[1:]
        out = args[args.index("-y") + 1]
        with open(out, "wb") as f:
            f.write(b"FLV\\x01\\x05")
        print("Output #0, flv, to '%s':" % out, file=sys.stderr, flush=True)
    """)


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    settings_mod.get_settings.cache_clear()
    yield
    settings_mod.get_settings.cache_clear()
