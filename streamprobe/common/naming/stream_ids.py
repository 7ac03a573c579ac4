# streamprobe/common/naming/stream_ids.py
from __future__ import annotations

import os
import re
import secrets

_prefix_re = re.compile(r"[^a-z0-9]+")


def new_stream_id(prefix: str = "stream") -> str:
    """
    Unique stream name for one scenario run: "<prefix>-<pid>-<random>".
    The pid keeps parallel harness processes apart; the random part keeps
    repeated cases in one process apart.
    """
    p = _prefix_re.sub("-", str(prefix or "").strip().lower()).strip("-") or "stream"
    return f"{p}-{os.getpid()}-{secrets.randbelow(1 << 31)}"


def capture_file_name(stream_id: str, ext: str = "flv") -> str:
    """Name of the analyzer's intermediate capture file for a stream."""
    return f"streamprobe-{stream_id}.{ext.lstrip('.')}"
