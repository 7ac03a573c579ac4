# streamprobe/services/probe/ffprobe_adapter.py
from __future__ import annotations

import json
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from streamprobe.common.logging import get_logger
from streamprobe.domain.entities.probe import ProbeFormat, ProbeReport, ProbeStream
from streamprobe.domain.ports.probe import MediaProbePort
from streamprobe.services.process.errors import ReportParseError

logger = get_logger(__name__)


@dataclass(eq=False)
class FFprobeError(RuntimeError):
    """Adapter-level error for one-shot file probes."""
    message: str
    stderr: Optional[str] = None
    rc: Optional[int] = None


class FFprobeAdapter(MediaProbePort):
    """
    Builds ffprobe report commands and turns ffprobe JSON into ProbeReport.
    probe() is a blocking one-shot probe of a local file; the live analyzer
    only borrows build_report_cmd() and parse_report().
    """

    def __init__(self, ffprobe_bin: str = "ffprobe", timeout_sec: float = 15):
        candidate = ffprobe_bin
        if "/" not in candidate:
            # try to resolve absolute path for nicer errors
            resolved = shutil.which(candidate)
            if not resolved:
                raise FFprobeError(f"{candidate} not found on PATH; install ffmpeg or configure ffprobe_bin.")
            candidate = resolved

        self.ffprobe_bin = candidate
        self.timeout_sec = float(timeout_sec)

    @staticmethod
    def build_report_cmd(ffprobe_bin: str, path: Path | str) -> List[str]:
        return [
            ffprobe_bin,
            "-show_error",
            "-show_private_data",
            "-v", "quiet",
            "-find_stream_info",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(path),
        ]

    # ---- Port API -------------------------------------------------------------
    def probe(self, path: Path) -> ProbeReport:
        if not path:
            raise FFprobeError("No path provided to probe().")
        if not Path(path).is_file():
            raise FFprobeError(f"File not found: {path}")

        cmd = self.build_report_cmd(self.ffprobe_bin, path)
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout_sec,
                check=False,  # we handle rc manually to attach stderr
            )
        except subprocess.TimeoutExpired as e:
            raise FFprobeError(f"ffprobe timed out after {self.timeout_sec}s", stderr=str(e)) from e
        except OSError as e:
            raise FFprobeError("Failed to execute ffprobe (OS error).", stderr=str(e)) from e

        if proc.returncode != 0:
            raise FFprobeError("ffprobe returned non-zero exit code", stderr=proc.stderr or proc.stdout, rc=proc.returncode)

        try:
            return self.parse_report(proc.stdout)
        except ReportParseError as e:
            raise FFprobeError("ffprobe produced invalid JSON", stderr=proc.stdout) from e

    # ---- Parsing helpers ------------------------------------------------------
    @staticmethod
    def parse_report(text: str) -> ProbeReport:
        """
        Parse `-print_format json -show_format -show_streams` output.
        Raises ReportParseError for empty, truncated or non-object documents.
        """
        if not text or not text.strip():
            raise ReportParseError("empty report")
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ReportParseError(f"invalid report JSON: {e}", output=text[-512:]) from e
        if not isinstance(data, dict):
            raise ReportParseError("report is not a JSON object", output=text[-512:])

        fmt = data.get("format") or {}
        if not isinstance(fmt, dict):
            fmt = {}
        streams = [s for s in (data.get("streams") or []) if isinstance(s, dict)]

        return ProbeReport(
            format=ProbeFormat(
                format_name=str(fmt.get("format_name") or ""),
                probe_score=_parse_int(fmt.get("probe_score")) or 0,
                duration=_parse_float(fmt.get("duration")) or 0.0,
                bit_rate=_parse_int(fmt.get("bit_rate")) or 0,
                nb_streams=_parse_int(fmt.get("nb_streams")) or 0,
            ),
            streams=tuple(_parse_stream(i, s) for i, s in enumerate(streams)),
        )


def _parse_stream(pos: int, s: dict) -> ProbeStream:
    idx = _parse_int(s.get("index"))
    return ProbeStream(
        index=pos if idx is None else idx,
        codec_type=str(s.get("codec_type") or ""),
        codec_name=str(s.get("codec_name") or ""),
        profile=str(s.get("profile") or ""),
        width=_parse_int(s.get("width")) or 0,
        height=_parse_int(s.get("height")) or 0,
        channels=_parse_int(s.get("channels")) or 0,
        sample_rate=_parse_int(s.get("sample_rate")) or 0,
        duration=_parse_float(s.get("duration")) or 0.0,
        bit_rate=_parse_int(s.get("bit_rate")) or 0,
    )


# ---- tiny parse helpers -------------------------------------------------------
def _parse_float(x) -> Optional[float]:
    try:
        if x is None:
            return None
        return float(x)
    except (TypeError, ValueError):
        return None

def _parse_int(x) -> Optional[int]:
    try:
        if x is None:
            return None
        return int(float(x))
    except (TypeError, ValueError, OverflowError):
        return None
