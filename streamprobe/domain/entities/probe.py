# streamprobe/domain/entities/probe.py
from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class ProbeFormat:
    """Container-level facts reported by the analyzer."""
    format_name: str = ""
    probe_score: int = 0          # 0..100 confidence that the bytes are really `format_name`
    duration: float = 0.0         # seconds, container-reported
    bit_rate: int = 0
    nb_streams: int = 0


@dataclass(frozen=True)
class ProbeStream:
    index: int = 0
    codec_type: str = ""          # "audio" | "video" | ...
    codec_name: str = ""
    profile: str = ""
    width: int = 0
    height: int = 0
    channels: int = 0
    sample_rate: int = 0
    duration: float = 0.0
    bit_rate: int = 0


_EMPTY_STREAM = ProbeStream()


@dataclass(frozen=True)
class ProbeReport:
    """
    Parsed view of one analyzer run. Immutable once built.

    `streams` holds exactly the elementary streams the analyzer detected; it is
    empty when nothing playable was found (e.g. the server refused the stream).
    audio()/video() return a zero-value ProbeStream when there is no such
    stream, so `channels == 0` / `codec_name == ""` mean "absent".
    """
    format: ProbeFormat = ProbeFormat()
    streams: Tuple[ProbeStream, ...] = ()

    def _first(self, codec_type: str) -> Optional[ProbeStream]:
        return next((s for s in self.streams if s.codec_type == codec_type), None)

    def audio(self) -> ProbeStream:
        return self._first("audio") or _EMPTY_STREAM

    def video(self) -> ProbeStream:
        return self._first("video") or _EMPTY_STREAM

    def duration(self) -> float:
        """Seconds: container duration, else first video stream, else first audio stream."""
        if self.format.duration > 0:
            return self.format.duration
        for kind in ("video", "audio"):
            s = self._first(kind)
            if s is not None and s.duration > 0:
                return s.duration
        return 0.0

    @property
    def empty(self) -> bool:
        return not self.streams

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def __str__(self) -> str:
        return json.dumps(
            {
                "format": self.format.format_name,
                "score": self.format.probe_score,
                "duration": round(self.duration(), 3),
                "streams": [
                    {k: v for k, v in asdict(s).items() if v not in ("", 0, 0.0)}
                    for s in self.streams
                ],
            },
            separators=(",", ":"),
        )
