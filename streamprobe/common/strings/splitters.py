import re
from typing import Iterable, List

_SEP_RE = re.compile(r"[,;\n]")


def csv_to_list(v: str | Iterable[str] | None, *, dedupe: bool = True) -> List[str]:
    """
    Split "a, b;c" style env values into a clean list, keeping order.
    Blank items are dropped; repeats too unless dedupe=False.
    """
    if v is None:
        return []
    items = _SEP_RE.split(v) if isinstance(v, str) else [str(s) for s in v if s is not None]
    out: List[str] = []
    for item in (s.strip() for s in items):
        if not item or (dedupe and item in out):
            continue
        out.append(item)
    return out
