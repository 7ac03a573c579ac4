# streamprobe/common/errors.py
from __future__ import annotations

from typing import Optional

from streamprobe.common.concurrency.context import ContextCanceled


def filter_errors(ctx_err: Optional[BaseException], *errors: Optional[BaseException]) -> Optional[BaseException]:
    """
    Pick the error a scenario should fail with.

    Scenarios cancel their own context once they have what they need, so a
    canceled context (and any error that merely reports it) is not a failure.
    A deadline that ran out still is. Returns the first remaining error in
    argument order, else None.
    """
    for err in (ctx_err, *errors):
        if err is None or isinstance(err, ContextCanceled):
            continue
        return err
    return None
