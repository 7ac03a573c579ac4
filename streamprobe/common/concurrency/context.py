from __future__ import annotations

import threading
import time
from typing import Callable, List, Optional

from streamprobe.common.logging import get_logger

log = get_logger(__name__)

# Slice used when racing two events; threading has no select().
_POLL_SEC = 0.05


class ContextDone(Exception):
    """Base for the two ways a RunContext can finish."""


class ContextCanceled(ContextDone):
    def __init__(self, message: str = "context canceled") -> None:
        super().__init__(message)


class DeadlineExceeded(ContextDone):
    def __init__(self, message: str = "context deadline exceeded") -> None:
        super().__init__(message)


class RunContext:
    """
    Cancellable, optionally deadline-bound scope shared by a scenario and the
    supervisors it starts.

    - cancel() finishes it with ContextCanceled (idempotent).
    - After `timeout` seconds it finishes with DeadlineExceeded.
    - Children finish when the parent does and inherit its reason;
      cancelling a child leaves the parent alone.
    """

    def __init__(self, timeout: Optional[float] = None, parent: Optional["RunContext"] = None, name: str = "ctx") -> None:
        self.name = name
        self._done = threading.Event()
        self._lock = threading.Lock()
        self._err: Optional[ContextDone] = None
        self._children: List["RunContext"] = []
        self._callbacks: List[Callable[[], None]] = []
        self._timer: Optional[threading.Timer] = None
        self._parent: Optional["RunContext"] = parent

        self._deadline: Optional[float] = None
        if timeout is not None:
            self._deadline = time.monotonic() + max(0.0, float(timeout))

        if parent is not None:
            if parent._deadline is not None and (self._deadline is None or parent._deadline < self._deadline):
                self._deadline = parent._deadline
            parent._adopt(self)

        if self._deadline is not None and not self._done.is_set():
            delay = max(0.0, self._deadline - time.monotonic())
            self._timer = threading.Timer(delay, self._finish, args=(DeadlineExceeded(),))
            self._timer.daemon = True
            self._timer.start()

    # -------------------------
    # Lifecycle
    # -------------------------
    def cancel(self) -> None:
        self._finish(ContextCanceled())

    def child(self, timeout: Optional[float] = None, name: Optional[str] = None) -> "RunContext":
        return RunContext(timeout=timeout, parent=self, name=name or f"{self.name}.child")

    def add_done_callback(self, fn: Callable[[], None]) -> None:
        """Run `fn` once the context is done (immediately if it already is)."""
        with self._lock:
            if not self._done.is_set():
                self._callbacks.append(fn)
                return
        fn()

    def _adopt(self, child: "RunContext") -> None:
        with self._lock:
            if not self._done.is_set():
                self._children.append(child)
                return
            err = self._err
        child._finish(type(err)() if err is not None else ContextCanceled())

    def _forget(self, child: "RunContext") -> None:
        with self._lock:
            try:
                self._children.remove(child)
            except ValueError:
                pass

    def _finish(self, err: ContextDone) -> None:
        with self._lock:
            if self._done.is_set():
                return
            self._err = err
            self._done.set()
            children, self._children = self._children, []
            callbacks, self._callbacks = self._callbacks, []
            timer, self._timer = self._timer, None
            parent, self._parent = self._parent, None

        if timer is not None:
            timer.cancel()
        if parent is not None:
            parent._forget(self)
        log.debug("%s done: %s", self.name, err)
        for c in children:
            c._finish(type(err)())
        for fn in callbacks:
            try:
                fn()
            except Exception:
                log.exception("%s done-callback failed", self.name)

    # -------------------------
    # Queries
    # -------------------------
    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)

    def err(self) -> Optional[ContextDone]:
        with self._lock:
            return self._err

    def remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    @property
    def event(self) -> threading.Event:
        return self._done

    def __repr__(self) -> str:
        return f"RunContext(name={self.name!r}, done={self.done()}, err={self._err!r})"


class Gate:
    """
    One-shot broadcast gate (ready / probe-done). Goes from pending to fired
    at most once and never back. Any number of threads may wait on it.
    """

    def __init__(self, name: str = "gate") -> None:
        self.name = name
        self._event = threading.Event()
        self._lock = threading.Lock()

    def fire(self) -> bool:
        """Fire the gate. Returns True only for the call that fired it."""
        with self._lock:
            if self._event.is_set():
                return False
            self._event.set()
        log.debug("gate %s fired", self.name)
        return True

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)

    def wait_or(
        self,
        ctx: RunContext,
        timeout: Optional[float] = None,
        stop: Optional[threading.Event] = None,
    ) -> bool:
        """
        Block until the gate fires, `ctx` is done, `stop` is set or `timeout`
        elapses. Returns True only when the gate fired.
        """
        end = None if timeout is None else time.monotonic() + timeout
        while True:
            if self._event.is_set():
                return True
            if ctx.done() or (stop is not None and stop.is_set()):
                return self._event.is_set()
            slice_ = _POLL_SEC
            if end is not None:
                left = end - time.monotonic()
                if left <= 0:
                    return self._event.is_set()
                slice_ = min(slice_, left)
            self._event.wait(slice_)

    @property
    def event(self) -> threading.Event:
        return self._event

    def __repr__(self) -> str:
        return f"Gate(name={self.name!r}, fired={self.is_set()})"
