from __future__ import annotations

import logging
import time
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple, TypeVar

R = TypeVar("R")

log = logging.getLogger(__name__)


@dataclass
class ThreadStats:
    start_ts: float
    tasks_submitted: int = 0
    tasks_completed: int = 0
    tasks_failed: int = 0

    @property
    def uptime_sec(self) -> float:
        return time.time() - self.start_ts

    @property
    def in_flight(self) -> int:
        return max(0, self.tasks_submitted - (self.tasks_completed + self.tasks_failed))


class TaskGroup:
    """
    Runs supervisor `run()` calls in the background for one scenario and
    keeps their outcomes.

    Features
    --------
    - submit(name, fn, *args, **kwargs) -> Future
    - wait(timeout) blocks until every submitted task finished
    - errors() -> [(name, exception)] in submission order
    - Stats snapshot
    - Context manager: leaving the block waits for all tasks

    Notes
    -----
    - One thread per task; supervisors block on subprocesses, so the pool is
      sized to the number of concurrent supervisors rather than to CPUs.
    """

    def __init__(self, name: str = "scenario", max_workers: int = 4) -> None:
        self._name = name
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)
        self._stats = ThreadStats(start_ts=time.time())
        self._futures: Dict[str, Future] = {}
        self._order: List[str] = []
        self._closed = False
        self._lock = threading.Lock()

    # -------------------------
    # Lifecycle
    # -------------------------
    def shutdown(self, wait: bool = True) -> None:
        """Shut down the executor. Safe to call multiple times."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "TaskGroup":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown(wait=True)

    def stats(self) -> ThreadStats:
        """Return a *snapshot* of current stats."""
        with self._lock:
            return ThreadStats(
                start_ts=self._stats.start_ts,
                tasks_submitted=self._stats.tasks_submitted,
                tasks_completed=self._stats.tasks_completed,
                tasks_failed=self._stats.tasks_failed,
            )

    # -------------------------
    # Submission
    # -------------------------
    def submit(self, name: str, fn: Callable[..., R], /, *args, **kwargs) -> Future:
        """
        Submit one named callable. Names must be unique within the group.
        Failures are logged when the task completes and kept for errors().
        """
        with self._lock:
            if self._closed:
                raise RuntimeError(f"{self._name}: submit() after shutdown")
            if name in self._futures:
                raise ValueError(f"{self._name}: duplicate task name {name!r}")
            self._stats.tasks_submitted += 1

        fut: Future = self._executor.submit(fn, *args, **kwargs)
        with self._lock:
            self._futures[name] = fut
            self._order.append(name)

        def _cb(f: Future) -> None:
            exc = f.exception()
            with self._lock:
                if exc is None:
                    self._stats.tasks_completed += 1
                else:
                    self._stats.tasks_failed += 1
            if exc is not None:
                log.error("%s/%s failed: %s", self._name, name, exc)

        fut.add_done_callback(_cb)
        return fut

    # -------------------------
    # Results
    # -------------------------
    def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for all tasks. Returns False if some are still running at timeout."""
        with self._lock:
            futures = list(self._futures.values())
        _, not_done = wait(futures, timeout=timeout)
        return not not_done

    def errors(self) -> List[Tuple[str, BaseException]]:
        """Exceptions of finished tasks, in submission order."""
        out: List[Tuple[str, BaseException]] = []
        with self._lock:
            items = [(n, self._futures[n]) for n in self._order]
        for name, fut in items:
            if fut.done() and not fut.cancelled():
                exc = fut.exception()
                if exc is not None:
                    out.append((name, exc))
        return out

    def error_of(self, name: str) -> Optional[BaseException]:
        with self._lock:
            fut = self._futures.get(name)
        if fut is None or not fut.done() or fut.cancelled():
            return None
        return fut.exception()
