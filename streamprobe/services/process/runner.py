# streamprobe/services/process/runner.py
from __future__ import annotations

import collections
import os
import shlex
import signal
import subprocess
import threading
from pathlib import Path
from typing import Callable, Deque, Dict, List, Optional, Sequence

from streamprobe.common.concurrency.context import RunContext
from streamprobe.common.logging import get_logger
from streamprobe.services.process.errors import SpawnFailure

logger = get_logger(__name__)

_POLL_SEC = 0.1


class ManagedProcess:
    """
    One supervised OS process whose stdout and stderr are merged into a single
    text stream (or stdout alone with merge_stderr=False).

    - A reader thread hands every line to `on_line` and keeps a short tail for
      error messages. It never blocks exit detection: wait() watches the
      process itself, not the reader.
    - stop() is SIGTERM, then SIGKILL after `grace_sec`. A process stopped this
      way is flagged `stopped_by_us` so callers can tell a cooperative exit
      from a crash.
    """

    def __init__(
        self,
        argv: Sequence[str],
        *,
        name: str = "proc",
        cwd: Optional[Path | str] = None,
        env: Optional[Dict[str, str]] = None,
        grace_sec: float = 5.0,
        on_line: Optional[Callable[[str], None]] = None,
        tail_lines: int = 64,
        merge_stderr: bool = True,
    ) -> None:
        if not argv:
            raise ValueError("argv must not be empty")
        self.argv: List[str] = [str(a) for a in argv]
        self.name = name
        self.cwd = str(cwd) if cwd is not None else None
        self.env = env
        self.grace_sec = grace_sec
        self._on_line = on_line
        self.merge_stderr = merge_stderr

        self._proc: Optional[subprocess.Popen] = None
        self._reader: Optional[threading.Thread] = None
        self._tail: Deque[str] = collections.deque(maxlen=tail_lines)
        self._tail_lock = threading.Lock()
        self._stop_lock = threading.Lock()
        self._stopped_by_us = False

    # -------------------------
    # Lifecycle
    # -------------------------
    def start(self) -> "ManagedProcess":
        logger.info("%s: starting %s", self.name, " ".join(shlex.quote(a) for a in self.argv))
        env = None
        if self.env is not None:
            env = {**os.environ, **self.env}
        try:
            self._proc = subprocess.Popen(
                self.argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT if self.merge_stderr else subprocess.DEVNULL,
                cwd=self.cwd,
                env=env,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                start_new_session=True,
            )
        except OSError as e:
            raise SpawnFailure(f"{self.name}: cannot start {self.argv[0]}: {e}") from e

        self._reader = threading.Thread(target=self._pump, name=f"{self.name}-reader", daemon=True)
        self._reader.start()
        return self

    def _pump(self) -> None:
        stdout = self._require().stdout
        if stdout is None:
            return
        try:
            for raw in stdout:
                line = raw.rstrip("\n")
                if not line:
                    continue
                with self._tail_lock:
                    self._tail.append(line)
                if self._on_line is not None:
                    self._on_line(line)
        except Exception as e:
            # Output is diagnostic only; the wait path decides the outcome.
            logger.warning("%s: output reader stopped: %s", self.name, e)
        finally:
            try:
                stdout.close()
            except OSError:
                pass

    def wait(self, ctx: RunContext) -> int:
        """
        Block until the process exits or `ctx` is done. In the latter case the
        process is stopped. Returns the exit code.
        """
        proc = self._require()
        while True:
            try:
                return proc.wait(timeout=_POLL_SEC)
            except subprocess.TimeoutExpired:
                pass
            if ctx.done():
                logger.info("%s: %s, stopping pid=%s", self.name, ctx.err(), proc.pid)
                return self.stop()

    def stop(self) -> int:
        """Terminate, then kill after the grace period. Returns the exit code."""
        proc = self._require()
        with self._stop_lock:
            if proc.poll() is not None:
                return proc.returncode
            self._stopped_by_us = True
            self._signal(signal.SIGTERM)
            try:
                return proc.wait(timeout=self.grace_sec)
            except subprocess.TimeoutExpired:
                logger.warning("%s: pid=%s ignored SIGTERM for %.1fs, killing", self.name, proc.pid, self.grace_sec)
            self._signal(signal.SIGKILL)
            return proc.wait()

    def _signal(self, sig: int) -> None:
        proc = self._require()
        try:
            os.killpg(proc.pid, sig)
        except ProcessLookupError:
            pass
        except OSError:
            proc.send_signal(sig)

    def join_reader(self, timeout: Optional[float] = None) -> None:
        if self._reader is not None:
            self._reader.join(timeout)

    def _require(self) -> subprocess.Popen:
        if self._proc is None:
            raise RuntimeError(f"{self.name}: not started")
        return self._proc

    # -------------------------
    # State
    # -------------------------
    @property
    def pid(self) -> Optional[int]:
        return self._proc.pid if self._proc is not None else None

    @property
    def returncode(self) -> Optional[int]:
        return self._proc.returncode if self._proc is not None else None

    @property
    def stopped_by_us(self) -> bool:
        return self._stopped_by_us

    def tail(self, n: Optional[int] = None) -> str:
        with self._tail_lock:
            lines = list(self._tail)
        if n is not None:
            lines = lines[-n:]
        return "\n".join(lines)
