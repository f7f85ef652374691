from __future__ import annotations

import logging
import os
import threading
import time
from pathlib import Path
from typing import Protocol, runtime_checkable

"""Mutual-exclusion primitives guarding a destination table.

The reconciler wraps its read-index-write sequence in one of these locks so that two batch
runs (or a run and a manual edit made through the same tooling) cannot interleave. Waiting
is always bounded; a timeout raises ``LockTimeoutError`` and is fatal only for the call
that asked for the lock.
"""

__all__ = [
    "TableLock",
    "ThreadTableLock",
    "FileTableLock",
    "LockTimeoutError",
    "DEFAULT_LOCK_TIMEOUT",
]

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 30.0  # seconds
_POLL_INTERVAL = 0.1


class LockTimeoutError(Exception):
    """Raised when a table lock could not be acquired within the timeout."""


@runtime_checkable
class TableLock(Protocol):
    def acquire(self, timeout: float = DEFAULT_LOCK_TIMEOUT) -> None: ...

    def release(self) -> None: ...


class ThreadTableLock:
    """In-process lock (threads of one interpreter)."""

    def __init__(self, name: str = "table") -> None:
        self.name = name
        self._lock = threading.Lock()

    def acquire(self, timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        if not self._lock.acquire(timeout=max(timeout, 0)):
            raise LockTimeoutError(f"timed out after {timeout}s waiting for lock on '{self.name}'")

    def release(self) -> None:
        self._lock.release()

    @property
    def locked(self) -> bool:
        return self._lock.locked()


def _process_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True  # 他ユーザのプロセス
    return True


class FileTableLock:
    """Cross-process lock based on exclusive creation of a lock file.

    The lock file holds the owner's PID. ``release`` removes it; a file left behind by a
    process that no longer exists (POSIX only) is taken over on the next ``acquire``.
    """

    def __init__(self, path: Path | str, *, poll_interval: float = _POLL_INTERVAL) -> None:
        self.path = Path(path)
        self.poll_interval = poll_interval
        self._held = False

    def acquire(self, timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        deadline = time.monotonic() + timeout
        while True:
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            except FileExistsError:
                if self._break_stale():
                    continue
                if time.monotonic() >= deadline:
                    raise LockTimeoutError(
                        f"timed out after {timeout}s waiting for lock file {self.path}"
                    ) from None
                time.sleep(self.poll_interval)
                continue
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(str(os.getpid()))
            self._held = True
            logger.debug("acquired lock %s", self.path)
            return

    def _owner_pid(self) -> int | None:
        try:
            text = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        return int(text) if text.isdigit() else None

    def _break_stale(self) -> bool:
        """Remove the lock file if its owner process is gone. True when removed."""
        if os.name != "posix":
            return False
        pid = self._owner_pid()
        # PID 未記入 (作成直後) は生存扱い
        if pid is None or pid == os.getpid() or _process_alive(pid):
            return False
        logger.warning("removing stale lock %s left by process %d", self.path, pid)
        self.path.unlink(missing_ok=True)
        return True

    def release(self) -> None:
        if not self._held:
            raise RuntimeError(f"lock {self.path} is not held")
        self._held = False
        try:
            self.path.unlink()
        except FileNotFoundError:
            logger.warning("lock file %s vanished before release", self.path)
        logger.debug("released lock %s", self.path)

    @property
    def locked(self) -> bool:
        return self.path.exists()
