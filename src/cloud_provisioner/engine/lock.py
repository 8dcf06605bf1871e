"""Local state locking."""

from __future__ import annotations

import os
import sys
import time
from pathlib import Path
from typing import TYPE_CHECKING

from cloud_provisioner.engine.errors import StateLockError

if TYPE_CHECKING:
    from types import TracebackType

try:
    import fcntl  # type: ignore[attr-defined]
except ImportError:  # pragma: no cover
    fcntl = None  # type: ignore[assignment]

_POLL_INTERVAL = 0.1


class StateLock:
    """Exclusive lock for a local state file.

    With ``timeout=None`` acquisition blocks until the lock is free; otherwise
    it gives up after *timeout* seconds and reports who holds the lock.
    """

    def __init__(
        self, state_path: Path, *, timeout: float | None = None, holder: str | None = None
    ) -> None:
        self._lock_path = Path(str(state_path) + ".lock")
        self._timeout = timeout
        self._holder = holder or f"pid {os.getpid()}"
        self._file = None

    def __enter__(self) -> StateLock:
        # Keep fd open for lifetime of the lock.
        self._lock_path.parent.mkdir(parents=True, exist_ok=True)
        self._file = self._lock_path.open("a+", encoding="utf-8")
        try:
            self._acquire()
        except Exception as e:
            try:
                self._file.close()
            finally:
                self._file = None
            if isinstance(e, StateLockError):
                raise
            raise StateLockError(str(e)) from e
        self._file.seek(0)
        self._file.truncate()
        self._file.write(self._holder + "\n")
        self._file.flush()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._file is None:
            return
        try:
            self._file.seek(0)
            self._file.truncate()
            self._release()
        finally:
            self._file.close()
            self._file = None

    def _current_holder(self) -> str:
        try:
            return self._lock_path.read_text(encoding="utf-8").strip() or "unknown"
        except OSError:
            return "unknown"

    def _acquire(self) -> None:
        if self._file is None:
            raise StateLockError("Lock file is not open")

        if fcntl is None:  # pragma: no cover
            if sys.platform == "win32":
                import msvcrt

                msvcrt.locking(self._file.fileno(), msvcrt.LK_LOCK, 1)
                return
            raise StateLockError("State locking is not supported on this platform")

        if self._timeout is None:
            fcntl.flock(self._file.fileno(), fcntl.LOCK_EX)
            return

        deadline = time.monotonic() + self._timeout
        while True:
            try:
                fcntl.flock(self._file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                return
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    raise StateLockError(
                        f"State is locked by {self._current_holder()} ({self._lock_path})"
                    ) from None
                time.sleep(_POLL_INTERVAL)

    def _release(self) -> None:
        if self._file is None:
            return

        if fcntl is not None:
            fcntl.flock(self._file.fileno(), fcntl.LOCK_UN)
            return

        if sys.platform == "win32":  # pragma: no cover
            import msvcrt

            msvcrt.locking(self._file.fileno(), msvcrt.LK_UNLCK, 1)
