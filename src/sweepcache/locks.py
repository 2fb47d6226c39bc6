"""
Pluggable mutual exclusion for cache mutations.

Mutating store operations take a per-key lock; sweeps and whole-store
clears take the global lock. Providers fail fast with
LockContentionError instead of blocking when a key is already held.

Implementations:
- NullLockProvider: always succeeds (single-process trust model)
- InProcessLockProvider: lock table shared by threads of one process
- FileLockProvider: advisory flock() locks shared across processes
"""

from __future__ import annotations

import fcntl
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from types import TracebackType

from sweepcache.exceptions import LockContentionError, StoreIOError
from sweepcache.logging import get_logger

logger = get_logger(__name__)

GLOBAL_LOCK_KEY = "lock_filecache"


def key_lock_name(key: str) -> str:
    """Lock name guarding mutations of a single cache key."""
    return f"{GLOBAL_LOCK_KEY}_{key}"


class Lock(ABC):
    """A held lock. release() may be called any number of times."""

    def __init__(self, key: str) -> None:
        self.key = key
        self._released = False
        self._release_mutex = threading.Lock()

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        """Release the lock; later calls are no-ops."""
        with self._release_mutex:
            if self._released:
                return
            self._released = True
        self._do_release()

    @abstractmethod
    def _do_release(self) -> None:
        """Give the lock back to its provider."""
        ...

    def __enter__(self) -> Lock:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()


class LockProvider(ABC):
    """Abstract interface for lock providers."""

    @abstractmethod
    def acquire(self, key: str) -> Lock:
        """Acquire the lock named key.

        Raises:
            LockContentionError: If the lock is already held.
        """
        ...


class _NullLock(Lock):
    def _do_release(self) -> None:
        pass


class NullLockProvider(LockProvider):
    """Lock provider that never contends."""

    def acquire(self, key: str) -> Lock:
        return _NullLock(key)


class _InProcessLock(Lock):
    def __init__(self, key: str, provider: InProcessLockProvider) -> None:
        super().__init__(key)
        self._provider = provider

    def _do_release(self) -> None:
        self._provider._discard(self.key)


class InProcessLockProvider(LockProvider):
    """Non-blocking lock table for threads sharing one process."""

    def __init__(self) -> None:
        self._held: set[str] = set()
        self._mutex = threading.Lock()

    def acquire(self, key: str) -> Lock:
        with self._mutex:
            if key in self._held:
                raise LockContentionError("Lock already held", {"lock_key": key})
            self._held.add(key)
        return _InProcessLock(key, self)

    def is_held(self, key: str) -> bool:
        with self._mutex:
            return key in self._held

    def _discard(self, key: str) -> None:
        with self._mutex:
            self._held.discard(key)


class _FileLock(Lock):
    def __init__(self, key: str, fd: int) -> None:
        super().__init__(key)
        self._fd = fd

    def _do_release(self) -> None:
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)


class FileLockProvider(LockProvider):
    """Advisory locks on files in a shared directory.

    Each lock name maps to ``<lock_dir>/<name>.lock``. Lock files are left
    in place after release; only the flock() on them is meaningful. Locks
    are held per open file, so two acquisitions from the same process also
    contend.
    """

    def __init__(self, lock_dir: str | Path) -> None:
        self.lock_dir = Path(lock_dir).absolute()
        self.lock_dir.mkdir(parents=True, exist_ok=True)

    def _lock_path(self, key: str) -> Path:
        return self.lock_dir / f"{key}.lock"

    def acquire(self, key: str) -> Lock:
        path = self._lock_path(key)
        try:
            fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o666)
        except OSError as exc:
            raise StoreIOError(
                "Failed to open lock file", {"path": str(path), "operation": "lock"}
            ) from exc

        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            raise LockContentionError("Lock already held", {"lock_key": key}) from None
        except OSError as exc:
            os.close(fd)
            raise StoreIOError(
                "Failed to lock file", {"path": str(path), "operation": "lock"}
            ) from exc

        logger.debug("Acquired file lock", lock_key=key)
        return _FileLock(key, fd)
