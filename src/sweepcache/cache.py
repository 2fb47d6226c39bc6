"""
FileCache: the embeddable public surface.

Wires a FileStore, an EvictionEngine and a SweepScheduler around one lock
provider. User calls go straight to the store; the background sweep goes
through the engine.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import BinaryIO

from sweepcache.config import Settings
from sweepcache.eviction import DEFAULT_MAX_AGE_SECONDS, DEFAULT_MAX_SIZE_BYTES, EvictionEngine
from sweepcache.exceptions import ConfigurationError
from sweepcache.locks import FileLockProvider, InProcessLockProvider, LockProvider, NullLockProvider
from sweepcache.logging import get_logger, setup_logging
from sweepcache.scheduler import DEFAULT_SWEEP_INTERVAL_SECONDS, SweepScheduler
from sweepcache.store import FileStore, Source
from sweepcache.types import CacheEntry, SchedulerState, SweepReport

logger = get_logger(__name__)


def build_lock_provider(settings: Settings) -> LockProvider:
    """Create the lock provider selected by CACHE_LOCK_BACKEND."""
    if settings.CACHE_LOCK_BACKEND == "process":
        return InProcessLockProvider()
    if settings.CACHE_LOCK_BACKEND == "file":
        if settings.CACHE_LOCK_DIR is None:
            raise ConfigurationError("CACHE_LOCK_DIR is required for the file lock backend")
        return FileLockProvider(settings.CACHE_LOCK_DIR)
    return NullLockProvider()


class FileCache:
    """Disk-backed key/value cache with TTL and size eviction.

    Example:
        cache = FileCache("filecache", staging_dir="tmp", max_size=10 * 1024 * 1024)
        cache.write("key", io.BytesIO(b"ABC"))
        with cache.read("key") as f:
            data = f.read()
    """

    def __init__(
        self,
        base_dir: str | Path = "filecache",
        staging_dir: str | Path | None = None,
        max_age: float = DEFAULT_MAX_AGE_SECONDS,
        max_size: int = DEFAULT_MAX_SIZE_BYTES,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        lock_provider: LockProvider | None = None,
    ) -> None:
        self.lock_provider = lock_provider or NullLockProvider()
        self.store = FileStore(base_dir, staging_dir, self.lock_provider)
        self.engine = EvictionEngine(self.store, max_age=max_age, max_size=max_size)
        self.sweep_interval = sweep_interval
        self._scheduler: SweepScheduler | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> FileCache:
        """Build a cache from loaded settings and apply LOG_LEVEL."""
        setup_logging(settings.LOG_LEVEL)
        return cls(
            base_dir=settings.CACHE_BASE_DIR,
            staging_dir=settings.CACHE_STAGING_DIR,
            max_age=settings.CACHE_MAX_AGE_SECONDS,
            max_size=settings.CACHE_MAX_SIZE_BYTES,
            sweep_interval=settings.CACHE_SWEEP_INTERVAL_SECONDS,
            lock_provider=build_lock_provider(settings),
        )

    @property
    def base_dir(self) -> Path:
        return self.store.base_dir

    @property
    def staging_dir(self) -> Path:
        return self.store.staging_dir

    # Entry operations

    def write(self, key: str, source: Source) -> int:
        """Create an entry for key from a binary stream or bytes."""
        return self.store.write(key, source)

    def read(self, key: str) -> BinaryIO:
        """Open an entry for reading; the caller closes the returned file."""
        return self.store.read(key)

    def read_bytes(self, key: str) -> bytes:
        """Read a whole entry into memory."""
        with self.store.read(key) as f:
            return f.read()

    def exists(self, key: str) -> bool:
        return self.store.exists(key)

    def delete(self, key: str) -> None:
        self.store.delete(key)

    def touch(self, key: str, timestamp: datetime | float | None = None) -> None:
        self.store.touch(key, timestamp)

    def clear(self) -> None:
        """Remove every entry and the cache directories."""
        self.store.clear()

    def list_entries(self) -> list[CacheEntry]:
        """Entries ordered by last access, oldest first."""
        return self.store.list_entries()

    def total_size(self) -> int:
        return self.store.total_size()

    # Eviction

    def evict(self, now: datetime | float | None = None) -> SweepReport:
        """Run one TTL + size eviction pass now. Errors propagate."""
        return self.engine.run(now)

    @property
    def sweep_state(self) -> SchedulerState:
        if self._scheduler is None:
            return SchedulerState.IDLE
        return self._scheduler.state

    @property
    def scheduler(self) -> SweepScheduler | None:
        return self._scheduler

    def start_sweep(self) -> SweepScheduler:
        """Start the background sweep on the running event loop.

        A stopped sweep is replaced by a fresh scheduler.
        """
        if self._scheduler is None or self._scheduler.state is SchedulerState.STOPPED:
            self._scheduler = SweepScheduler(self.engine, interval=self.sweep_interval)
        self._scheduler.start()
        return self._scheduler

    def stop_sweep(self) -> bool:
        """Stop the background sweep. Safe to call repeatedly."""
        if self._scheduler is None:
            return False
        return self._scheduler.stop()

    async def wait_sweep_closed(self) -> None:
        """Wait until a stopped background sweep has exited."""
        if self._scheduler is not None:
            await self._scheduler.wait_closed()
