"""
Eviction engine: TTL pass followed by a size (LRU) pass.

Both passes walk the same ordered snapshot of the base directory, least
recently used first, and delete through the store so per-key locks are
honoured. The combined pass holds the global lock for its full duration.

Failure policy:
- A listing failure is soft: it is logged and treated as nothing to evict.
- An entry that disappears between listing and deletion is skipped.
- Any other deletion failure aborts the pass and propagates.
"""

from __future__ import annotations

import time
from datetime import datetime

from sweepcache.exceptions import ConfigurationError, EntryNotFoundError, StoreIOError
from sweepcache.locks import GLOBAL_LOCK_KEY, LockProvider
from sweepcache.logging import get_logger, log_context
from sweepcache.store import FileStore
from sweepcache.types import CacheEntry, SweepReport, generate_id, to_timestamp, utc_now

logger = get_logger(__name__)

DEFAULT_MAX_AGE_SECONDS = 4 * 60 * 60
DEFAULT_MAX_SIZE_BYTES = 1024 * 1024 * 1024


def bytes_to_mb(size: int) -> float:
    return size / (1024 * 1024)


class EvictionEngine:
    """Applies the TTL and total-size budgets to a FileStore."""

    def __init__(
        self,
        store: FileStore,
        max_age: float = DEFAULT_MAX_AGE_SECONDS,
        max_size: int = DEFAULT_MAX_SIZE_BYTES,
        lock_provider: LockProvider | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            store: Store whose entries are evicted.
            max_age: Entries not accessed for longer than this many seconds
                are expired.
            max_size: Budget for the total size of the base directory, in bytes.
            lock_provider: Provider for the global sweep lock. Defaults to
                the store's provider.
        """
        if max_age <= 0:
            raise ConfigurationError("max_age must be positive", {"max_age": max_age})
        if max_size <= 0:
            raise ConfigurationError("max_size must be positive", {"max_size": max_size})

        self.store = store
        self.max_age = float(max_age)
        self.max_size = int(max_size)
        self.lock_provider = lock_provider or store.lock_provider

    def _snapshot(self) -> list[CacheEntry]:
        try:
            return self.store.list_entries()
        except StoreIOError as exc:
            logger.warning(
                "Cannot list cache directory, nothing will be evicted",
                base_dir=str(self.store.base_dir),
                error=str(exc.__cause__ or exc),
            )
            return []

    def _delete(self, entry: CacheEntry) -> bool:
        try:
            self.store.delete(entry.name)
        except EntryNotFoundError:
            logger.debug("Cache entry already gone", key=entry.name)
            return False
        return True

    def evict_expired(self, now: datetime | float | None = None) -> int:
        """Delete every entry whose last access is older than max_age.

        Args:
            now: Reference time; defaults to the current time.

        Returns:
            Number of entries deleted.
        """
        ref = time.time() if now is None else to_timestamp(now)
        count = 0

        with log_context(strategy="ttl"):
            for entry in self._snapshot():
                if entry.age(ref) > self.max_age:
                    if self._delete(entry):
                        count += 1
                        logger.debug("Cleaned cache file", key=entry.name)
            logger.info("Cleaned expired cache files", count=count)

        return count

    def evict_oversize(self) -> tuple[int, int]:
        """Delete least recently used entries until the size budget holds.

        Stops at the first entry that brings the freed total up to the
        excess, so the store may end up slightly below max_size.
        Files in sub-directories count toward the total size but are never
        listed, so they can keep the budget out of reach; that is logged.

        Returns:
            Tuple of (entries deleted, bytes freed).

        Raises:
            StoreIOError: If the current size cannot be measured or an
                entry cannot be deleted.
        """
        current = self.store.total_size()
        excess = current - self.max_size
        if excess <= 0:
            return (0, 0)

        count = 0
        freed = 0
        with log_context(strategy="lru"):
            for entry in self._snapshot():
                if self._delete(entry):
                    count += 1
                    logger.debug("Cleaned cache file", key=entry.name, size=entry.size)
                # A vanished entry no longer occupies space either
                freed += entry.size
                if freed >= excess:
                    break
            else:
                logger.warning(
                    "Size budget not reached after evicting every entry",
                    excess=excess,
                    freed=freed,
                    base_dir=str(self.store.base_dir),
                )
            logger.info(
                "Cleaned cache files over size budget",
                count=count,
                freed_mb=f"{bytes_to_mb(freed):.2f}",
            )

        return (count, freed)

    def run(self, now: datetime | float | None = None) -> SweepReport:
        """Run the TTL pass then the size pass under the global lock.

        Args:
            now: Reference time for the TTL pass.

        Returns:
            SweepReport describing what was removed.

        Raises:
            LockContentionError: If another sweep or clear holds the global lock.
            StoreIOError: If a deletion fails.
        """
        report = SweepReport(sweep_id=generate_id("sweep"))

        with log_context(sweep_id=report.sweep_id):
            logger.info("Starting cache eviction")
            with self.lock_provider.acquire(GLOBAL_LOCK_KEY):
                report.expired_count = self.evict_expired(now)
                report.evicted_count, report.evicted_bytes = self.evict_oversize()
            report.completed_at = utc_now()
            logger.info(
                "Finished cache eviction",
                deleted=report.deleted_count,
                seconds=f"{report.duration_seconds:.3f}",
            )

        return report
