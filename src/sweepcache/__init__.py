"""
sweepcache - disk-backed key/value cache with TTL and size eviction.

Each key is one file on disk; values are streamed in and out, writes are
atomic and create-only, and a background sweep evicts idle entries and
keeps the cache under its size budget.
"""

from sweepcache.cache import FileCache
from sweepcache.exceptions import (
    CacheError,
    ConfigurationError,
    EntryExistsError,
    EntryNotFoundError,
    InvalidKeyError,
    LockContentionError,
    SchedulerStateError,
    StoreIOError,
    SweepCancelledError,
)
from sweepcache.locks import FileLockProvider, InProcessLockProvider, LockProvider, NullLockProvider
from sweepcache.types import CacheEntry, SchedulerState, SweepReport

__version__ = "0.1.0"

__all__ = [
    "CacheEntry",
    "CacheError",
    "ConfigurationError",
    "EntryExistsError",
    "EntryNotFoundError",
    "FileCache",
    "FileLockProvider",
    "InProcessLockProvider",
    "InvalidKeyError",
    "LockContentionError",
    "LockProvider",
    "NullLockProvider",
    "SchedulerState",
    "SchedulerStateError",
    "StoreIOError",
    "SweepCancelledError",
    "SweepReport",
    "__version__",
]
