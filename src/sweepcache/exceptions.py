"""
Custom exception hierarchy for the file cache.

All exceptions inherit from CacheError, which provides optional context
for structured error handling and logging.
"""

from __future__ import annotations

from typing import Any


class CacheError(Exception):
    """Base exception for all cache errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class ConfigurationError(CacheError):
    """Raised when configuration is invalid or missing.

    Examples:
        - File lock backend selected without a lock directory
        - Staging directory nested inside the base directory
    """

    pass


class InvalidKeyError(CacheError):
    """Raised when a key cannot be used as a single file name.

    Context should include:
        - key: The rejected key
    """

    pass


class EntryNotFoundError(CacheError):
    """Raised when a key is absent on read or delete.

    Context should include:
        - key: The key that was requested
    """

    pass


class EntryExistsError(CacheError):
    """Raised when writing to a key that already holds an entry.

    Entries are create-only; the existing content is left untouched.
    """

    pass


class LockContentionError(CacheError):
    """Raised when a lock key is already held.

    Context should include:
        - lock_key: The lock that could not be acquired
    """

    pass


class StoreIOError(CacheError):
    """Raised when a filesystem operation fails.

    Wraps the underlying OSError (permission denied, disk full,
    unreadable directory, ...). Context should include:
        - path: The path being operated on
        - operation: What the store was doing
    """

    pass


class SchedulerStateError(CacheError):
    """Raised on an illegal sweep scheduler transition (e.g. restart)."""

    pass


class SweepCancelledError(CacheError):
    """Raised when a sweep is requested from a stopped scheduler."""

    pass
