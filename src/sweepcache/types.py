"""
Core types for the file cache.

This module defines the data structures shared by the store, the
eviction engine and the sweep scheduler:
- CacheEntry: immutable snapshot of one cached file
- SweepReport: outcome of one combined TTL + size eviction pass
- SchedulerState: lifecycle of the background sweep
- Helper functions for ID generation and timestamps
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from uuid6 import uuid7


def generate_id(prefix: str = "") -> str:
    """Generate a time-ordered unique ID using UUID7.

    Args:
        prefix: Optional prefix for the ID (e.g., "sweep")

    Returns:
        A unique ID string, optionally prefixed.
    """
    uid = str(uuid7())
    return f"{prefix}_{uid}" if prefix else uid


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def to_timestamp(value: datetime | float | int) -> float:
    """Normalize a datetime or POSIX seconds value to POSIX seconds."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    return float(value)


class SchedulerState(str, Enum):
    """Lifecycle of a sweep scheduler. STOPPED is terminal."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass(frozen=True)
class CacheEntry:
    """Snapshot of one cache entry as seen on disk.

    The file's modification time doubles as the last-access time: it is
    set when the entry is committed and bumped on every read.
    """

    name: str
    size: int
    last_access: float  # POSIX seconds (file mtime)

    @property
    def last_access_at(self) -> datetime:
        """Last access as an aware UTC datetime."""
        return datetime.fromtimestamp(self.last_access, tz=timezone.utc)

    def age(self, now: float) -> float:
        """Seconds elapsed since the last access."""
        return now - self.last_access


@dataclass
class SweepReport:
    """Outcome of one combined eviction pass."""

    sweep_id: str
    started_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None

    expired_count: int = 0
    evicted_count: int = 0
    evicted_bytes: int = 0

    @property
    def deleted_count(self) -> int:
        """Total entries removed by both strategies."""
        return self.expired_count + self.evicted_count

    @property
    def duration_seconds(self) -> float | None:
        """Wall-clock duration of the pass, once completed."""
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, object]:
        """Serialize for JSON output."""
        return {
            "sweep_id": self.sweep_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "expired_count": self.expired_count,
            "evicted_count": self.evicted_count,
            "evicted_bytes": self.evicted_bytes,
        }
