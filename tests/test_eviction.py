"""
Tests for the eviction engine.
"""

from __future__ import annotations

import json
import time
from pathlib import Path

import pytest

from sweepcache.eviction import EvictionEngine
from sweepcache.exceptions import (
    ConfigurationError,
    EntryNotFoundError,
    LockContentionError,
    StoreIOError,
)
from sweepcache.locks import GLOBAL_LOCK_KEY, InProcessLockProvider
from sweepcache.logging import setup_logging
from sweepcache.store import FileStore

DATA = b"bytesample"


def names(store: FileStore) -> list[str]:
    return [entry.name for entry in store.list_entries()]


@pytest.fixture
def locked_store(base_dir: Path, staging_dir: Path) -> FileStore:
    return FileStore(base_dir, staging_dir, InProcessLockProvider())


class TestTTLPass:
    """Test age-based eviction."""

    def test_only_fresh_entry_survives(self, store: FileStore) -> None:
        """Test that entries idle past max_age are evicted after a real wait."""
        engine = EvictionEngine(store, max_age=1)
        store.write("key1", b"ABC1")
        store.write("key2", b"ABC2")
        time.sleep(1.1)
        store.write("key3", b"ABC3")

        deleted = engine.evict_expired()

        assert deleted == 2
        assert names(store) == ["key3"]

    def test_uses_reference_time(self, store: FileStore) -> None:
        """Test age is measured against the given reference time."""
        engine = EvictionEngine(store, max_age=60)
        store.write("old", b"x")
        store.write("new", b"x")
        store.touch("old", 1_000.0)
        store.touch("new", 1_050.0)

        assert engine.evict_expired(now=1_100.0) == 1
        assert names(store) == ["new"]

    def test_entry_exactly_at_max_age_is_kept(self, store: FileStore) -> None:
        """Test that expiry requires strictly exceeding max_age."""
        engine = EvictionEngine(store, max_age=60)
        store.write("edge", b"x")
        store.touch("edge", 1_000.0)

        assert engine.evict_expired(now=1_060.0) == 0
        assert names(store) == ["edge"]

    def test_ignores_size_budget(self, store: FileStore) -> None:
        """Test that all expired entries go even when the cache is small."""
        engine = EvictionEngine(store, max_age=10, max_size=1024 * 1024)
        for key in ["a", "b", "c"]:
            store.write(key, b"x")
            store.touch(key, 0.0)

        assert engine.evict_expired(now=100.0) == 3
        assert names(store) == []


class TestSizePass:
    """Test size-based eviction."""

    def test_oldest_entries_evicted_until_under_budget(self, store: FileStore) -> None:
        """Test that back-dated entries go first and one entry remains."""
        engine = EvictionEngine(store, max_size=len(DATA) * 2 - 1)
        store.write("key1", DATA)
        store.write("key2", DATA)
        store.write("key3", DATA)
        minute_ago = time.time() - 60
        store.touch("key1", minute_ago)
        store.touch("key3", minute_ago)

        count, freed = engine.evict_oversize()

        assert count == 2
        assert freed == 2 * len(DATA)
        assert names(store) == ["key2"]

    def test_noop_within_budget(self, store: FileStore) -> None:
        """Test that nothing is removed while total size fits."""
        engine = EvictionEngine(store, max_size=len(DATA) * 3)
        for key in ["a", "b", "c"]:
            store.write(key, DATA)

        assert engine.evict_oversize() == (0, 0)
        assert len(names(store)) == 3

    def test_stops_at_first_sufficiency(self, store: FileStore) -> None:
        """Test that one large old entry covering the excess is enough."""
        engine = EvictionEngine(store, max_size=15)
        store.write("big", b"x" * 20)
        store.write("small1", b"x" * 5)
        store.write("small2", b"x" * 5)
        store.touch("big", 1_000.0)
        store.touch("small1", 2_000.0)
        store.touch("small2", 3_000.0)

        count, freed = engine.evict_oversize()

        # 30 bytes, excess 15: deleting "big" alone overshoots to 10 bytes
        assert (count, freed) == (1, 20)
        assert names(store) == ["small1", "small2"]

    def test_recently_read_entry_survives(self, store: FileStore) -> None:
        """Test that reading an entry protects it from LRU eviction."""
        engine = EvictionEngine(store, max_size=len(DATA))
        store.write("a", DATA)
        store.write("b", DATA)
        store.touch("a", time.time() - 120)
        store.touch("b", time.time() - 60)

        store.read("a").close()
        engine.evict_oversize()

        assert names(store) == ["a"]

    def test_warns_when_budget_out_of_reach(
        self, store: FileStore, base_dir: Path, temp_dir: Path
    ) -> None:
        """Test that nested files the pass cannot evict are reported."""
        log_path = temp_dir / "sweep.jsonl"
        setup_logging("INFO", log_file=log_path, console_output=False)
        engine = EvictionEngine(store, max_size=60)
        (base_dir / "sub").mkdir()
        (base_dir / "sub" / "big").write_bytes(b"x" * 100)
        for key in ["a", "b", "c"]:
            store.write(key, b"x" * 10)

        count, freed = engine.evict_oversize()

        assert (count, freed) == (3, 30)
        assert names(store) == []
        records = [json.loads(line) for line in log_path.read_text().splitlines()]
        warnings = [r for r in records if r["level"] == "WARNING"]
        assert [r["message"] for r in warnings] == [
            "Size budget not reached after evicting every entry"
        ]
        assert warnings[0]["extra"]["excess"] == 70

    def test_no_warning_when_budget_reached(self, store: FileStore, temp_dir: Path) -> None:
        """Test that a normal size pass logs no warning."""
        log_path = temp_dir / "sweep.jsonl"
        setup_logging("INFO", log_file=log_path, console_output=False)
        engine = EvictionEngine(store, max_size=len(DATA))
        for key in ["a", "b"]:
            store.write(key, DATA)

        engine.evict_oversize()

        records = [json.loads(line) for line in log_path.read_text().splitlines()]
        assert all(r["level"] != "WARNING" for r in records)


class TestRun:
    """Test the combined pass."""

    def test_ttl_then_size(self, store: FileStore) -> None:
        """Test that the report counts both strategies."""
        engine = EvictionEngine(store, max_age=100, max_size=len(DATA))
        now = time.time()
        for key in ["expired", "old", "new"]:
            store.write(key, DATA)
        store.touch("expired", now - 1_000)
        store.touch("old", now - 50)
        store.touch("new", now - 10)

        report = engine.run(now=now)

        assert report.expired_count == 1
        assert report.evicted_count == 1
        assert report.evicted_bytes == len(DATA)
        assert report.deleted_count == 2
        assert report.completed_at is not None
        assert report.sweep_id.startswith("sweep_")
        assert names(store) == ["new"]

    def test_second_run_deletes_nothing(self, store: FileStore) -> None:
        """Test that a sweep is idempotent without intervening writes."""
        engine = EvictionEngine(store, max_age=100, max_size=len(DATA) * 2)
        now = time.time()
        for offset, key in enumerate(["a", "b", "c", "d"]):
            store.write(key, DATA)
            store.touch(key, now - 200 + offset * 60)

        first = engine.run(now=now)
        second = engine.run(now=now)

        assert first.deleted_count > 0
        assert second.deleted_count == 0
        assert second.evicted_bytes == 0

    def test_holds_global_lock(self, locked_store: FileStore) -> None:
        """Test that a sweep cannot start while the global lock is held."""
        engine = EvictionEngine(locked_store, max_age=1)
        held = locked_store.lock_provider.acquire(GLOBAL_LOCK_KEY)

        with pytest.raises(LockContentionError):
            engine.run()

        held.release()
        engine.run()

    def test_releases_global_lock_on_error(
        self, locked_store: FileStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that a failing pass still releases the global lock."""
        engine = EvictionEngine(locked_store, max_age=1)
        locked_store.write("key", DATA)
        locked_store.touch("key", 0.0)

        def boom(key: str) -> None:
            raise StoreIOError("disk on fire", {"path": key, "operation": "delete"})

        monkeypatch.setattr(locked_store, "delete", boom)

        with pytest.raises(StoreIOError):
            engine.run()

        provider = locked_store.lock_provider
        assert isinstance(provider, InProcessLockProvider)
        assert not provider.is_held(GLOBAL_LOCK_KEY)


class TestFailurePolicy:
    """Test soft and hard failures."""

    def test_listing_failure_is_soft(
        self, store: FileStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that an unreadable directory means nothing to evict."""
        engine = EvictionEngine(store, max_age=1, max_size=1)
        store.write("key", DATA)
        store.touch("key", 0.0)

        def unreadable() -> list:
            raise StoreIOError("permission denied", {"operation": "list"})

        monkeypatch.setattr(store, "list_entries", unreadable)

        assert engine.evict_expired() == 0
        assert engine.evict_oversize() == (0, 0)
        assert store.exists("key")

    def test_delete_failure_aborts_pass(
        self, store: FileStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that a failed deletion stops the remaining pass."""
        engine = EvictionEngine(store, max_age=1)
        for key in ["a", "b", "c"]:
            store.write(key, DATA)
        store.touch("a", 1.0)
        store.touch("b", 2.0)
        store.touch("c", 3.0)

        real_delete = store.delete

        def flaky_delete(key: str) -> None:
            if key == "b":
                raise StoreIOError("read-only filesystem", {"operation": "delete"})
            real_delete(key)

        monkeypatch.setattr(store, "delete", flaky_delete)

        with pytest.raises(StoreIOError):
            engine.evict_expired()

        assert names(store) == ["b", "c"]

    def test_vanished_entry_is_skipped(
        self, store: FileStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that an entry deleted concurrently does not abort the pass."""
        engine = EvictionEngine(store, max_age=1)
        for key in ["a", "b"]:
            store.write(key, DATA)
            store.touch(key, 0.0)

        real_delete = store.delete

        def racing_delete(key: str) -> None:
            if key == "a":
                real_delete(key)
                raise EntryNotFoundError("Cache entry not found", {"key": key})
            real_delete(key)

        monkeypatch.setattr(store, "delete", racing_delete)

        assert engine.evict_expired() == 1
        assert names(store) == []


class TestConfiguration:
    """Test engine parameter validation."""

    @pytest.mark.parametrize("kwargs", [{"max_age": 0}, {"max_age": -1}, {"max_size": 0}])
    def test_rejects_non_positive_budgets(self, store: FileStore, kwargs: dict) -> None:
        """Test that zero or negative budgets are refused."""
        with pytest.raises(ConfigurationError):
            EvictionEngine(store, **kwargs)
