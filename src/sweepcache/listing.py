"""Ordered snapshot of the entries in a cache directory."""

from __future__ import annotations

import os
import stat
from pathlib import Path

from sweepcache.exceptions import StoreIOError
from sweepcache.types import CacheEntry


def list_entries(base_dir: str | Path) -> list[CacheEntry]:
    """List the cache entries directly under base_dir, oldest access first.

    Only regular files count as entries; sub-directories and other file
    types are skipped. Entries with equal mtimes are ordered by name.

    Args:
        base_dir: The cache base directory.

    Returns:
        Entries sorted ascending by last-access time.

    Raises:
        StoreIOError: If the directory cannot be read.
    """
    snapshot: list[tuple[int, str, int]] = []
    try:
        with os.scandir(base_dir) as it:
            for dir_entry in it:
                try:
                    st = dir_entry.stat(follow_symlinks=False)
                except FileNotFoundError:
                    # Deleted between readdir and stat
                    continue
                if not stat.S_ISREG(st.st_mode):
                    continue
                snapshot.append((st.st_mtime_ns, dir_entry.name, st.st_size))
    except OSError as exc:
        raise StoreIOError(
            "Failed to list cache directory",
            {"path": str(base_dir), "operation": "list"},
        ) from exc

    snapshot.sort()
    return [
        CacheEntry(name=name, size=size, last_access=mtime_ns / 1e9)
        for mtime_ns, name, size in snapshot
    ]
