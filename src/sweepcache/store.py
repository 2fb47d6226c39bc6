"""
Filesystem-backed key/value store.

Each key is one regular file directly under the base directory, named
verbatim as the key. The file's mtime is the entry's last-access time.

Writes are create-only and atomic: content is streamed into a
``filecachetmp-*`` file in the staging directory, fsync'd, then linked
into the base directory under its final name. A partially written entry
is never visible under the base directory. The staging directory must be
on the same filesystem as the base directory.
"""

from __future__ import annotations

import errno
import os
import shutil
import stat
import tempfile
import time
from contextlib import suppress
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Union

from sweepcache.exceptions import (
    EntryExistsError,
    EntryNotFoundError,
    InvalidKeyError,
    StoreIOError,
)
from sweepcache.listing import list_entries
from sweepcache.locks import GLOBAL_LOCK_KEY, LockProvider, NullLockProvider, key_lock_name
from sweepcache.logging import get_logger
from sweepcache.types import CacheEntry, to_timestamp

logger = get_logger(__name__)

STAGING_PREFIX = "filecachetmp-"
DEFAULT_DIR_MODE = 0o777
CHUNK_SIZE = 1024 * 1024

# errno values meaning "this filesystem cannot hard-link"
_LINK_UNSUPPORTED = {errno.EPERM, errno.EOPNOTSUPP, errno.ENOTSUP, errno.EMLINK}

Source = Union[BinaryIO, bytes, bytearray, memoryview]


def validate_key(key: str) -> str:
    """Check that key can be used verbatim as a single file name.

    Raises:
        InvalidKeyError: If the key is empty, a dot entry, or contains a
            path separator or NUL byte.
    """
    if not isinstance(key, str) or not key:
        raise InvalidKeyError("Key must be a non-empty string", {"key": key})
    if key in (".", ".."):
        raise InvalidKeyError("Key cannot be a dot entry", {"key": key})
    separators = {"/", "\0", os.sep}
    if os.altsep:
        separators.add(os.altsep)
    if any(sep in key for sep in separators):
        raise InvalidKeyError("Key cannot contain a path separator", {"key": key})
    return key


def ensure_dir(directory: str | Path) -> Path:
    """Create directory (and parents) if needed and return its absolute path."""
    path = Path(directory).absolute()
    try:
        path.mkdir(mode=DEFAULT_DIR_MODE, parents=True, exist_ok=True)
    except OSError as exc:
        raise StoreIOError(
            "Failed to create directory", {"path": str(path), "operation": "mkdir"}
        ) from exc
    return path


def _is_regular_file(path: Path) -> bool:
    try:
        return stat.S_ISREG(os.lstat(path).st_mode)
    except OSError:
        return False


def _copy_stream(source: Source, dest: BinaryIO) -> int:
    if isinstance(source, (bytes, bytearray, memoryview)):
        return dest.write(source)

    written = 0
    while True:
        chunk = source.read(CHUNK_SIZE)
        if not chunk:
            break
        dest.write(chunk)
        written += len(chunk)
    return written


class FileStore:
    """Create-only file store with atomic commits.

    write() and delete() hold the per-key lock of the lock provider;
    clear() holds the global lock. read() and exists() never lock.
    """

    def __init__(
        self,
        base_dir: str | Path,
        staging_dir: str | Path | None = None,
        lock_provider: LockProvider | None = None,
    ) -> None:
        """Initialize the store and create its directories.

        Args:
            base_dir: Directory holding committed entries.
            staging_dir: Scratch directory for in-flight writes. Defaults to
                the system temp directory, in which case clear() only
                removes this store's staging files.
            lock_provider: Lock provider; defaults to NullLockProvider.
        """
        self.base_dir = ensure_dir(base_dir)
        self._owns_staging = staging_dir is not None
        self.staging_dir = ensure_dir(staging_dir if staging_dir is not None else tempfile.gettempdir())
        self.lock_provider = lock_provider or NullLockProvider()

    def path_for(self, key: str) -> Path:
        """Absolute path of the file holding key."""
        return self.base_dir / validate_key(key)

    def exists(self, key: str) -> bool:
        """Return True if key holds a committed entry."""
        return _is_regular_file(self.path_for(key))

    def read(self, key: str) -> BinaryIO:
        """Open an entry for reading and mark it as recently used.

        The returned file must be closed by the caller.

        Raises:
            EntryNotFoundError: If key holds no entry.
            StoreIOError: If the file cannot be opened.
        """
        path = self.path_for(key)
        if not _is_regular_file(path):
            raise EntryNotFoundError("Cache entry not found", {"key": key})

        self.touch(key)

        try:
            return open(path, "rb")
        except FileNotFoundError:
            raise EntryNotFoundError("Cache entry not found", {"key": key}) from None
        except OSError as exc:
            raise StoreIOError(
                "Failed to open cache entry", {"path": str(path), "operation": "read"}
            ) from exc

    def write(self, key: str, source: Source) -> int:
        """Stream source into a new entry for key.

        Args:
            key: Entry name.
            source: Binary file-like object (anything with read(n)) or bytes.

        Returns:
            Number of bytes written.

        Raises:
            EntryExistsError: If key already holds an entry.
            LockContentionError: If the key's lock is held elsewhere.
            StoreIOError: If staging or committing the file fails.
        """
        path = self.path_for(key)

        with self.lock_provider.acquire(key_lock_name(key)):
            if _is_regular_file(path):
                raise EntryExistsError("Cache entry already exists", {"key": key})

            # Directories may have been removed by clear()
            ensure_dir(self.base_dir)
            ensure_dir(self.staging_dir)

            tmp_name: str | None = None
            try:
                fd, tmp_name = tempfile.mkstemp(prefix=STAGING_PREFIX, dir=self.staging_dir)
                with os.fdopen(fd, "wb") as tmp:
                    written = _copy_stream(source, tmp)
                    tmp.flush()
                    os.fsync(tmp.fileno())
                self._commit(tmp_name, path, key)
            except OSError as exc:
                raise StoreIOError(
                    "Failed to write cache entry", {"path": str(path), "operation": "write"}
                ) from exc
            finally:
                if tmp_name is not None:
                    with suppress(FileNotFoundError):
                        os.unlink(tmp_name)

        logger.debug("Wrote cache entry", key=key, size=written)
        return written

    def _commit(self, tmp_name: str, path: Path, key: str) -> None:
        # A hard link fails if the target exists, which gives create-only
        # semantics even against writers that do not share our locks.
        try:
            os.link(tmp_name, path)
            return
        except FileExistsError:
            raise EntryExistsError("Cache entry already exists", {"key": key}) from None
        except OSError as exc:
            if exc.errno not in _LINK_UNSUPPORTED:
                raise

        # No hard links on this filesystem; the per-key lock is held.
        if os.path.lexists(path):
            raise EntryExistsError("Cache entry already exists", {"key": key})
        os.rename(tmp_name, path)

    def delete(self, key: str) -> None:
        """Remove the entry for key.

        Raises:
            EntryNotFoundError: If key holds no entry.
            LockContentionError: If the key's lock is held elsewhere.
            StoreIOError: If the file cannot be removed.
        """
        path = self.path_for(key)

        with self.lock_provider.acquire(key_lock_name(key)):
            if not _is_regular_file(path):
                raise EntryNotFoundError("Cache entry not found", {"key": key})
            try:
                os.unlink(path)
            except FileNotFoundError:
                raise EntryNotFoundError("Cache entry not found", {"key": key}) from None
            except OSError as exc:
                raise StoreIOError(
                    "Failed to delete cache entry", {"path": str(path), "operation": "delete"}
                ) from exc

    def touch(self, key: str, timestamp: datetime | float | None = None) -> None:
        """Set the last-access time of an entry.

        Args:
            key: Entry name.
            timestamp: Aware datetime or POSIX seconds; None means now.

        Raises:
            EntryNotFoundError: If key holds no entry.
        """
        path = self.path_for(key)
        ts = time.time() if timestamp is None else to_timestamp(timestamp)
        ns = int(ts * 1_000_000_000)
        try:
            os.utime(path, ns=(ns, ns))
        except FileNotFoundError:
            raise EntryNotFoundError("Cache entry not found", {"key": key}) from None
        except OSError as exc:
            raise StoreIOError(
                "Failed to touch cache entry", {"path": str(path), "operation": "touch"}
            ) from exc

    def clear(self) -> None:
        """Remove every entry along with the base and staging directories.

        Holds the global lock, so it never overlaps an eviction pass.

        Raises:
            LockContentionError: If the global lock is held elsewhere.
            StoreIOError: If a directory cannot be removed.
        """
        with self.lock_provider.acquire(GLOBAL_LOCK_KEY):
            if self._owns_staging:
                self._remove_tree(self.staging_dir)
            else:
                self._remove_staging_files()
            self._remove_tree(self.base_dir)
        logger.info("Cleared cache", base_dir=str(self.base_dir))

    def _remove_tree(self, directory: Path) -> None:
        try:
            shutil.rmtree(directory)
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise StoreIOError(
                "Failed to remove directory", {"path": str(directory), "operation": "clear"}
            ) from exc

    def _remove_staging_files(self) -> None:
        # The shared system temp directory itself is left alone.
        try:
            for tmp_path in self.staging_dir.glob(f"{STAGING_PREFIX}*"):
                with suppress(FileNotFoundError):
                    tmp_path.unlink()
        except OSError as exc:
            raise StoreIOError(
                "Failed to remove staging files",
                {"path": str(self.staging_dir), "operation": "clear"},
            ) from exc

    def total_size(self) -> int:
        """Sum of the sizes of all regular files under the base directory.

        Raises:
            StoreIOError: If the directory tree cannot be walked.
        """
        if not self.base_dir.exists():
            return 0

        def _raise(exc: OSError) -> None:
            raise exc

        size = 0
        try:
            for dirpath, _, filenames in os.walk(self.base_dir, onerror=_raise):
                for name in filenames:
                    try:
                        st = os.lstat(os.path.join(dirpath, name))
                    except FileNotFoundError:
                        continue
                    if stat.S_ISREG(st.st_mode):
                        size += st.st_size
        except OSError as exc:
            raise StoreIOError(
                "Failed to measure cache size",
                {"path": str(self.base_dir), "operation": "size"},
            ) from exc
        return size

    def list_entries(self) -> list[CacheEntry]:
        """Entries under the base directory, least recently used first."""
        return list_entries(self.base_dir)
