"""
Pytest configuration and fixtures for file cache tests.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Generator
from unittest.mock import patch

import pytest

from sweepcache.cache import FileCache
from sweepcache.config import Settings, clear_settings_cache
from sweepcache.logging import setup_logging
from sweepcache.store import FileStore

CACHE_ENV_VARS = (
    "CACHE_BASE_DIR",
    "CACHE_STAGING_DIR",
    "CACHE_MAX_AGE_SECONDS",
    "CACHE_MAX_SIZE_BYTES",
    "CACHE_SWEEP_INTERVAL_SECONDS",
    "CACHE_LOCK_BACKEND",
    "CACHE_LOCK_DIR",
    "LOG_LEVEL",
)


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test outputs."""
    return tmp_path


@pytest.fixture
def base_dir(temp_dir: Path) -> Path:
    return temp_dir / "filecache"


@pytest.fixture
def staging_dir(temp_dir: Path) -> Path:
    return temp_dir / "tmp"


@pytest.fixture
def store(base_dir: Path, staging_dir: Path) -> FileStore:
    """A store with its own staging directory."""
    return FileStore(base_dir, staging_dir)


@pytest.fixture
def cache(base_dir: Path, staging_dir: Path) -> Generator[FileCache, None, None]:
    """A FileCache with default budgets, cleared after the test."""
    fc = FileCache(base_dir, staging_dir)
    yield fc
    fc.stop_sweep()
    fc.clear()


@pytest.fixture
def mock_env_vars(temp_dir: Path) -> Generator[dict[str, str], None, None]:
    """Provide cache environment variables pointing into temp_dir."""
    env_vars = {
        "CACHE_BASE_DIR": str(temp_dir / "env_cache"),
        "CACHE_STAGING_DIR": str(temp_dir / "env_tmp"),
        "CACHE_MAX_AGE_SECONDS": "60",
        "CACHE_MAX_SIZE_BYTES": "4096",
        "CACHE_SWEEP_INTERVAL_SECONDS": "0.5",
        "CACHE_LOCK_BACKEND": "process",
        "LOG_LEVEL": "DEBUG",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        clear_settings_cache()
        yield env_vars


@pytest.fixture
def mock_settings(mock_env_vars: dict[str, str]) -> Generator[Settings, None, None]:
    """Provide a Settings instance loaded from mock_env_vars."""
    clear_settings_cache()
    from sweepcache.config import get_settings

    settings = get_settings()
    settings.ensure_directories()
    yield settings
    clear_settings_cache()


@pytest.fixture(autouse=True)
def isolated_env() -> Generator[None, None, None]:
    """Keep host CACHE_* variables, cached settings and log levels out of every test."""
    clean = {k: v for k, v in os.environ.items() if k not in CACHE_ENV_VARS}
    with patch.dict(os.environ, clean, clear=True):
        clear_settings_cache()
        yield
        clear_settings_cache()
        setup_logging("INFO")
