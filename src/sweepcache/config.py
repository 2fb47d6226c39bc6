"""
Configuration management using pydantic-settings.

Loads configuration from environment variables and .env files.
Validates budgets and directory layout and provides typed access to settings.
"""

from __future__ import annotations

import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from sweepcache.eviction import DEFAULT_MAX_AGE_SECONDS, DEFAULT_MAX_SIZE_BYTES
from sweepcache.scheduler import DEFAULT_SWEEP_INTERVAL_SECONDS

LockBackend = Literal["none", "process", "file"]


class Settings(BaseSettings):
    """Cache settings loaded from environment variables.

    All optional:
        CACHE_BASE_DIR: Directory holding cache entries
        CACHE_STAGING_DIR: Scratch directory for in-flight writes (system temp dir if unset)
        CACHE_MAX_AGE_SECONDS: Entries idle longer than this are expired
        CACHE_MAX_SIZE_BYTES: Budget for the total size of the cache
        CACHE_SWEEP_INTERVAL_SECONDS: Time between background eviction passes
        CACHE_LOCK_BACKEND: none | process | file
        CACHE_LOCK_DIR: Lock file directory for the file backend
        LOG_LEVEL: Logging level
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Directories
    CACHE_BASE_DIR: Path = Field(default=Path("filecache"), description="Cache entry directory")
    CACHE_STAGING_DIR: Path | None = Field(
        default=None, description="Staging directory for in-flight writes"
    )

    # Eviction budgets
    CACHE_MAX_AGE_SECONDS: float = Field(
        default=DEFAULT_MAX_AGE_SECONDS, gt=0, description="Maximum entry idle time in seconds"
    )
    CACHE_MAX_SIZE_BYTES: int = Field(
        default=DEFAULT_MAX_SIZE_BYTES, gt=0, description="Maximum total cache size in bytes"
    )
    CACHE_SWEEP_INTERVAL_SECONDS: float = Field(
        default=DEFAULT_SWEEP_INTERVAL_SECONDS, gt=0, description="Seconds between sweeps"
    )

    # Locking
    CACHE_LOCK_BACKEND: LockBackend = Field(default="none", description="Lock provider")
    CACHE_LOCK_DIR: Path | None = Field(default=None, description="Lock file directory")

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )

    @model_validator(mode="after")
    def validate_directories(self) -> Settings:
        """Ensure staging and base directories are disjoint."""
        if self.CACHE_STAGING_DIR is not None:
            base = self.CACHE_BASE_DIR.absolute()
            staging = self.CACHE_STAGING_DIR.absolute()
            if staging == base or base in staging.parents:
                raise ValueError(
                    "CACHE_STAGING_DIR must not be CACHE_BASE_DIR or inside it"
                )
        return self

    @model_validator(mode="after")
    def validate_lock_dir(self) -> Settings:
        """The file lock backend needs somewhere to keep its lock files."""
        if self.CACHE_LOCK_BACKEND == "file" and self.CACHE_LOCK_DIR is None:
            raise ValueError("CACHE_LOCK_DIR is required when CACHE_LOCK_BACKEND=file")
        return self

    @property
    def staging_dir_display(self) -> str:
        """Staging directory as it will be used."""
        if self.CACHE_STAGING_DIR is None:
            return f"{tempfile.gettempdir()} (system temp)"
        return str(self.CACHE_STAGING_DIR)

    def ensure_directories(self) -> None:
        """Create cache directories if they don't exist."""
        self.CACHE_BASE_DIR.mkdir(parents=True, exist_ok=True)
        if self.CACHE_STAGING_DIR is not None:
            self.CACHE_STAGING_DIR.mkdir(parents=True, exist_ok=True)
        if self.CACHE_LOCK_DIR is not None:
            self.CACHE_LOCK_DIR.mkdir(parents=True, exist_ok=True)

    def display(self) -> dict[str, str | int | float | None]:
        """Return settings for display."""
        return {
            "CACHE_BASE_DIR": str(self.CACHE_BASE_DIR),
            "CACHE_STAGING_DIR": self.staging_dir_display,
            "CACHE_MAX_AGE_SECONDS": self.CACHE_MAX_AGE_SECONDS,
            "CACHE_MAX_SIZE_BYTES": self.CACHE_MAX_SIZE_BYTES,
            "CACHE_SWEEP_INTERVAL_SECONDS": self.CACHE_SWEEP_INTERVAL_SECONDS,
            "CACHE_LOCK_BACKEND": self.CACHE_LOCK_BACKEND,
            "CACHE_LOCK_DIR": str(self.CACHE_LOCK_DIR) if self.CACHE_LOCK_DIR else None,
            "LOG_LEVEL": self.LOG_LEVEL,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
