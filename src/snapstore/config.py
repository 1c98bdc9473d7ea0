"""
Configuration management using pydantic-settings.

Loads configuration from environment variables and .env files.
Validates fields and provides typed access to settings.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Optional:
        SNAPSTORE_DIR: Directory holding snaps.db and the snapshot files
        LOG_LEVEL: Logging level
        LOG_FILE: JSON lines log file
        FETCH_TIMEOUT: HTTP timeout in seconds
        FETCH_MAX_RETRIES: Retries on transport errors
        USER_AGENT: User-Agent header for fetches
        DEFAULT_MAX_AGE: Default maximum snapshot age for CLI fetches
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    SNAPSTORE_DIR: Path = Field(
        default=Path(".snapstore"), description="Snapshot storage directory"
    )

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    LOG_FILE: Path | None = Field(default=None, description="JSON log file")

    # Fetching
    FETCH_TIMEOUT: float = Field(
        default=30.0, gt=0.0, description="HTTP request timeout in seconds"
    )
    FETCH_MAX_RETRIES: int = Field(
        default=2, ge=0, le=10, description="Retries on transport errors"
    )
    USER_AGENT: str = Field(
        default="snapstore/0.1 (+https://github.com/snapstore)",
        description="User-Agent header sent with fetches",
    )

    # Policy
    DEFAULT_MAX_AGE: int | None = Field(
        default=None,
        description="Default maximum snapshot age in seconds (unset means unlimited)",
    )

    @field_validator("USER_AGENT")
    @classmethod
    def validate_user_agent(cls, v: str) -> str:
        """Validate that USER_AGENT is not blank."""
        if not v.strip():
            raise ValueError("USER_AGENT must not be empty")
        return v.strip()

    def ensure_directories(self) -> None:
        """Create the storage directory if it doesn't exist."""
        self.SNAPSTORE_DIR.mkdir(parents=True, exist_ok=True)

    def redacted_display(self) -> dict[str, str | int | float | None]:
        """Return settings in a printable form."""
        return {
            "SNAPSTORE_DIR": str(self.SNAPSTORE_DIR),
            "LOG_LEVEL": self.LOG_LEVEL,
            "LOG_FILE": str(self.LOG_FILE) if self.LOG_FILE else None,
            "FETCH_TIMEOUT": self.FETCH_TIMEOUT,
            "FETCH_MAX_RETRIES": self.FETCH_MAX_RETRIES,
            "USER_AGENT": self.USER_AGENT,
            "DEFAULT_MAX_AGE": self.DEFAULT_MAX_AGE,
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
