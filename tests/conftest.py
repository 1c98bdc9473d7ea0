"""
Pytest configuration and fixtures for snapshot store tests.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import AsyncIterator, Generator
from unittest.mock import patch

import pytest

from snapstore.config import Settings, clear_settings_cache
from snapstore.store import SnapStore


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test outputs."""
    return tmp_path


@pytest.fixture
def mock_env_vars(temp_dir: Path) -> Generator[dict[str, str], None, None]:
    """Provide mock environment variables for testing."""
    env_vars = {
        "SNAPSTORE_DIR": str(temp_dir / "snapstore"),
        "LOG_LEVEL": "DEBUG",
        "FETCH_TIMEOUT": "5",
        "FETCH_MAX_RETRIES": "0",
        "USER_AGENT": "snapstore-tests/1.0",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        clear_settings_cache()
        yield env_vars


@pytest.fixture
def mock_settings(mock_env_vars: dict[str, str]) -> Generator[Settings, None, None]:
    """Provide a Settings instance with mock configuration."""
    from snapstore.config import get_settings

    settings = get_settings()
    settings.ensure_directories()
    yield settings
    clear_settings_cache()


@pytest.fixture
async def snap_store(temp_dir: Path) -> AsyncIterator[SnapStore]:
    """Create an initialized snapshot store for testing."""
    store = SnapStore(temp_dir / "snaps")
    await store.init()
    yield store
    await store.close()


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Automatically reset settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
