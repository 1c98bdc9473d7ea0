"""
Tests for the snapshot metadata index.
"""

from __future__ import annotations

import asyncio
import hashlib
from pathlib import Path
from typing import AsyncIterator

import pytest

from snapstore.exceptions import IndexFailureError
from snapstore.index import SnapIndex


def digest(value: str) -> str:
    return hashlib.sha256(value.encode()).hexdigest()


@pytest.fixture
async def index(temp_dir: Path) -> AsyncIterator[SnapIndex]:
    """Create an initialized index for testing."""
    snap_index = SnapIndex(temp_dir / "snaps.db")
    await snap_index.init()
    yield snap_index
    await snap_index.close()


class TestUpsertUri:
    """Test URI registration."""

    @pytest.mark.asyncio
    async def test_returns_same_id_for_same_uri(self, index: SnapIndex) -> None:
        """Test that a known URI keeps its ID."""
        first = await index.upsert_uri("https://example.com/a")
        second = await index.upsert_uri("https://example.com/a")
        assert first == second

    @pytest.mark.asyncio
    async def test_distinct_uris_are_not_normalized(self, index: SnapIndex) -> None:
        """Test that URIs differing in case or whitespace are separate."""
        ids = {
            await index.upsert_uri("https://example.com/a"),
            await index.upsert_uri("https://EXAMPLE.com/a"),
            await index.upsert_uri(" https://example.com/a"),
        }
        assert len(ids) == 3
        assert len(await index.uris()) == 3

    @pytest.mark.asyncio
    async def test_concurrent_upserts(self, index: SnapIndex) -> None:
        """Test that concurrent upserts of one URI yield one row."""
        ids = await asyncio.gather(*[index.upsert_uri("test:race") for _ in range(20)])
        assert len(set(ids)) == 1
        assert await index.uris() == ["test:race"]


class TestLatestSnap:
    """Test latest and point-in-time lookups."""

    @pytest.mark.asyncio
    async def test_unknown_uri(self, index: SnapIndex) -> None:
        """Test that an unknown URI has no snapshot."""
        assert await index.latest_snap("test:unknown") is None

    @pytest.mark.asyncio
    async def test_latest(self, index: SnapIndex) -> None:
        """Test that the newest row wins."""
        uri_id = await index.upsert_uri("test:latest")
        await index.record_snap(uri_id, 1000, digest("old"))
        await index.record_snap(uri_id, 2000, digest("new"))
        await index.record_snap(uri_id, 1500, digest("middle"))

        assert await index.latest_snap("test:latest") == (2000, digest("new"))

    @pytest.mark.asyncio
    async def test_max_timestamp(self, index: SnapIndex) -> None:
        """Test historical lookups."""
        uri_id = await index.upsert_uri("test:history")
        await index.record_snap(uri_id, 1000, digest("old"))
        await index.record_snap(uri_id, 2000, digest("new"))

        assert await index.latest_snap("test:history", 1999) == (1000, digest("old"))
        assert await index.latest_snap("test:history", 2000) == (2000, digest("new"))
        assert await index.latest_snap("test:history", 999) is None

    @pytest.mark.asyncio
    async def test_future_snapshots_hidden_by_default(self, index: SnapIndex) -> None:
        """Test that the default bound is the current time."""
        uri_id = await index.upsert_uri("test:future")
        await index.record_snap(uri_id, 4_000_000_000, digest("future"))

        assert await index.latest_snap("test:future") is None

    @pytest.mark.asyncio
    async def test_histories_are_independent(self, index: SnapIndex) -> None:
        """Test that URIs do not see each other's snapshots."""
        a = await index.upsert_uri("test:a")
        b = await index.upsert_uri("test:b")
        await index.record_snap(a, 1000, digest("a"))
        await index.record_snap(b, 2000, digest("b"))

        assert await index.latest_snap("test:a") == (1000, digest("a"))
        assert await index.latest_snap("test:b") == (2000, digest("b"))


class TestHistoryAndStats:
    """Test listing and statistics."""

    @pytest.mark.asyncio
    async def test_history_newest_first(self, index: SnapIndex) -> None:
        """Test that history is ordered newest first."""
        uri_id = await index.upsert_uri("test:list")
        for timestamp in (1000, 3000, 2000):
            await index.record_snap(uri_id, timestamp, digest(str(timestamp)))

        history = await index.history("test:list")
        assert [timestamp for timestamp, _ in history] == [3000, 2000, 1000]

        bounded = await index.history("test:list", max_timestamp=2500)
        assert [timestamp for timestamp, _ in bounded] == [2000, 1000]

    @pytest.mark.asyncio
    async def test_stats(self, index: SnapIndex) -> None:
        """Test statistics gathering."""
        assert await index.count() == 0

        a = await index.upsert_uri("test:a")
        b = await index.upsert_uri("test:b")
        await index.record_snap(a, 1000, digest("same"))
        await index.record_snap(b, 1000, digest("same"))
        await index.record_snap(b, 2000, digest("other"))

        stats = await index.stats()
        assert stats == {"uris": 2, "snapshots": 3, "distinct_contents": 2}


class TestLifecycle:
    """Test initialization and persistence."""

    @pytest.mark.asyncio
    async def test_not_initialized(self, temp_dir: Path) -> None:
        """Test that using the index before init fails."""
        snap_index = SnapIndex(temp_dir / "snaps.db")
        with pytest.raises(IndexFailureError):
            await snap_index.latest_snap("test:uri")

    @pytest.mark.asyncio
    async def test_reopen_keeps_rows(self, temp_dir: Path) -> None:
        """Test that rows survive closing and reopening."""
        db_path = temp_dir / "snaps.db"
        first = SnapIndex(db_path)
        await first.init()
        uri_id = await first.upsert_uri("test:persist")
        await first.record_snap(uri_id, 1000, digest("persist"))
        await first.close()

        second = SnapIndex(db_path)
        await second.init()
        try:
            assert await second.upsert_uri("test:persist") == uri_id
            assert await second.latest_snap("test:persist") == (1000, digest("persist"))
        finally:
            await second.close()

    @pytest.mark.asyncio
    async def test_unknown_uri_id_violates_foreign_key(self, index: SnapIndex) -> None:
        """Test that engine errors surface as IndexFailureError."""
        with pytest.raises(IndexFailureError):
            await index.record_snap(12345, 1000, digest("orphan"))
