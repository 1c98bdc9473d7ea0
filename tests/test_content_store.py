"""
Tests for content-addressed snapshot files.
"""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import AsyncIterator
from unittest.mock import patch

import pytest

from snapstore.content_store import address_of, read_snap, write_snap
from snapstore.exceptions import InvalidDigestError, StorageIOError
from snapstore.streams import ByteStream

HELLO_HASH = hashlib.sha256(b"hello").hexdigest()


async def chunks(*parts: bytes) -> AsyncIterator[bytes]:
    for part in parts:
        yield part


class TestAddressOf:
    """Test path derivation."""

    def test_sharded_layout(self) -> None:
        """Test that the path is root/snaps/<2 chars>/<62 chars>."""
        path = address_of("/data", HELLO_HASH)
        assert path == Path("/data/snaps") / HELLO_HASH[:2] / HELLO_HASH[2:]
        assert len(path.name) == 62

    def test_pure(self) -> None:
        """Test that the same inputs give the same path."""
        assert address_of("root", HELLO_HASH) == address_of(Path("root"), HELLO_HASH)

    @pytest.mark.parametrize("digest", ["", "abc", HELLO_HASH + "0", HELLO_HASH[:-1]])
    def test_invalid_length(self, digest: str) -> None:
        """Test that malformed digests are rejected."""
        with pytest.raises(InvalidDigestError) as exc_info:
            address_of("/data", digest)
        assert exc_info.value.context["expected_length"] == 64


class TestWriteSnap:
    """Test writing snapshot files."""

    @pytest.mark.asyncio
    async def test_write_hello(self, temp_dir: Path) -> None:
        """Test the concrete layout of a written snapshot."""
        meta = await write_snap(temp_dir, "hello")

        assert meta.content_hash == HELLO_HASH
        assert meta.path == temp_dir / "snaps" / HELLO_HASH[:2] / HELLO_HASH[2:]
        assert meta.path.read_bytes() == b"hello"
        assert meta.timestamp > 0

    @pytest.mark.asyncio
    async def test_write_stream(self, temp_dir: Path) -> None:
        """Test that a stream is hashed and stored in full."""
        meta = await write_snap(temp_dir, ByteStream(chunks(b"hel", b"lo")))

        assert meta.content_hash == HELLO_HASH
        assert meta.path.read_bytes() == b"hello"

    @pytest.mark.asyncio
    async def test_write_plain_async_iterable(self, temp_dir: Path) -> None:
        """Test that any async iterable of bytes can be stored."""
        meta = await write_snap(temp_dir, chunks(b"he", b"llo"))
        assert meta.path.read_bytes() == b"hello"

    @pytest.mark.asyncio
    async def test_same_content_twice(self, temp_dir: Path) -> None:
        """Test that writing the same content twice is idempotent."""
        first = await write_snap(temp_dir, b"same")
        second = await write_snap(temp_dir, b"same")

        assert first.path == second.path
        assert second.path.read_bytes() == b"same"

    @pytest.mark.asyncio
    async def test_overwrites_partial_file(self, temp_dir: Path) -> None:
        """Test that a truncated file from an earlier attempt is replaced."""
        path = address_of(temp_dir, HELLO_HASH)
        path.parent.mkdir(parents=True)
        path.write_bytes(b"hel")

        await write_snap(temp_dir, b"hello")
        assert path.read_bytes() == b"hello"

    @pytest.mark.asyncio
    async def test_previous_hash_skips_write(self, temp_dir: Path) -> None:
        """Test that unchanged content is not written again."""
        meta = await write_snap(temp_dir, b"hello", previous_hash=HELLO_HASH)

        assert meta.content_hash == HELLO_HASH
        assert not meta.path.exists()

    @pytest.mark.asyncio
    async def test_previous_hash_skips_stream_write(self, temp_dir: Path) -> None:
        """Test that the persistence stream is discarded for unchanged content."""
        meta = await write_snap(
            temp_dir, ByteStream(chunks(b"hello")), previous_hash=HELLO_HASH
        )

        assert meta.content_hash == HELLO_HASH
        assert not meta.path.exists()

    @pytest.mark.asyncio
    async def test_different_previous_hash_writes(self, temp_dir: Path) -> None:
        """Test that changed content is written."""
        other_hash = hashlib.sha256(b"other").hexdigest()
        meta = await write_snap(temp_dir, b"hello", previous_hash=other_hash)
        assert meta.path.read_bytes() == b"hello"

    @pytest.mark.asyncio
    async def test_write_failure_is_storage_error(self, temp_dir: Path) -> None:
        """Test that OS errors surface as StorageIOError."""
        with patch.object(Path, "open", side_effect=PermissionError("read-only")):
            with pytest.raises(StorageIOError) as exc_info:
                await write_snap(temp_dir, b"hello")

        assert "path" in exc_info.value.context

    @pytest.mark.asyncio
    async def test_mkdir_failure_is_storage_error(self, temp_dir: Path) -> None:
        """Test that a file in place of the shard directory fails cleanly."""
        blocker = temp_dir / "snaps"
        blocker.write_bytes(b"not a directory")

        with pytest.raises(StorageIOError):
            await write_snap(temp_dir, b"hello")


class TestReadSnap:
    """Test reading snapshot files."""

    @pytest.mark.asyncio
    async def test_read_back(self, temp_dir: Path) -> None:
        """Test reading a written snapshot."""
        meta = await write_snap(temp_dir, b"\x00binary\xff")
        assert await read_snap(meta.path) == b"\x00binary\xff"

    @pytest.mark.asyncio
    async def test_read_missing(self, temp_dir: Path) -> None:
        """Test that a missing file raises StorageIOError."""
        with pytest.raises(StorageIOError):
            await read_snap(address_of(temp_dir, HELLO_HASH))
