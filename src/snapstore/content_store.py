"""
Content-addressed snapshot files.

Each distinct content is stored once under root/snaps/{hash[:2]}/{hash[2:]}.
The two character prefix directory keeps any single directory small.
"""

from __future__ import annotations

from pathlib import Path

from snapstore.exceptions import InvalidDigestError, StorageIOError
from snapstore.hashing import Content, hash_content
from snapstore.logging import get_logger
from snapstore.streams import ByteStream, as_stream
from snapstore.types import HASH_LENGTH, SnapMeta, now

logger = get_logger(__name__)

SNAPS_DIR_NAME = "snaps"
DIR_NAME_LENGTH = 2


def address_of(root: str | Path, content_hash: str) -> Path:
    """Determine the path to a snapshot based on the hash of its content.

    Raises:
        InvalidDigestError: If the hash does not have the expected length.
    """
    if len(content_hash) != HASH_LENGTH:
        raise InvalidDigestError(
            "Content hash has an invalid length",
            {"digest": content_hash, "expected_length": HASH_LENGTH},
        )
    return (
        Path(root)
        / SNAPS_DIR_NAME
        / content_hash[:DIR_NAME_LENGTH]
        / content_hash[DIR_NAME_LENGTH:]
    )


async def _write_file(path: Path, content: bytes | ByteStream) -> int:
    """Create or truncate the file at path and write all content to it.

    Returns:
        Number of bytes written.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        size = 0
        with path.open("wb") as snap_file:
            if isinstance(content, ByteStream):
                async for chunk in content:
                    snap_file.write(chunk)
                    size += len(chunk)
            else:
                snap_file.write(content)
                size = len(content)
        return size
    except OSError as e:
        raise StorageIOError(
            "Failed to write snapshot file", {"path": str(path), "error": str(e)}
        ) from e


async def write_snap(
    root: str | Path,
    content: Content,
    previous_hash: str | None = None,
) -> SnapMeta:
    """Write a new snapshot with the given content and return its metadata.

    Args:
        root: Storage root directory.
        content: Bytes, text or a one-shot byte stream (consumed).
        previous_hash: Hash of the latest known snapshot for the same URI.
            Identical content is not written again.

    Returns:
        Metadata of the written (or deduplicated) snapshot.

    Raises:
        StorageIOError: If the directory or file cannot be written.
    """
    if isinstance(content, str):
        content = content.encode("utf-8")

    # Streams can only be consumed once, so we need a copy for hashing
    if isinstance(content, (bytes, bytearray, memoryview)):
        content = bytes(content)
        content_for_hashing: Content = content
    else:
        content, content_for_hashing = as_stream(content).tee()

    timestamp = now()
    content_hash = await hash_content(content_for_hashing)
    path = address_of(root, content_hash)

    if content_hash == previous_hash:
        if isinstance(content, ByteStream):
            await content.aclose()
        logger.debug("Skipped writing unchanged content", hash=content_hash[:12])
    else:
        size = await _write_file(path, content)
        logger.debug("Stored snapshot file", hash=content_hash[:12], size=size)

    return SnapMeta(timestamp=timestamp, content_hash=content_hash, path=path)


async def read_snap(path: Path) -> bytes:
    """Read the raw content of a snapshot file."""
    try:
        return path.read_bytes()
    except OSError as e:
        raise StorageIOError(
            "Failed to read snapshot file", {"path": str(path), "error": str(e)}
        ) from e

