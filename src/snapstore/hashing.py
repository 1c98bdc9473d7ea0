"""
Content hashing for snapshot addressing.

SHA-256 is computed incrementally, so the digest of a stream equals the
digest of the same bytes passed as one buffer.
"""

from __future__ import annotations

import hashlib
from typing import AsyncIterable

# Anything that can be stored as a snapshot
Content = bytes | str | AsyncIterable[bytes]


def hash_bytes(content: bytes) -> str:
    """Calculate the hex digest of a byte buffer."""
    return hashlib.sha256(content).hexdigest()


async def hash_content(content: Content) -> str:
    """Calculate a hash over the given content.

    Args:
        content: Bytes, text (encoded as UTF-8) or a one-shot byte stream.
            A stream is fully consumed.

    Returns:
        Lowercase hex SHA-256 digest (64 characters).
    """
    if isinstance(content, str):
        content = content.encode("utf-8")
    if isinstance(content, (bytes, bytearray, memoryview)):
        return hash_bytes(bytes(content))

    digest = hashlib.sha256()
    async for chunk in content:
        digest.update(chunk)
    return digest.hexdigest()
