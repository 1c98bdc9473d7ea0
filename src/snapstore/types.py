"""
Core types for the snapshot store.

- SnapMeta: immutable metadata of one stored snapshot
- Snapshot: metadata plus materialized content
- Helper for whole-second timestamps
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Generic, TypeVar

T = TypeVar("T")

# Length of a hex encoded SHA-256 digest
HASH_LENGTH = 64


def now() -> int:
    """Get the current time in whole seconds since the UNIX epoch."""
    return int(time.time())


@dataclass(frozen=True)
class SnapMeta:
    """Metadata of a snapshot for a URI.

    The path is derived from the content hash and the storage root. It is
    never persisted in the index.
    """

    timestamp: int  # Seconds since the UNIX epoch
    content_hash: str
    path: Path


@dataclass(frozen=True)
class Snapshot(SnapMeta, Generic[T]):
    """Metadata and content of a snapshot for a URI."""

    content: T
    is_fresh: bool = False  # Produced by a fetch during this call

    @classmethod
    def from_meta(cls, meta: SnapMeta, content: T, is_fresh: bool = False) -> Snapshot[T]:
        """Attach content to snapshot metadata."""
        return cls(
            timestamp=meta.timestamp,
            content_hash=meta.content_hash,
            path=meta.path,
            content=content,
            is_fresh=is_fresh,
        )

    @property
    def meta(self) -> SnapMeta:
        """Get the plain metadata without content."""
        return SnapMeta(
            timestamp=self.timestamp,
            content_hash=self.content_hash,
            path=self.path,
        )
