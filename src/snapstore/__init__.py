"""Content-addressed snapshot cache with fetch-through caching."""

from snapstore.exceptions import (
    FetchFailedError,
    IndexFailureError,
    InvalidDigestError,
    SnapshotDecodeError,
    SnapshotNotFoundError,
    SnapStoreError,
    StorageIOError,
    StreamConsumedError,
)
from snapstore.fetch import Fetcher, HttpFetcher, ResponseMutator
from snapstore.policy import Policy, follows_policy
from snapstore.store import SnapStore
from snapstore.streams import ByteStream
from snapstore.types import SnapMeta, Snapshot

__version__ = "0.1.0"

__all__ = [
    "ByteStream",
    "FetchFailedError",
    "Fetcher",
    "HttpFetcher",
    "IndexFailureError",
    "InvalidDigestError",
    "Policy",
    "ResponseMutator",
    "SnapMeta",
    "SnapStore",
    "SnapStoreError",
    "Snapshot",
    "SnapshotDecodeError",
    "SnapshotNotFoundError",
    "StorageIOError",
    "StreamConsumedError",
    "follows_policy",
    "__version__",
]
