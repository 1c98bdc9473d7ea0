"""
Custom exception hierarchy for the snapshot store.

All exceptions inherit from SnapStoreError, which provides optional context
for structured error handling and logging.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import httpx


class SnapStoreError(Exception):
    """Base exception for all snapshot store errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class InvalidDigestError(SnapStoreError):
    """Raised when a content digest does not have the expected length.

    This is a programming error; digests produced by the hasher are always valid.

    Context should include:
        - digest: The offending digest
        - expected_length: The required digest length
    """

    pass


class StorageIOError(SnapStoreError):
    """Raised when a snapshot file or directory operation fails.

    Examples:
        - Disk full or permission denied while writing a snapshot
        - Indexed snapshot file missing on read

    Context should include:
        - path: The path that was being accessed
    """

    pass


class IndexFailureError(SnapStoreError):
    """Raised when the metadata index fails (engine error, store not initialized)."""

    pass


class FetchFailedError(SnapStoreError):
    """Raised when fetching fresh content fails.

    The unsuccessful response (if any) is kept for inspection.

    Context should include:
        - uri: The URI that was being fetched
        - status_code: HTTP status code if there was a response
    """

    def __init__(
        self,
        message: str,
        response: httpx.Response | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.response = response


class SnapshotNotFoundError(SnapStoreError):
    """Raised when no snapshot exists or qualifies for a lookup that requires one."""

    pass


class SnapshotDecodeError(SnapStoreError):
    """Raised when stored snapshot content is not valid JSON."""

    pass


class StreamConsumedError(SnapStoreError):
    """Raised when a one-shot byte stream is read more than once."""

    pass
