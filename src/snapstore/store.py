"""
Snapshot store for URI content.

Stores successive versions of the content of a URI. Content files are
addressed by their SHA-256 hash under {directory}/snaps, metadata lives in
SQLite at {directory}/snaps.db.
"""

from __future__ import annotations

from pathlib import Path
from types import TracebackType
from typing import Any, AsyncIterator, Mapping

import httpx
import orjson

from snapstore.config import get_settings
from snapstore.content_store import address_of, read_snap, write_snap
from snapstore.exceptions import (
    FetchFailedError,
    IndexFailureError,
    SnapshotDecodeError,
    SnapshotNotFoundError,
    SnapStoreError,
)
from snapstore.fetch import Fetcher, HttpFetcher, ResponseMutator
from snapstore.hashing import Content
from snapstore.index import SnapIndex
from snapstore.logging import get_logger, log_context
from snapstore.policy import Policy, follows_policy
from snapstore.streams import ByteStream
from snapstore.types import SnapMeta, Snapshot

logger = get_logger(__name__)

DB_FILE_NAME = "snaps.db"

# The stored body is already decoded, so these no longer describe it
_BODY_HEADERS = {"content-encoding", "content-length", "transfer-encoding"}


class SnapStore:
    """Content-addressed snapshot storage with fetch-through caching.

    Usage:
        async with SnapStore(".snapstore") as snaps:
            snap = await snaps.cache("https://example.com/data.json")
            data = await snap.content.aread()
    """

    def __init__(self, directory: str | Path | None = None) -> None:
        """Initialize the snapshot store.

        Args:
            directory: Storage directory, defaults to SNAPSTORE_DIR.
        """
        if directory is None:
            directory = get_settings().SNAPSTORE_DIR
        self.directory = Path(directory)
        self.db_path = self.directory / DB_FILE_NAME
        self._index: SnapIndex | None = None
        self._fetcher: HttpFetcher | None = None

    async def init(self) -> None:
        """Initialize the store - create the directory and open the index."""
        self.directory.mkdir(parents=True, exist_ok=True)
        index = SnapIndex(self.db_path)
        await index.init()
        self._index = index
        logger.info("Snapshot store initialized", directory=str(self.directory))

    async def close(self) -> None:
        """Close the index connection and the default fetcher."""
        if self._index:
            await self._index.close()
            self._index = None
        if self._fetcher:
            await self._fetcher.close()
            self._fetcher = None

    async def __aenter__(self) -> SnapStore:
        await self.init()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def index(self) -> SnapIndex:
        """The metadata index of this store."""
        if not self._index:
            raise IndexFailureError("SnapStore not initialized. Call init() first.")
        return self._index

    def _meta(self, timestamp: int, content_hash: str) -> SnapMeta:
        return SnapMeta(
            timestamp=timestamp,
            content_hash=content_hash,
            path=address_of(self.directory, content_hash),
        )

    async def create_snap(
        self,
        uri: str,
        content: Content,
        previous_hash: str | None = None,
    ) -> SnapMeta:
        """Create a new snapshot of the content of a URI.

        Args:
            uri: URI the content belongs to.
            content: Bytes, text or a one-shot byte stream.
            previous_hash: Hash of the latest known snapshot of this URI.
                Unchanged content is recorded without rewriting the file.

        Returns:
            Metadata of the new snapshot.
        """
        index = self.index
        with log_context(uri=uri, operation="create_snap"):
            uri_id = await index.upsert_uri(uri)
            meta = await write_snap(self.directory, content, previous_hash)
            # Only index content which has been written completely
            await index.record_snap(uri_id, meta.timestamp, meta.content_hash)

            logger.info(
                "Created snapshot",
                hash=meta.content_hash[:12],
                timestamp=meta.timestamp,
                deduplicated=meta.content_hash == previous_hash,
            )
            return meta

    async def get_latest_snap(
        self, uri: str, max_timestamp: int | None = None
    ) -> SnapMeta | None:
        """Get metadata of the latest snapshot of a URI.

        Args:
            uri: URI to look up.
            max_timestamp: Only consider snapshots taken at or before this time.

        Returns:
            Snapshot metadata or None if there is no snapshot.
        """
        row = await self.index.latest_snap(uri, max_timestamp)
        if row is None:
            return None
        return self._meta(*row)

    async def get_snap(self, uri: str, policy: Policy | None = None) -> SnapMeta | None:
        """Get metadata of the latest snapshot of a URI which follows the policy.

        Returns None both if there is no snapshot and if it is too old.
        """
        policy = policy or Policy()
        snap = await self.get_latest_snap(uri, policy.max_timestamp)
        if snap is None or not follows_policy(snap, policy):
            return None
        return snap

    async def history(self, uri: str, max_timestamp: int | None = None) -> list[SnapMeta]:
        """List metadata of all snapshots of a URI, newest first."""
        rows = await self.index.history(uri, max_timestamp)
        return [self._meta(timestamp, content_hash) for timestamp, content_hash in rows]

    async def _require_snap(self, uri: str, policy: Policy | None) -> SnapMeta:
        snap = await self.get_snap(uri, policy)
        if snap is None:
            context: dict[str, Any] = {"uri": uri}
            if policy is not None:
                context["max_age"] = policy.max_age
                context["max_timestamp"] = policy.max_timestamp
            raise SnapshotNotFoundError("No matching snapshot found", context)
        return snap

    async def load_bytes(self, uri: str, policy: Policy | None = None) -> Snapshot[bytes]:
        """Load the raw content of the latest snapshot which follows the policy.

        Raises:
            SnapshotNotFoundError: If there is no matching snapshot.
        """
        snap = await self._require_snap(uri, policy)
        return Snapshot.from_meta(snap, await read_snap(snap.path))

    async def load_json(self, uri: str, policy: Policy | None = None) -> Snapshot[Any]:
        """Load and decode the latest JSON snapshot which follows the policy.

        Raises:
            SnapshotNotFoundError: If there is no matching snapshot.
            SnapshotDecodeError: If the snapshot is not valid JSON.
        """
        snap = await self._require_snap(uri, policy)
        raw = await read_snap(snap.path)
        try:
            content = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            raise SnapshotDecodeError(
                "Snapshot content is not valid JSON",
                {"uri": uri, "hash": snap.content_hash, "error": str(e)},
            ) from e
        return Snapshot.from_meta(snap, content)

    def _default_fetcher(self) -> HttpFetcher:
        if self._fetcher is None:
            self._fetcher = HttpFetcher()
        return self._fetcher

    async def cache(
        self,
        uri: str,
        fetcher: Fetcher | None = None,
        request_options: Mapping[str, Any] | None = None,
        response_mutator: ResponseMutator | None = None,
        policy: Policy | None = None,
    ) -> Snapshot[httpx.Response]:
        """Fetch a URI through the snapshot cache.

        Serves the latest stored snapshot if it follows the policy. Otherwise
        fetches the URI, stores the response body as a new snapshot and
        returns the response.

        Args:
            uri: URI to fetch.
            fetcher: Fetches fresh responses, defaults to an HttpFetcher.
            request_options: Options passed to the fetcher.
            response_mutator: Replaces the fetched response before it is
                stored. The returned response body must not have been read;
                a mutator which needs the original body has to read it itself
                and build a new response.
            policy: Freshness policy for stored snapshots.

        Returns:
            Snapshot whose content is a response with an unread body.

        Raises:
            FetchFailedError: If the fetch fails, is unsuccessful or returns
                an empty body. No snapshot is recorded in this case.
        """
        policy = policy or Policy()
        with log_context(uri=uri, operation="cache"):
            latest = await self.get_latest_snap(uri, policy.max_timestamp)
            if latest is not None and follows_policy(latest, policy):
                content = await read_snap(latest.path)
                logger.debug("Serving stored snapshot", hash=latest.content_hash[:12])
                return Snapshot.from_meta(
                    latest, httpx.Response(200, content=content), is_fresh=False
                )

            fetch = fetcher or self._default_fetcher()
            response = await self._fetch(fetch, uri, request_options)

            if response_mutator is not None:
                response = await response_mutator(response)

            try:
                body = await _unread_body(response)
                if body is None:
                    raise FetchFailedError(
                        "Fetch returned an empty body",
                        response,
                        {"uri": uri, "status_code": response.status_code},
                    )

                # The body can only be consumed once: one copy to store, one to return
                body_to_store, body_to_return = body.tee()
                meta = await self.create_snap(
                    uri,
                    body_to_store,
                    previous_hash=latest.content_hash if latest else None,
                )
            except SnapStoreError:
                # Storage and index failures are not fetch failures
                raise
            except Exception as e:
                logger.warning("Reading the response body failed", error=str(e))
                raise FetchFailedError(
                    "Failed to read response body",
                    response,
                    {"uri": uri, "status_code": response.status_code, "error": str(e)},
                ) from e

            fresh_response = httpx.Response(
                response.status_code,
                headers=[
                    (name, value)
                    for name, value in response.headers.multi_items()
                    if name.lower() not in _BODY_HEADERS
                ],
                stream=body_to_return,
                request=_request_of(response),
            )
            return Snapshot.from_meta(meta, fresh_response, is_fresh=True)

    async def _fetch(
        self,
        fetch: Fetcher,
        uri: str,
        request_options: Mapping[str, Any] | None,
    ) -> httpx.Response:
        """Call the fetcher and reject unsuccessful responses."""
        try:
            response = await fetch(uri, request_options)
        except Exception as e:
            logger.warning("Fetch failed", error=str(e))
            raise FetchFailedError(
                "Failed to fetch URI", None, {"uri": uri, "error": str(e)}
            ) from e

        if not response.is_success:
            logger.warning("Fetch was unsuccessful", status_code=response.status_code)
            try:
                # Keep the body available for inspection
                await response.aread()
            except Exception as e:
                raise FetchFailedError(
                    "Failed to read unsuccessful response",
                    response,
                    {"uri": uri, "status_code": response.status_code},
                ) from e
            raise FetchFailedError(
                "Fetch returned an unsuccessful status",
                response,
                {"uri": uri, "status_code": response.status_code},
            )

        return response


async def _unread_body(response: httpx.Response) -> ByteStream | None:
    """Take ownership of a response body, or None if the body is empty."""
    chunks = response.aiter_bytes()
    async for first in chunks:
        if first:
            break
    else:
        return None

    async def body() -> AsyncIterator[bytes]:
        yield first
        async for chunk in chunks:
            yield chunk

    return ByteStream(body())


def _request_of(response: httpx.Response) -> httpx.Request | None:
    try:
        return response.request
    except RuntimeError:
        return None
