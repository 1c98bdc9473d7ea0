"""
One-shot byte streams.

A response body can only be read once. ByteStream makes that explicit: it
raises StreamConsumedError on a second read, and tee() hands ownership of the
underlying source to two branches that can be consumed independently.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import AsyncIterable, AsyncIterator

import httpx

from snapstore.exceptions import StreamConsumedError


class _TeeSource:
    """Shared source of a tee, buffering chunks per branch."""

    def __init__(self, iterator: AsyncIterator[bytes], branches: int) -> None:
        self._iterator = iterator
        self._buffers: list[deque[bytes] | None] = [deque() for _ in range(branches)]
        self._lock = asyncio.Lock()
        self._exhausted = False
        self._error: BaseException | None = None

    async def _pull(self) -> None:
        """Read one chunk from the source into every open branch buffer."""
        if self._error is not None:
            raise self._error
        try:
            chunk = await anext(self._iterator)
        except StopAsyncIteration:
            self._exhausted = True
            return
        except Exception as e:
            # Every branch must see the failure, not a silently truncated body
            self._error = e
            raise
        for buffer in self._buffers:
            if buffer is not None:
                buffer.append(chunk)

    async def next_chunk(self, branch: int) -> bytes | None:
        """Get the next chunk for a branch, or None at the end of the stream."""
        buffer = self._buffers[branch]
        if buffer is None:
            raise StreamConsumedError("Stream branch has been closed", {"branch": branch})

        async with self._lock:
            if not buffer and not self._exhausted:
                await self._pull()

        if buffer:
            return buffer.popleft()
        return None

    async def close(self, branch: int) -> None:
        """Discard a branch. The source is closed once every branch is gone."""
        self._buffers[branch] = None
        if all(buffer is None for buffer in self._buffers):
            aclose = getattr(self._iterator, "aclose", None)
            if aclose is not None:
                await aclose()


class _TeeBranch:
    """Async iterator over one branch of a tee."""

    def __init__(self, source: _TeeSource, branch: int) -> None:
        self._source = source
        self._branch = branch
        self._closed = False

    def __aiter__(self) -> _TeeBranch:
        return self

    async def __anext__(self) -> bytes:
        chunk = await self._source.next_chunk(self._branch)
        if chunk is None:
            raise StopAsyncIteration
        return chunk

    async def aclose(self) -> None:
        if not self._closed:
            self._closed = True
            await self._source.close(self._branch)


class ByteStream(httpx.AsyncByteStream):
    """Async byte stream that can be consumed exactly once.

    Can be used as the stream of an httpx.Response.
    """

    def __init__(self, source: AsyncIterable[bytes]) -> None:
        self._source = source
        self._consumed = False
        self._closed = False

    @classmethod
    def from_bytes(cls, content: bytes, chunk_size: int = 65536) -> ByteStream:
        """Create a stream which yields the given content in chunks."""

        async def chunks() -> AsyncIterator[bytes]:
            for start in range(0, len(content), chunk_size):
                yield content[start : start + chunk_size]

        return cls(chunks())

    @property
    def consumed(self) -> bool:
        """Whether ownership of the source has been taken already."""
        return self._consumed

    def _take(self) -> AsyncIterable[bytes]:
        if self._consumed:
            raise StreamConsumedError("Byte stream has already been consumed")
        self._consumed = True
        return self._source

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iterate(self._take())

    async def _iterate(self, source: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
        async for chunk in source:
            if chunk:
                yield chunk

    async def read(self) -> bytes:
        """Read the whole stream."""
        return b"".join([chunk async for chunk in self])

    def tee(self) -> tuple[ByteStream, ByteStream]:
        """Split this stream into two independent streams.

        This stream must not be read afterwards. Chunks are buffered for the
        branch which lags behind, so draining one branch completely before
        reading the other holds the whole content in memory.
        """
        source = _TeeSource(aiter(self._take()), 2)
        return ByteStream(_TeeBranch(source, 0)), ByteStream(_TeeBranch(source, 1))

    async def aclose(self) -> None:
        """Discard the stream without reading the rest of it."""
        if self._closed:
            return
        self._closed = True
        self._consumed = True
        aclose = getattr(self._source, "aclose", None)
        if aclose is not None:
            await aclose()


def as_stream(content: bytes | AsyncIterable[bytes]) -> ByteStream:
    """Coerce bytes or an async iterable of bytes into a ByteStream."""
    if isinstance(content, ByteStream):
        return content
    if isinstance(content, (bytes, bytearray, memoryview)):
        return ByteStream.from_bytes(bytes(content))
    return ByteStream(content)
