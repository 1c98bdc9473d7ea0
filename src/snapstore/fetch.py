"""
HTTP fetcher for fetch-through caching.

Sends requests with httpx and returns the response with its body still
unread, so the caller can stream it into storage.
"""

from __future__ import annotations

import mimetypes
from typing import Any, Awaitable, Callable, Mapping, Protocol
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from snapstore.config import get_settings
from snapstore.logging import get_logger

logger = get_logger(__name__)


class Fetcher(Protocol):
    """Retrieves fresh content for a URI."""

    async def __call__(
        self, uri: str, options: Mapping[str, Any] | None = None
    ) -> httpx.Response:
        """Fetch the URI. The returned response body must not have been read."""
        ...


# Replaces a fetched response before it is stored
ResponseMutator = Callable[[httpx.Response], Awaitable[httpx.Response]]


class HttpFetcher:
    """Fetches URIs with an httpx client.

    Features:
    - Streaming responses (body left unread)
    - Retries with exponential backoff on transport errors
    - file:// URIs served from the local filesystem
    """

    def __init__(
        self,
        timeout: float | None = None,
        max_retries: int | None = None,
        user_agent: str | None = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            timeout: Request timeout in seconds, defaults to FETCH_TIMEOUT.
            max_retries: Retries on transport errors, defaults to FETCH_MAX_RETRIES.
            user_agent: User-Agent header, defaults to USER_AGENT.
        """
        settings = get_settings()
        self.timeout = timeout if timeout is not None else settings.FETCH_TIMEOUT
        self.max_retries = (
            max_retries if max_retries is not None else settings.FETCH_MAX_RETRIES
        )
        self.user_agent = user_agent or settings.USER_AGENT
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": self.user_agent},
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __call__(
        self, uri: str, options: Mapping[str, Any] | None = None
    ) -> httpx.Response:
        """Fetch a URI.

        Args:
            uri: URL to fetch.
            options: Request options. "method" selects the HTTP method (GET by
                default); "headers", "params", "content", "json" etc. are passed
                to httpx.AsyncClient.build_request.

        Returns:
            Response whose body has not been read yet.

        Raises:
            httpx.HTTPError: If the request fails after all retries.
        """
        request_options = dict(options or {})
        method = str(request_options.pop("method", "GET")).upper()

        if urlparse(uri).scheme == "file":
            return self._fetch_file(uri, method)

        client = await self._get_client()
        request = client.build_request(method, uri, **request_options)

        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(httpx.TransportError),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=10),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        "Fetch attempt failed, retrying",
                        url=uri,
                        attempt=attempt.retry_state.attempt_number,
                    )
                response = await client.send(request, stream=True)

        logger.debug("Fetched URI", url=uri, status=response.status_code)
        return response

    def _fetch_file(self, uri: str, method: str) -> httpx.Response:
        """Serve a file:// URI from the local filesystem."""
        if method != "GET":
            return httpx.Response(405)

        path = url2pathname(unquote(urlparse(uri).path))
        try:
            with open(path, "rb") as local_file:
                content = local_file.read()
        except FileNotFoundError:
            return httpx.Response(404)
        except OSError as e:
            raise httpx.ConnectError(f"Cannot read {path}: {e}") from e

        content_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
        return httpx.Response(200, headers={"Content-Type": content_type}, content=content)
