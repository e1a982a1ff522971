"""httpx-backed upstream client adapter."""

from __future__ import annotations

from typing import AsyncIterator, Mapping

import httpx

from app.adapters.upstream.base import AbstractUpstreamClient, AbstractUpstreamResponse
from app.core.errors import UpstreamTransportError


class HttpxUpstreamResponse(AbstractUpstreamResponse):
    """Wraps a streamed httpx.Response.

    The body is read with ``aiter_raw`` so bytes are relayed exactly as the
    upstream sent them (no transparent decompression); forwarded
    Content-Encoding and Content-Length headers therefore stay truthful.
    A body the transport already loaded is sliced into chunks instead.
    """

    def __init__(self, response: httpx.Response, *, chunk_size: int) -> None:
        self._response = response
        self._chunk_size = chunk_size
        self.status_code = response.status_code
        self.headers = list(response.headers.multi_items())

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        if self._response.is_stream_consumed:
            # Transports may hand back a body that is already in memory
            content = self._response.content
            for start in range(0, len(content), self._chunk_size):
                yield content[start : start + self._chunk_size]
            return

        try:
            async for chunk in self._response.aiter_raw(self._chunk_size):
                yield chunk
        except httpx.HTTPError as exc:
            raise UpstreamTransportError(str(exc), error_type=type(exc).__name__) from exc

    async def aclose(self) -> None:
        await self._response.aclose()


class HttpxUpstreamClient(AbstractUpstreamClient):
    """Client for streaming requests to the photo API.

    Uses a shared ``httpx.AsyncClient`` so connections to the upstream are
    pooled across kiosk requests. Redirects are not followed: a redirect is
    relayed to the client like any other upstream response.
    """

    def __init__(self, client: httpx.AsyncClient, *, chunk_size: int = 64 * 1024) -> None:
        """Initialize the adapter.

        Args:
            client: Configured httpx async client (timeouts, pool limits).
            chunk_size: Read size for relaying response bodies.
        """
        self.client = client
        self.chunk_size = chunk_size

    async def open(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str],
    ) -> HttpxUpstreamResponse:
        """Send the request with ``stream=True`` and wrap the response.

        Raises:
            UpstreamTransportError: On DNS failure, refused connection,
                timeout, protocol error or a malformed upstream URL.
        """
        try:
            request = self.client.build_request(method, url, headers=dict(headers))
            response = await self.client.send(request, stream=True)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise UpstreamTransportError(str(exc), error_type=type(exc).__name__) from exc

        return HttpxUpstreamResponse(response, chunk_size=self.chunk_size)

    async def aclose(self) -> None:
        await self.client.aclose()
