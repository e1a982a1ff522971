"""Test doubles for the upstream photo API and settings builders."""

from __future__ import annotations

from typing import AsyncIterator, Callable, Mapping

import httpx

from app.adapters.upstream.base import AbstractUpstreamClient, AbstractUpstreamResponse
from app.core.config import AppSettings, Settings, UpstreamSettings, ViewerSettings
from app.core.errors import UpstreamTransportError

UPSTREAM_SECRET = "test-upstream-secret-123"
UPSTREAM_URL = "http://immich.internal:2283"


def make_settings(
    *,
    upstream: dict | None = None,
    viewer: dict | None = None,
    app: dict | None = None,
) -> Settings:
    """Build isolated settings; unspecified fields keep their defaults."""
    upstream_kwargs = {"url": UPSTREAM_URL, "api_key": UPSTREAM_SECRET}
    upstream_kwargs.update(upstream or {})
    return Settings(
        upstream=UpstreamSettings(**upstream_kwargs),
        viewer=ViewerSettings(**(viewer or {})),
        app=AppSettings(**(app or {})),
    )


async def iterate(chunks: list[bytes]) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk


class StreamedBody(httpx.AsyncByteStream):
    """Response body delivered chunk by chunk, like a real network stream.

    httpx preloads plain ``content=`` bodies, so mock responses built with
    this stream exercise the same raw streaming path as a live upstream.
    """

    def __init__(self, chunks: list[bytes]) -> None:
        self.chunks = chunks
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self.chunks:
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


class FakeUpstreamResponse(AbstractUpstreamResponse):
    """Scripted upstream response that can fail after a number of chunks."""

    def __init__(
        self,
        status_code: int = 200,
        headers: list[tuple[str, str]] | None = None,
        chunks: Callable[[], AsyncIterator[bytes]] | list[bytes] | None = None,
        fail_after: int | None = None,
    ) -> None:
        self.status_code = status_code
        self.headers = headers or [("content-type", "application/json")]
        self._chunks = chunks if chunks is not None else [b"{}"]
        self._fail_after = fail_after
        self.chunks_read = 0
        self.closed = 0

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        source = self._chunks() if callable(self._chunks) else iterate(self._chunks)
        async for chunk in source:
            if self._fail_after is not None and self.chunks_read >= self._fail_after:
                raise UpstreamTransportError("connection reset by peer", error_type="ReadError")
            self.chunks_read += 1
            yield chunk

    async def aclose(self) -> None:
        self.closed += 1


class FakeUpstreamClient(AbstractUpstreamClient):
    """Records outbound requests and answers with a scripted response."""

    def __init__(
        self,
        response: FakeUpstreamResponse | None = None,
        error: UpstreamTransportError | None = None,
    ) -> None:
        self.response = response or FakeUpstreamResponse()
        self.error = error
        self.calls: list[tuple[str, str, dict[str, str]]] = []
        self.closed = False

    async def open(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str],
    ) -> FakeUpstreamResponse:
        self.calls.append((method, url, dict(headers)))
        if self.error is not None:
            raise self.error
        return self.response

    async def aclose(self) -> None:
        self.closed = True
