"""Unit tests for the forwarding proxy service.

Uses a scripted upstream client so every outbound request can be counted:
rejected requests must never reach the upstream.
"""

import hashlib
from typing import AsyncIterator

import pytest

from app.core.errors import (
    BadGatewayError,
    BadRequestError,
    ForbiddenError,
    MethodNotAllowedError,
    UpstreamTransportError,
)
from app.core.logging import clear_request_id, get_request_id, set_request_id
from app.services.proxy_service import ForwardingProxy, filter_response_headers
from tests.fakes import (
    UPSTREAM_SECRET,
    UPSTREAM_URL,
    FakeUpstreamClient,
    FakeUpstreamResponse,
    make_settings,
)


def _proxy(upstream: FakeUpstreamClient, **upstream_overrides) -> ForwardingProxy:
    return ForwardingProxy(upstream, make_settings(upstream=upstream_overrides).upstream)


async def _drain(response) -> bytes:
    body = b""
    async for chunk in response.body_iterator:
        body += chunk
    return body


class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["POST", "PUT", "PATCH", "DELETE", "OPTIONS", "TRACE", "CONNECT"])
    async def test_non_read_methods_are_rejected_without_upstream_call(self, method: str) -> None:
        upstream = FakeUpstreamClient()
        proxy = _proxy(upstream)

        with pytest.raises(MethodNotAllowedError) as exc_info:
            await proxy.handle(method, "/albums/123")

        assert exc_info.value.status_code == 405
        assert exc_info.value.headers == {"Allow": "GET, HEAD"}
        assert method not in exc_info.value.message
        assert upstream.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "path",
        ["/assets/%2e%2e/users", "/albums/%2E%2e/x", "/assets/..%2f..%2fserver-info"],
    )
    async def test_traversal_is_rejected_without_upstream_call(self, path: str) -> None:
        upstream = FakeUpstreamClient()

        with pytest.raises(BadRequestError):
            await _proxy(upstream).handle("GET", path)

        assert upstream.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/users/me", "/server-info/config", "/", "/albums/../api-keys"])
    async def test_non_whitelisted_paths_are_forbidden_without_upstream_call(self, path: str) -> None:
        upstream = FakeUpstreamClient()

        with pytest.raises(ForbiddenError):
            await _proxy(upstream).handle("GET", path)

        assert upstream.calls == []

    @pytest.mark.asyncio
    async def test_method_is_checked_before_path(self) -> None:
        with pytest.raises(MethodNotAllowedError):
            await _proxy(FakeUpstreamClient()).handle("DELETE", "/assets/%2e%2e/users")


class TestOutboundRequest:
    @pytest.mark.asyncio
    async def test_sends_one_request_with_credential_and_accept_header(self) -> None:
        upstream = FakeUpstreamClient()

        response = await _proxy(upstream).handle("GET", "/albums/123", "withoutAssets=false")
        await _drain(response)

        assert len(upstream.calls) == 1
        method, url, headers = upstream.calls[0]
        assert method == "GET"
        assert url == f"{UPSTREAM_URL}/api/albums/123?withoutAssets=false"
        assert headers == {"Accept": "application/json", "x-api-key": UPSTREAM_SECRET}

    @pytest.mark.asyncio
    async def test_head_is_forwarded_as_head(self) -> None:
        upstream = FakeUpstreamClient(FakeUpstreamResponse(chunks=[]))

        response = await _proxy(upstream).handle("head", "/assets/abc/original")
        await _drain(response)

        assert upstream.calls[0][0] == "HEAD"

    @pytest.mark.asyncio
    async def test_origin_with_api_suffix_is_not_duplicated(self) -> None:
        upstream = FakeUpstreamClient()

        await _proxy(upstream, url="http://host/api").handle("GET", "/albums/123")

        assert upstream.calls[0][1] == "http://host/api/albums/123"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("overrides", [{"url": ""}, {"api_key": ""}])
    async def test_unconfigured_upstream_fails_with_bad_gateway(self, overrides: dict) -> None:
        upstream = FakeUpstreamClient()

        with pytest.raises(BadGatewayError):
            await _proxy(upstream, **overrides).handle("GET", "/albums/123")

        assert upstream.calls == []

    @pytest.mark.asyncio
    async def test_transport_failure_becomes_generic_bad_gateway(self) -> None:
        error = UpstreamTransportError(
            "[Errno -2] Name or service not known: immich.internal",
            error_type="ConnectError",
        )
        upstream = FakeUpstreamClient(error=error)

        with pytest.raises(BadGatewayError) as exc_info:
            await _proxy(upstream).handle("GET", "/albums/123")

        assert exc_info.value.status_code == 502
        assert exc_info.value.message == "Bad Gateway"
        assert exc_info.value.details is None
        assert len(upstream.calls) == 1


class TestRelay:
    @pytest.mark.asyncio
    async def test_upstream_status_and_headers_are_passed_through(self) -> None:
        upstream = FakeUpstreamClient(
            FakeUpstreamResponse(
                status_code=404,
                headers=[
                    ("content-type", "application/json"),
                    ("content-length", "27"),
                    ("server", "nginx/1.25"),
                    ("connection", "keep-alive"),
                ],
                chunks=[b'{"message":"Not found"}\n\n\n\n'],
            )
        )

        response = await _proxy(upstream).handle("GET", "/albums/missing")
        body = await _drain(response)

        assert response.status_code == 404
        assert response.headers["content-type"] == "application/json"
        assert response.headers["content-length"] == "27"
        assert "server" not in response.headers
        assert "connection" not in response.headers
        assert body == b'{"message":"Not found"}\n\n\n\n'

    @pytest.mark.asyncio
    async def test_streams_large_body_chunk_by_chunk(self) -> None:
        chunk_size = 64 * 1024
        total = 50 * 1024 * 1024
        source_digest = hashlib.sha256()

        async def generate() -> AsyncIterator[bytes]:
            for i in range(total // chunk_size):
                chunk = bytes([i % 251]) * chunk_size
                source_digest.update(chunk)
                yield chunk

        upstream_response = FakeUpstreamResponse(
            headers=[("content-type", "image/jpeg"), ("content-length", str(total))],
            chunks=generate,
        )
        response = await _proxy(FakeUpstreamClient(upstream_response)).handle(
            "GET", "/assets/abc/original"
        )

        received = hashlib.sha256()
        received_bytes = 0
        largest_chunk = 0
        async for chunk in response.body_iterator:
            received.update(chunk)
            received_bytes += len(chunk)
            largest_chunk = max(largest_chunk, len(chunk))
            # Forwarded as soon as it is read: the relay is never ahead of the upstream
            assert received_bytes == upstream_response.chunks_read * chunk_size

        assert received_bytes == total
        assert received.hexdigest() == source_digest.hexdigest()
        assert largest_chunk == chunk_size
        assert upstream_response.closed >= 1

    @pytest.mark.asyncio
    async def test_mid_stream_failure_truncates_without_error_body(self) -> None:
        upstream_response = FakeUpstreamResponse(
            headers=[("content-type", "image/jpeg"), ("content-length", "300")],
            chunks=[b"a" * 100, b"b" * 100, b"c" * 100],
            fail_after=2,
        )
        response = await _proxy(FakeUpstreamClient(upstream_response)).handle(
            "GET", "/assets/abc/original"
        )

        received: list[bytes] = []
        with pytest.raises(UpstreamTransportError):
            async for chunk in response.body_iterator:
                received.append(chunk)

        assert received == [b"a" * 100, b"b" * 100]
        assert b"Bad Gateway" not in b"".join(received)
        assert upstream_response.closed >= 1

    @pytest.mark.asyncio
    async def test_client_disconnect_closes_upstream(self) -> None:
        upstream_response = FakeUpstreamResponse(chunks=[b"x" * 10] * 100)
        response = await _proxy(FakeUpstreamClient(upstream_response)).handle(
            "GET", "/assets/abc/original"
        )

        iterator = response.body_iterator
        assert await iterator.__anext__() == b"x" * 10
        await iterator.aclose()

        assert upstream_response.closed == 1
        assert upstream_response.chunks_read == 1

    @pytest.mark.asyncio
    async def test_request_id_is_restored_while_streaming(self) -> None:
        seen_ids: list[str | None] = []

        async def chunks() -> AsyncIterator[bytes]:
            for chunk in (b"a", b"b"):
                seen_ids.append(get_request_id())
                yield chunk

        upstream_response = FakeUpstreamResponse(chunks=chunks)
        set_request_id("rid-stream")
        try:
            response = await _proxy(FakeUpstreamClient(upstream_response)).handle(
                "GET", "/assets/abc/original"
            )
        finally:
            clear_request_id()

        assert await _drain(response) == b"ab"
        assert seen_ids == ["rid-stream", "rid-stream"]
        assert get_request_id() is None


class TestFilterResponseHeaders:
    def test_keeps_content_headers(self) -> None:
        headers = filter_response_headers(
            [
                ("Content-Type", "image/webp"),
                ("Content-Length", "1024"),
                ("Content-Encoding", "gzip"),
                ("Cache-Control", "private, max-age=86400"),
                ("ETag", '"abc"'),
            ]
        )
        assert headers == {
            "content-type": "image/webp",
            "content-length": "1024",
            "content-encoding": "gzip",
            "cache-control": "private, max-age=86400",
            "etag": '"abc"',
        }

    def test_drops_hop_by_hop_and_topology_headers(self) -> None:
        headers = filter_response_headers(
            [
                ("Transfer-Encoding", "chunked"),
                ("Keep-Alive", "timeout=5"),
                ("Server", "nginx"),
                ("Via", "1.1 internal-lb"),
                ("X-Powered-By", "Express"),
                ("Set-Cookie", "immich_session=abc"),
            ]
        )
        assert headers == {}
