"""Forwarding proxy between the kiosk client and the photo API.

One inbound request maps to exactly one outbound attempt:

    method check -> path pipeline -> open upstream -> relay chunks

Failures before the upstream answered become sanitized AppErrors (405, 400,
403, 502). Once response headers have been relayed, a transport failure can
no longer be reported as an error body; the relay re-raises so the server
aborts the connection and the client sees a truncated transfer instead of
corrupted content.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, Iterable

import anyio
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from app.adapters.upstream.base import AbstractUpstreamClient, AbstractUpstreamResponse
from app.core.config import UpstreamSettings
from app.core.errors import BadGatewayError, MethodNotAllowedError, UpstreamTransportError
from app.core.logging import clear_request_id, get_request_id, set_request_id
from app.core.path_validation import ResolvedTarget, resolve_target

logger = logging.getLogger(__name__)

ALLOWED_METHODS = ("GET", "HEAD")

# RFC 9110 hop-by-hop headers (must not be forwarded)
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "te",
        "trailer",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)

# Headers that reveal upstream topology or carry upstream session state
PRIVATE_RESPONSE_HEADERS = frozenset({"server", "via", "x-powered-by", "set-cookie"})

API_KEY_HEADER = "x-api-key"


def filter_response_headers(headers: Iterable[tuple[str, str]]) -> dict[str, str]:
    """Drop hop-by-hop and topology-revealing headers from an upstream response."""
    filtered: dict[str, str] = {}
    for name, value in headers:
        key = name.lower()
        if key in HOP_BY_HOP_HEADERS or key in PRIVATE_RESPONSE_HEADERS:
            continue
        if key in filtered:
            filtered[key] = f"{filtered[key]}, {value}"
        else:
            filtered[key] = value
    return filtered


class ForwardingProxy:
    """Validate, rewrite and relay kiosk requests to the photo API.

    Attributes:
        upstream: Client used for outbound requests.
        config: Upstream origin, credential and allow-list.
        debug: Log incoming paths and targets at debug level.
    """

    def __init__(
        self,
        upstream: AbstractUpstreamClient,
        config: UpstreamSettings,
        *,
        debug: bool = False,
    ) -> None:
        self.upstream = upstream
        self.config = config
        self.debug = debug

    def check_method(self, method: str) -> str:
        """Only GET and HEAD are relayed.

        Raises:
            MethodNotAllowedError: For every other method.
        """
        method = method.upper()
        if method not in ALLOWED_METHODS:
            raise MethodNotAllowedError(
                code="method_not_allowed",
                message="Only GET and HEAD requests are allowed.",
                details={"allowed_methods": list(ALLOWED_METHODS)},
                headers={"Allow": ", ".join(ALLOWED_METHODS)},
            )
        return method

    def resolve(self, raw_path: str, query: str = "") -> ResolvedTarget:
        """Run the path pipeline against the configured origin and allow-list."""
        return resolve_target(
            raw_path,
            origin=self.config.url,
            allowed_prefixes=self.config.allowed_prefixes,
            query=query,
            api_path=self.config.api_path,
        )

    def outbound_headers(self) -> dict[str, str]:
        """Headers for the upstream request; the only place the credential is used."""
        return {
            "Accept": "application/json",
            API_KEY_HEADER: self.config.api_key.get_secret_value(),
        }

    async def open_upstream(self, method: str, target: ResolvedTarget) -> AbstractUpstreamResponse:
        """Send the outbound request and wait for the response headers.

        Raises:
            BadGatewayError: If the upstream is not configured or unreachable.
        """
        if not self.config.is_configured:
            logger.error(
                "proxy.upstream_not_configured",
                extra={"missing": "IMMICH_URL or IMMICH_API_KEY"},
            )
            raise BadGatewayError(code="bad_gateway", message="Bad Gateway")

        try:
            upstream = await self.upstream.open(method, target.url, headers=self.outbound_headers())
        except UpstreamTransportError as exc:
            logger.error(
                "proxy.upstream_unreachable",
                extra={
                    "error_type": exc.error_type,
                    "error_msg": exc.reason,
                    "prefix": target.prefix,
                },
            )
            raise BadGatewayError(code="bad_gateway", message="Bad Gateway") from exc

        if self.debug:
            logger.debug(
                "proxy.upstream_status",
                extra={"status_code": upstream.status_code, "target": target.url},
            )
        return upstream

    async def relay(
        self,
        upstream: AbstractUpstreamResponse,
        target: ResolvedTarget,
        *,
        request_id: str | None = None,
    ) -> AsyncIterator[bytes]:
        """Forward upstream body chunks one at a time, in arrival order.

        The upstream response is closed when the body ends, when the upstream
        fails mid-stream, and when the client goes away (the server cancels
        this generator). Closing is shielded so cancellation cannot leave the
        outbound socket dangling.

        The body is sent after the request id middleware has returned, so the
        id captured in ``handle`` is restored here for the stream logs.
        """
        if request_id:
            set_request_id(request_id)
        sent = 0
        try:
            async for chunk in upstream.iter_chunks():
                sent += len(chunk)
                yield chunk

            if self.debug:
                logger.debug(
                    "proxy.stream_completed",
                    extra={"bytes_sent": sent, "target": target.url},
                )
        except UpstreamTransportError as exc:
            logger.warning(
                "proxy.stream_aborted",
                extra={
                    "error_type": exc.error_type,
                    "error_msg": exc.reason,
                    "bytes_sent": sent,
                    "prefix": target.prefix,
                },
            )
            raise
        finally:
            with anyio.CancelScope(shield=True):
                await upstream.aclose()
            if request_id:
                clear_request_id()

    async def handle(self, method: str, raw_path: str, query: str = "") -> StreamingResponse:
        """Validate and relay one kiosk request.

        Args:
            method: Inbound HTTP method.
            raw_path: Percent-encoded path below the proxy mount point (attacker-controlled).
            query: Raw inbound query string, forwarded unchanged.

        Returns:
            StreamingResponse carrying the upstream status, filtered headers
            and streamed body. Non-2xx upstream statuses pass through verbatim.

        Raises:
            MethodNotAllowedError: Method is not GET or HEAD.
            BadRequestError: Path traversal after normalization.
            ForbiddenError: Path outside the allow-list.
            BadGatewayError: Upstream missing or unreachable.
        """
        method = self.check_method(method)
        target = self.resolve(raw_path, query)

        if self.debug:
            logger.debug(
                "proxy.incoming",
                extra={"method": method, "raw_path": raw_path, "target": target.url},
            )

        upstream = await self.open_upstream(method, target)

        logger.info(
            "proxy.forwarded",
            extra={
                "method": method,
                "prefix": target.prefix,
                "status_code": upstream.status_code,
            },
        )

        return StreamingResponse(
            self.relay(upstream, target, request_id=get_request_id()),
            status_code=upstream.status_code,
            headers=filter_response_headers(upstream.headers),
            # Covers responses whose body iterator never started
            background=BackgroundTask(upstream.aclose),
        )
