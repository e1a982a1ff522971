"""Upstream adapter layer - abstracts the HTTP client used to reach the photo API."""

from app.adapters.upstream.base import AbstractUpstreamClient, AbstractUpstreamResponse
from app.adapters.upstream.factory import create_upstream_client
from app.adapters.upstream.httpx_client import HttpxUpstreamClient, HttpxUpstreamResponse

__all__ = [
    "AbstractUpstreamClient",
    "AbstractUpstreamResponse",
    "HttpxUpstreamClient",
    "HttpxUpstreamResponse",
    "create_upstream_client",
]
