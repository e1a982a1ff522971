"""Factory for creating the upstream client instance."""

import httpx

from app.adapters.upstream.base import AbstractUpstreamClient
from app.adapters.upstream.httpx_client import HttpxUpstreamClient
from app.core.config import UpstreamSettings, settings


def create_upstream_client(
    upstream_settings: UpstreamSettings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AbstractUpstreamClient:
    """Instantiate the upstream client from configuration.

    Reads timeouts, pool size and chunk size from
    ``app.core.config.settings.upstream`` unless settings are passed in.

    Args:
        upstream_settings: Optional settings override.
        transport: Optional httpx transport (used by tests to fake the upstream).

    Returns:
        AbstractUpstreamClient: Client owning its own connection pool.
    """
    cfg = upstream_settings or settings.upstream

    timeout = httpx.Timeout(
        cfg.read_timeout_seconds,
        connect=cfg.connect_timeout_seconds,
    )
    limits = httpx.Limits(
        max_connections=cfg.max_connections,
        max_keepalive_connections=max(1, cfg.max_connections // 5),
    )
    client = httpx.AsyncClient(
        timeout=timeout,
        limits=limits,
        follow_redirects=False,
        transport=transport,
    )
    return HttpxUpstreamClient(client, chunk_size=cfg.chunk_size)
