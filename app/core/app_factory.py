from __future__ import annotations

"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers and
the per-process components) so tests can build isolated instances with
their own settings, rate limiter and fake upstream.
"""

from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from app.adapters.rate_limit.base import AbstractRateLimiter
from app.adapters.upstream.base import AbstractUpstreamClient
from app.adapters.upstream.factory import create_upstream_client
from app.api.routes import health_router, proxy_router, viewer_router
from app.core.config import Settings, settings as default_settings, warn_on_incomplete_config
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware, security_headers_middleware
from app.core.rate_limit import create_rate_limiter
from app.schemas.viewer import ViewerConfig
from app.services.proxy_service import ForwardingProxy
from app.services.viewer_service import ViewerService

_UNSET = object()


def create_app(
    app_settings: Settings | None = None,
    *,
    upstream_client: AbstractUpstreamClient | None = None,
    rate_limiter: AbstractRateLimiter | None | object = _UNSET,
    configure_logs: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        app_settings: Settings to build from; defaults to the global settings.
        upstream_client: Upstream client to use; built from settings if omitted.
        rate_limiter: Limiter instance; built from settings if omitted, and
            ``None`` disables rate limiting explicitly.
        configure_logs: Configure root logging (disable in tests that capture logs).

    Returns:
        Configured app with middleware, handlers, routers and components.
    """
    cfg = app_settings or default_settings

    # Logging first so subsequent init logs are formatted as desired
    if configure_logs:
        configure_logging(
            cfg.log,
            debug=cfg.viewer.debug,
            secrets=[cfg.upstream.api_key.get_secret_value()],
        )
    warn_on_incomplete_config(cfg)

    client = upstream_client or create_upstream_client(cfg.upstream)
    limiter = create_rate_limiter(cfg.app) if rate_limiter is _UNSET else rate_limiter

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            yield
        finally:
            await client.aclose()

    app = FastAPI(
        title="Photo Kiosk Proxy",
        description=(
            "Read-only relay between a kiosk photo viewer and the Immich API. "
            "Forwards whitelisted GET/HEAD requests with the server-side API key, "
            "streams responses back and rate-limits clients per address."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.settings = cfg
    app.state.rate_limiter = limiter
    app.state.forwarding_proxy = ForwardingProxy(client, cfg.upstream, debug=cfg.viewer.debug)
    template_path = Path(cfg.app.template_path) if cfg.app.template_path else None
    app.state.viewer_service = ViewerService(ViewerConfig.from_settings(cfg.viewer), template_path)

    # Middleware (last registered runs first)
    app.middleware("http")(security_headers_middleware)
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(proxy_router, prefix=cfg.app.proxy_prefix.rstrip("/"))
    app.include_router(viewer_router)
    app.include_router(health_router)

    return app
