"""Rate limiting dependency for FastAPI routes.

This module wires the rate limiting adapter into the HTTP layer.

Design goals:
- Minimal coupling: API routes depend on a dependency function only.
- Swap-friendly: the limiter instance lives on ``app.state`` and is built by
  the app factory, so tests and multi-instance deployments can inject their
  own implementation.
- Never silent: disabling is an explicit setting and is logged at startup.

Rate limiting strategy:
- Independent window per client address (``ip:<host>``).
- Rejected requests never reach the forwarding proxy.
"""

from __future__ import annotations

import hashlib
import logging

from fastapi import Request

from app.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult
from app.adapters.rate_limit.in_memory import InMemoryWindowRateLimiter
from app.core.config import AppSettings, settings
from app.core.errors import RateLimitedError

logger = logging.getLogger(__name__)


def create_rate_limiter(app_settings: AppSettings | None = None) -> AbstractRateLimiter | None:
    """Build the limiter configured by settings.

    Args:
        app_settings: Settings to use; defaults to the global settings.

    Returns:
        A limiter instance, or None when rate limiting is disabled.
    """

    cfg = app_settings or settings.app
    if not cfg.rate_limit_enabled:
        return None

    return InMemoryWindowRateLimiter(
        limit=cfg.rate_limit_requests,
        window_seconds=cfg.rate_limit_window_seconds,
        max_keys=cfg.rate_limit_max_clients,
    )


def build_rate_limit_key(request: Request) -> str:
    """Build the limiter key for the current request."""

    client_host = request.client.host if request.client else "unknown"
    return f"ip:{client_host}"


def _hash_limiter_key(key: str) -> str:
    """Hash the rate limit key for logging without exposing client addresses."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def rate_limit_headers(result: RateLimitResult, window_seconds: int) -> dict[str, str]:
    """Standard (draft-7 style) rate limit headers plus Retry-After."""

    reset_in = result.retry_after_seconds or 0
    headers = {
        "RateLimit-Policy": f"{result.limit};w={window_seconds}",
        "RateLimit": f"limit={result.limit}, remaining={result.remaining}, reset={reset_in}",
    }
    if result.retry_after_seconds is not None:
        headers["Retry-After"] = str(result.retry_after_seconds)
    return headers


async def enforce_rate_limit(request: Request) -> None:
    """FastAPI dependency enforcing rate limits.

    Consumes 1 unit from the client's budget. When the client exceeded its
    budget, raises RateLimitedError (HTTP 429) before the route runs.

    Args:
        request: FastAPI request.

    Raises:
        RateLimitedError: When the rate limit is exceeded.
    """

    limiter: AbstractRateLimiter | None = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        return

    key = build_rate_limit_key(request)
    key_hash = _hash_limiter_key(key)

    result = limiter.consume(key)
    if result.allowed:
        logger.debug(
            "rate_limit.allowed",
            extra={
                "key_hash": key_hash,
                "limit": result.limit,
                "remaining": result.remaining,
            },
        )
        return

    retry_after = result.retry_after_seconds or 0
    logger.warning(
        "rate_limit.exceeded",
        extra={
            "key_hash": key_hash,
            "limit": result.limit,
            "window_s": limiter.window_seconds,
            "retry_after_s": retry_after,
        },
    )

    cfg = getattr(request.app.state, "settings", settings)
    headers: dict[str, str] = {}
    if cfg.app.rate_limit_include_headers:
        headers = rate_limit_headers(result, limiter.window_seconds)

    raise RateLimitedError(
        code="rate_limited",
        message="Too many requests. Try again later.",
        details={"retry_after": retry_after, "limit": result.limit},
        headers=headers,
    )
