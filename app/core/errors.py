"""Application-level exception types.

This module defines the client-facing error taxonomy of the proxy. Each
error maps to a fixed HTTP status and is rendered by the global exception
handlers as a structured JSON body. Messages are written for the kiosk
client: they never carry upstream hostnames, exception text or credentials.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep the shape stable as errors evolve.
    """

    code: str
    message: str
    hint: str
    allowed_methods: list[str]
    retry_after: int
    limit: int
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details safe to show to clients.
        headers: Extra response headers (e.g. Allow, Retry-After).
    """

    code: str
    message: str
    details: ErrorDetails | None = None
    headers: dict[str, str] = field(default_factory=dict)

    status_code: ClassVar[int] = 500

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class BadRequestError(AppError):
    """Raised when the request path is malformed or attempts traversal."""

    status_code = 400


class ForbiddenError(AppError):
    """Raised when a path is outside the proxy allow-list."""

    status_code = 403


class MethodNotAllowedError(AppError):
    """Raised for any method other than GET and HEAD."""

    status_code = 405


class RateLimitedError(AppError):
    """Raised when a client exhausted its request budget."""

    status_code = 429


class BadGatewayError(AppError):
    """Raised when the upstream could not be reached or failed before responding."""

    status_code = 502


class ViewerTemplateError(AppError):
    """Raised when the viewer page template cannot be loaded."""

    status_code = 500


class UpstreamTransportError(Exception):
    """Internal signal for upstream transport failures.

    Carries the underlying reason for operator logs only; the proxy converts
    it to BadGatewayError (or aborts the stream) before anything reaches the
    client.
    """

    def __init__(self, reason: str, *, error_type: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.error_type = error_type
