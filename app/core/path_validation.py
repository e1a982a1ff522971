"""Path validation for proxied requests.

Every proxied path goes through the same pipeline, in this order:

1. normalize (POSIX semantics, always one leading slash)
2. reject any remaining parent-directory marker on the *normalized* path
3. match the first segment against the allow-list
4. build the upstream URL

Checks run on the normalized value and the normalized value is what gets
forwarded, so nothing is validated in one form and sent in another. The path
stays percent-encoded throughout: an encoded `?`, `#` or `/` inside a segment
reaches the upstream as the same escape, never as a delimiter.
"""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass
from typing import Iterable
from urllib.parse import unquote

from app.core.errors import BadRequestError, ForbiddenError

logger = logging.getLogger(__name__)

PARENT_MARKER = ".."

# Nested percent-encoding deeper than this is rejected outright
MAX_DECODE_PASSES = 3


@dataclass(frozen=True)
class ResolvedTarget:
    """Outcome of validating one proxied path.

    Attributes:
        path: Normalized absolute path, as forwarded upstream.
        prefix: Allow-list entry the path matched.
        url: Fully qualified upstream URL, query string included.
    """

    path: str
    prefix: str
    url: str


def strip_mount(raw_path: str, mount: str) -> str | None:
    """Return the part of ``raw_path`` below ``mount``, or None if it is not under it.

    Examples:
        >>> strip_mount("/api/proxy/albums/a%3Fb", "/api/proxy")
        '/albums/a%3Fb'
        >>> strip_mount("/health", "/api/proxy") is None
        True
    """
    mount = mount.rstrip("/")
    if raw_path == mount:
        return "/"
    if raw_path.startswith(mount + "/"):
        return raw_path[len(mount):]
    return None


def normalize_path(raw_path: str) -> str:
    """Resolve ``.``/``..`` segments and duplicate slashes.

    The result is always absolute with exactly one leading slash; ``..``
    above the root collapses to the root, matching POSIX normalization.

    Examples:
        >>> normalize_path("albums/./123")
        '/albums/123'
        >>> normalize_path("//assets//abc/../def")
        '/assets/def'
        >>> normalize_path("")
        '/'
    """
    # posixpath keeps a double leading slash, so anchor the path ourselves
    normalized = posixpath.normpath("/" + raw_path.lstrip("/"))
    return "/" + normalized.lstrip("/")


def contains_parent_marker(path: str) -> bool:
    """True when ``..`` survives in the path, plainly or percent-encoded.

    The path is decoded repeatedly so double-encoded markers (``%252e``) are
    caught too. A path still changing after ``MAX_DECODE_PASSES`` decodes
    counts as a marker.
    """
    decoded = path
    for _ in range(MAX_DECODE_PASSES):
        if PARENT_MARKER in decoded:
            return True
        unquoted = unquote(decoded)
        if unquoted == decoded:
            return False
        decoded = unquoted
    return True


def match_prefix(path: str, allowed_prefixes: Iterable[str]) -> str | None:
    """Return the allow-list entry equal to the path's first segment."""
    first_segment = path.lstrip("/").split("/", 1)[0]
    if not first_segment:
        return None
    for prefix in allowed_prefixes:
        if first_segment == prefix.strip("/"):
            return prefix
    return None


def build_base_url(origin: str, api_path: str = "/api") -> str:
    """Append the API segment to the origin unless it is already there.

    Idempotent: ``build_base_url(build_base_url(x))`` equals ``build_base_url(x)``.

    Examples:
        >>> build_base_url("http://host")
        'http://host/api'
        >>> build_base_url("http://host/api/")
        'http://host/api'
    """
    base = origin.rstrip("/")
    if api_path and not base.endswith(api_path):
        base += api_path
    return base


def build_target_url(origin: str, path: str, query: str = "", *, api_path: str = "/api") -> str:
    """Join origin, API segment, normalized path and optional query string."""
    url = build_base_url(origin, api_path) + path
    if query:
        url += "?" + query
    return url


def resolve_target(
    raw_path: str,
    *,
    origin: str,
    allowed_prefixes: Iterable[str],
    query: str = "",
    api_path: str = "/api",
) -> ResolvedTarget:
    """Run the full validation pipeline for one proxied path.

    Args:
        raw_path: Path below the proxy mount point, as received.
        origin: Configured upstream origin.
        allowed_prefixes: Permitted first path segments.
        query: Raw query string, forwarded unchanged.
        api_path: API segment to ensure on the origin.

    Returns:
        ResolvedTarget with the normalized path and upstream URL.

    Raises:
        BadRequestError: If a parent-directory marker survives normalization.
        ForbiddenError: If the first segment is not allow-listed.
    """
    path = normalize_path(raw_path)

    if contains_parent_marker(path):
        logger.warning(
            "path_validation.traversal_rejected",
            extra={"normalized_path": path},
        )
        raise BadRequestError(code="invalid_path", message="Invalid path.")

    prefix = match_prefix(path, allowed_prefixes)
    if prefix is None:
        logger.warning(
            "path_validation.not_allowed",
            extra={"normalized_path": path},
        )
        raise ForbiddenError(
            code="endpoint_not_allowed",
            message="Endpoint not allowed by proxy whitelist.",
        )

    return ResolvedTarget(
        path=path,
        prefix=prefix,
        url=build_target_url(origin, path, query, api_path=api_path),
    )
