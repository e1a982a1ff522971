from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(request: Request) -> dict:
    """Health check endpoint.

    Reports liveness and whether the upstream origin and credential are set.
    Never includes the origin or credential themselves.

    Returns:
        dict: ``status`` ("ok") and ``upstream_configured`` (bool).
    """

    proxy = request.app.state.forwarding_proxy
    return {"status": "ok", "upstream_configured": proxy.config.is_configured}
