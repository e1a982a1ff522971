from urllib.parse import quote

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from app.core.path_validation import strip_mount
from app.core.rate_limit import enforce_rate_limit
from app.services.proxy_service import ForwardingProxy

router = APIRouter(tags=["Proxy"])

# Every method is routed here so non-GET/HEAD requests get the proxy's own
# structured 405 instead of the framework default.
PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "TRACE", "CONNECT"]


def get_forwarding_proxy(request: Request) -> ForwardingProxy:
    """Return the proxy instance built by the app factory."""
    return request.app.state.forwarding_proxy


def get_raw_proxy_path(request: Request, path: str) -> str:
    """Path below the mount point, percent-encoded as the client sent it.

    The ``{path}`` parameter is already decoded, which would turn ``%3F`` or
    ``%23`` into delimiters. ``raw_path`` keeps the original escapes; when the
    server does not provide it, the decoded value is re-encoded.
    """
    raw_path = request.scope.get("raw_path")
    if raw_path:
        mount = request.app.state.settings.app.proxy_prefix
        below = strip_mount(raw_path.decode("latin-1"), mount)
        if below is not None:
            return below
    return "/" + quote(path, safe="/:@!$&'()*+,;=~")


@router.api_route(
    "/{path:path}",
    methods=PROXY_METHODS,
    dependencies=[Depends(enforce_rate_limit)],
    response_class=StreamingResponse,
)
async def proxy_request(
    path: str,
    request: Request,
    proxy: ForwardingProxy = Depends(get_forwarding_proxy),
) -> StreamingResponse:
    """Relay a whitelisted request to the photo API.

    The rate limit dependency runs first; a rejected client never reaches
    the proxy. Validation errors are raised as AppErrors and rendered by the
    global exception handlers.

    Args:
        path: Decoded path below the proxy mount point.
        request: Incoming request (method, raw path and raw query string are used).
        proxy: Forwarding proxy from application state.

    Returns:
        StreamingResponse: Upstream status, headers and streamed body.
    """
    raw_path = get_raw_proxy_path(request, path)
    query = request.scope.get("query_string", b"").decode("latin-1")
    return await proxy.handle(request.method, raw_path, query)
