from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse

from app.services.viewer_service import ViewerService

router = APIRouter(tags=["Viewer"])


def get_viewer_service(request: Request) -> ViewerService:
    return request.app.state.viewer_service


@router.api_route("/", methods=["GET", "HEAD"], response_class=HTMLResponse)
def viewer_page(viewer: ViewerService = Depends(get_viewer_service)) -> HTMLResponse:
    """Serve the slideshow page with the settings embedded as inline script data."""

    return HTMLResponse(viewer.render())
