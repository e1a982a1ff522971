from app.core.app_factory import create_app
from app.core.config import settings

app = create_app()


def run() -> None:
    """Serve the app with Uvicorn on HOST:PORT."""
    import uvicorn

    uvicorn.run(
        app,
        host=settings.server.host,
        port=settings.server.port,
        access_log=settings.viewer.debug,
    )


if __name__ == "__main__":
    run()
