"""livepreview entry point."""

from livepreview.api.app import create_app
from livepreview.config import get_settings

# Create the application instance
app = create_app()


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "livepreview.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
