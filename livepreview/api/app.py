"""FastAPI application factory for livepreview."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from livepreview import __version__
from livepreview.config import Settings, get_settings
from livepreview.core.exceptions import LivePreviewError
from livepreview.logging_config import setup_logging
from livepreview.models import init_db, close_db
from livepreview.services.preview_manager import get_preview_manager

# Import routers
from livepreview.api.routes.health import router as health_router
from livepreview.api.routes.artifacts import router as artifacts_router
from livepreview.api.routes.previews import router as previews_router
from livepreview.api.routes.proxy import (
    close_http_client,
    fallback_router as proxy_fallback_router,
    router as proxy_router,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifespan - startup and shutdown.

    Handles:
    - Database initialization on startup
    - Orphan recovery and reaper start
    - Teardown of every live preview on shutdown
    - Proxy client and database connection cleanup on shutdown
    """
    # Startup
    settings = get_settings()
    setup_logging(debug=settings.debug)
    await init_db()
    manager = get_preview_manager()
    await manager.startup()
    logger.info("livepreview %s ready", __version__)
    yield
    # Shutdown
    await manager.cleanup_all()
    await close_http_client()
    await close_db()


async def livepreview_error_handler(request: Request, exc: LivePreviewError) -> JSONResponse:
    """Render every domain failure as a structured {ok, code, message} body."""
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Optional settings override. Uses get_settings() if not provided.

    Returns:
        Configured FastAPI application instance.
    """
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title="livepreview",
        description="On-demand live previews of web projects behind a session-scoped reverse proxy",
        version=__version__,
        debug=settings.debug,
        lifespan=lifespan,
        openapi_tags=[
            {"name": "health", "description": "Health check endpoints"},
            {"name": "artifacts", "description": "Registered project archives"},
            {"name": "previews", "description": "Preview session control"},
            {"name": "proxy", "description": "Session-scoped reverse proxy"},
        ],
    )

    app.add_exception_handler(LivePreviewError, livepreview_error_handler)

    # CORS middleware for frontend access
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Root endpoint
    @app.get("/", tags=["root"])
    async def root():
        """Root endpoint with API info."""
        return {
            "name": "livepreview",
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
        }

    # Include API routers
    app.include_router(health_router)
    app.include_router(artifacts_router)
    app.include_router(previews_router)
    app.include_router(proxy_router, prefix=settings.preview_prefix.rstrip("/"))
    # Catch-all, so it goes last
    app.include_router(proxy_fallback_router)

    return app
