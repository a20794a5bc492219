"""Health check routes."""

from fastapi import APIRouter

from livepreview import __version__
from livepreview.api.deps import PreviewManagerDep
from livepreview.api.schemas import HealthResponse

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", response_model=HealthResponse)
async def health_check(manager: PreviewManagerDep) -> HealthResponse:
    """Basic health check endpoint.

    Returns the service status, version and number of live preview sessions.
    """
    return HealthResponse(
        status="healthy",
        version=__version__,
        sessions=len(manager.registry),
    )
