"""FastAPI dependencies for dependency injection."""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from livepreview.config import Settings, get_settings
from livepreview.models.base import get_db
from livepreview.core.artifact_registry import ArtifactRegistry
from livepreview.services.preview_manager import PreviewManager, get_preview_manager

# Re-export security dependencies for convenience
from livepreview.api.security import ApiKeyDep, verify_api_key

__all__ = [
    "DBSession",
    "AppSettings",
    "ArtifactRegistryDep",
    "PreviewManagerDep",
    "ApiKeyDep",
    "verify_api_key",
]


# Type aliases for cleaner dependency injection
DBSession = Annotated[AsyncSession, Depends(get_db)]
AppSettings = Annotated[Settings, Depends(get_settings)]


async def get_artifact_registry(db: DBSession) -> ArtifactRegistry:
    """Get ArtifactRegistry instance with database session."""
    return ArtifactRegistry(db)


def get_preview_manager_dep() -> PreviewManager:
    """The process-wide manager; it owns live child processes across requests."""
    return get_preview_manager()


# Annotated types for dependency injection
ArtifactRegistryDep = Annotated[ArtifactRegistry, Depends(get_artifact_registry)]
PreviewManagerDep = Annotated[PreviewManager, Depends(get_preview_manager_dep)]
