"""Artifact management routes."""

import logging

from fastapi import APIRouter, status

from livepreview.api.deps import ApiKeyDep, ArtifactRegistryDep
from livepreview.api.schemas import (
    ArtifactCreate,
    ArtifactListResponse,
    ArtifactResponse,
    ErrorResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/artifacts", tags=["artifacts"])


@router.get(
    "",
    response_model=ArtifactListResponse,
    summary="List registered artifacts",
)
async def list_artifacts(
    registry: ArtifactRegistryDep,
    _api_key: ApiKeyDep,
) -> ArtifactListResponse:
    """List all registered project archives, newest first."""
    artifacts = await registry.list_artifacts()
    return ArtifactListResponse(
        artifacts=[ArtifactResponse.model_validate(a) for a in artifacts],
        total=len(artifacts),
    )


@router.post(
    "",
    response_model=ArtifactResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a project archive",
    responses={
        400: {"model": ErrorResponse, "description": "Path is not a zip archive"},
        409: {"model": ErrorResponse, "description": "Path already registered"},
    },
)
async def create_artifact(
    data: ArtifactCreate,
    registry: ArtifactRegistryDep,
    _api_key: ApiKeyDep,
) -> ArtifactResponse:
    """Register an existing zip archive so previews can start from it by id."""
    artifact = await registry.register_artifact(
        path=data.path,
        name=data.name,
        validate_path=data.validate_path,
    )
    logger.info("Registered artifact %s (%s)", artifact.id, artifact.path)
    return ArtifactResponse.model_validate(artifact)


@router.get(
    "/{artifact_id}",
    response_model=ArtifactResponse,
    summary="Get artifact details",
    responses={404: {"model": ErrorResponse, "description": "Artifact not found"}},
)
async def get_artifact(
    artifact_id: str,
    registry: ArtifactRegistryDep,
    _api_key: ApiKeyDep,
) -> ArtifactResponse:
    artifact = await registry.get_artifact(artifact_id)
    return ArtifactResponse.model_validate(artifact)


@router.delete(
    "/{artifact_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Unregister an artifact",
    responses={404: {"model": ErrorResponse, "description": "Artifact not found"}},
)
async def delete_artifact(
    artifact_id: str,
    registry: ArtifactRegistryDep,
    _api_key: ApiKeyDep,
) -> None:
    """Remove the registration. The archive file on disk is kept."""
    await registry.delete_artifact(artifact_id)
