"""Pydantic schemas for API request/response validation."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from livepreview.core.constants import Framework


# =============================================================================
# Artifact Schemas
# =============================================================================


class ArtifactCreate(BaseModel):
    """Schema for registering a project archive."""

    path: str = Field(..., min_length=1, max_length=1024)
    name: str | None = Field(None, min_length=1, max_length=255)
    validate_path: bool = True


class ArtifactResponse(BaseModel):
    """Schema for artifact responses."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    path: str
    size_bytes: int | None = None
    created_at: datetime
    updated_at: datetime


class ArtifactListResponse(BaseModel):
    artifacts: list[ArtifactResponse]
    total: int


# =============================================================================
# Preview Schemas
# =============================================================================


class PreviewStartRequest(BaseModel):
    """Start a preview from a registered artifact or a local project directory.

    Exactly one of ``artifact_id`` (also accepted as ``resultId``) and
    ``project_path`` must be given.
    """

    model_config = ConfigDict(populate_by_name=True)

    artifact_id: str | None = Field(None, alias="resultId", min_length=1)
    project_path: str | None = Field(None, min_length=1, max_length=1024)
    framework: Framework | None = None

    @model_validator(mode="after")
    def _exactly_one_source(self) -> "PreviewStartRequest":
        if (self.artifact_id is None) == (self.project_path is None):
            raise ValueError("Provide exactly one of artifact_id/resultId or project_path")
        return self


class PreviewStartResponse(BaseModel):
    """Camel-cased to match what preview UIs already consume."""

    ok: bool = True
    sessionId: str
    previewUrl: str
    directUrl: str
    port: int
    framework: str
    strategy: str | None = None
    # Older field names, kept for existing clients
    previewId: str
    url: str
    externalUrl: str
    healthUrl: str
    target: str


class PreviewSessionResponse(BaseModel):
    id: str
    port: int
    pid: int
    framework: str
    strategy: str | None = None
    age_seconds: int
    url: str
    created_at: datetime


class PreviewListResponse(BaseModel):
    sessions: list[PreviewSessionResponse]
    total: int


class PreviewHealthResponse(BaseModel):
    """Schema for session health, polled by the UI."""

    ok: bool
    sessionId: str
    healthy: bool
    process_alive: bool
    port: int
    pid: int
    uptime_seconds: int
    framework: str


class PreviewStopResponse(BaseModel):
    ok: bool = True
    stopped: bool


# =============================================================================
# Health / Errors
# =============================================================================


class HealthResponse(BaseModel):
    """Schema for health check response."""

    status: str
    version: str
    sessions: int


class ErrorResponse(BaseModel):
    """Structured error body rendered for every LivePreviewError."""

    ok: bool = False
    code: str
    message: str
    log: str | None = None
