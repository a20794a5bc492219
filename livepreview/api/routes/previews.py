"""Live preview control routes: start, list, health, stop."""

import asyncio
import logging
import secrets
from pathlib import Path
from typing import Awaitable

from fastapi import APIRouter, File, Form, Request, Response, UploadFile

from livepreview.api.deps import ApiKeyDep, AppSettings, ArtifactRegistryDep, PreviewManagerDep
from livepreview.api.schemas import (
    ErrorResponse,
    PreviewHealthResponse,
    PreviewListResponse,
    PreviewSessionResponse,
    PreviewStartRequest,
    PreviewStartResponse,
    PreviewStopResponse,
)
from livepreview.config import Settings
from livepreview.core.constants import Framework
from livepreview.core.exceptions import UploadRejected
from livepreview.core.types import PreviewSession
from livepreview.services.preview_manager import PreviewManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/preview", tags=["previews"])

UPLOAD_CHUNK_BYTES = 1024 * 1024
# Status for requests whose client went away before the answer was ready
CLIENT_CLOSED_REQUEST = 499

START_ERRORS = {
    400: {"model": ErrorResponse, "description": "Bad archive or project root"},
    404: {"model": ErrorResponse, "description": "Artifact not found"},
    422: {"model": ErrorResponse, "description": "Dependency install failed"},
    503: {"model": ErrorResponse, "description": "No free port in range"},
    504: {"model": ErrorResponse, "description": "Dev server never became healthy"},
}


def _start_response(manager: PreviewManager, session: PreviewSession) -> PreviewStartResponse:
    preview_url = manager.preview_url(session)
    backend_root = f"{session.target}/"
    return PreviewStartResponse(
        sessionId=session.id,
        previewUrl=preview_url,
        directUrl=manager.direct_url(session),
        port=session.port,
        framework=session.framework,
        strategy=session.strategy,
        previewId=session.id,
        url=preview_url,
        externalUrl=preview_url,
        healthUrl=backend_root,
        target=backend_root,
    )


async def _unless_disconnected(request: Request, start: Awaitable[PreviewSession]) -> PreviewSession | None:
    """Run a start pipeline, cancelling it if the client disconnects.

    Cancellation unwinds through the manager's teardown, so an abandoned
    request leaves no process, port or temp dir behind.

    Returns:
        The session, or None if the client went away first.
    """
    task = asyncio.ensure_future(start)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=0.5)
            if done:
                return task.result()
            if await request.is_disconnected():
                logger.info("Client disconnected, aborting preview start")
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                return None
    except BaseException:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise


async def _save_upload(upload: UploadFile, settings: Settings) -> Path:
    """Stream an uploaded archive to disk, enforcing the size cap."""
    if not (upload.filename or "").lower().endswith(".zip"):
        raise UploadRejected("Only .zip archives are accepted")

    settings.uploads_dir.mkdir(parents=True, exist_ok=True)
    destination = settings.uploads_dir / f"{secrets.token_hex(8)}.zip"
    written = 0
    try:
        with open(destination, "wb") as fh:
            while chunk := await upload.read(UPLOAD_CHUNK_BYTES):
                written += len(chunk)
                if written > settings.max_upload_bytes:
                    raise UploadRejected(
                        f"Archive exceeds the {settings.max_upload_bytes} byte upload limit"
                    )
                fh.write(chunk)
    except BaseException:
        destination.unlink(missing_ok=True)
        raise
    finally:
        await upload.close()

    logger.info("Received upload %s (%d bytes) -> %s", upload.filename, written, destination)
    return destination


@router.post(
    "",
    response_model=PreviewStartResponse,
    responses=START_ERRORS,
    include_in_schema=False,
)
@router.post(
    "/start",
    response_model=PreviewStartResponse,
    summary="Start a preview from an artifact or project directory",
    responses=START_ERRORS,
)
async def start_preview(
    data: PreviewStartRequest,
    request: Request,
    manager: PreviewManagerDep,
    artifacts: ArtifactRegistryDep,
    _api_key: ApiKeyDep,
):
    """Extract, install and launch a project; returns its proxied URL once healthy."""
    framework = data.framework.value if data.framework else None
    if data.artifact_id is not None:
        start = manager.start_from_artifact(artifacts, data.artifact_id, framework=framework)
    else:
        start = manager.start_from_directory(Path(data.project_path), framework=framework)

    session = await _unless_disconnected(request, start)
    if session is None:
        return Response(status_code=CLIENT_CLOSED_REQUEST)
    return _start_response(manager, session)


@router.post(
    "/zip",
    response_model=PreviewStartResponse,
    summary="Start a preview from an uploaded archive",
    responses=START_ERRORS,
)
async def start_preview_from_upload(
    request: Request,
    manager: PreviewManagerDep,
    settings: AppSettings,
    _api_key: ApiKeyDep,
    project: UploadFile = File(..., description="Zip archive of the project"),
    framework: Framework | None = Form(None),
):
    archive_path = await _save_upload(project, settings)
    start = manager.start_from_archive(
        archive_path,
        framework=framework.value if framework else None,
        remove_archive=True,
    )
    try:
        session = await _unless_disconnected(request, start)
    finally:
        # Covers aborts that happen before extraction gets to delete it
        archive_path.unlink(missing_ok=True)
    if session is None:
        return Response(status_code=CLIENT_CLOSED_REQUEST)
    return _start_response(manager, session)


@router.get(
    "",
    response_model=PreviewListResponse,
    summary="List live preview sessions",
)
async def list_previews(manager: PreviewManagerDep, _api_key: ApiKeyDep) -> PreviewListResponse:
    sessions = manager.list_sessions()
    return PreviewListResponse(
        sessions=[
            PreviewSessionResponse(
                id=s.id,
                port=s.port,
                pid=s.pid,
                framework=s.framework,
                strategy=s.strategy,
                age_seconds=int(s.age_seconds()),
                url=manager.preview_url(s),
                created_at=s.created_at,
            )
            for s in sessions
        ],
        total=len(sessions),
    )


@router.get(
    "/{session_id}/health",
    response_model=PreviewHealthResponse,
    summary="Check a session's dev server",
    responses={404: {"model": ErrorResponse, "description": "Session not found"}},
)
async def preview_health(
    session_id: str,
    manager: PreviewManagerDep,
    _api_key: ApiKeyDep,
) -> PreviewHealthResponse:
    """Bounded liveness probe of the session's backend, for UI polling."""
    health = await manager.health(session_id)
    return PreviewHealthResponse(
        ok=health.healthy,
        sessionId=health.session_id,
        healthy=health.healthy,
        process_alive=health.process_alive,
        port=health.port,
        pid=health.pid,
        uptime_seconds=health.uptime_seconds,
        framework=health.framework,
    )


@router.delete(
    "/{session_id}",
    response_model=PreviewStopResponse,
    summary="Stop a preview session",
)
async def stop_preview(
    session_id: str,
    manager: PreviewManagerDep,
    _api_key: ApiKeyDep,
) -> PreviewStopResponse:
    """Idempotent: succeeds even if the session is already gone."""
    stopped = await manager.stop(session_id)
    return PreviewStopResponse(stopped=stopped)
