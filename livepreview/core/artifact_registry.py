"""Artifact Registry - Manage project archives that previews start from."""

import zipfile
from pathlib import Path
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from livepreview.models import Artifact
from livepreview.core.exceptions import (
    ArtifactNotFoundError,
    ArtifactPathExistsError,
    ArtifactPathInvalidError,
)


class ArtifactRegistry:
    """Manages registered project archives.

    Responsibilities:
    - Register archive paths produced by an upstream build/migration step
    - Validate that a path is an existing zip archive
    - Resolve artifact ids to archive paths for start-preview
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def register_artifact(
        self,
        path: str,
        name: str | None = None,
        validate_path: bool = True,
    ) -> Artifact:
        """Register an archive.

        Args:
            path: Path to a .zip file
            name: Display name (defaults to the file name)
            validate_path: Whether to require an existing, readable zip

        Returns:
            The created Artifact

        Raises:
            ArtifactPathExistsError: If the path is already registered
            ArtifactPathInvalidError: If the path is not a zip archive
        """
        archive_path = Path(path).resolve()
        size_bytes = None

        if validate_path:
            if not archive_path.is_file():
                raise ArtifactPathInvalidError(f"File does not exist: {archive_path}")
            if not zipfile.is_zipfile(archive_path):
                raise ArtifactPathInvalidError(f"Not a zip archive: {archive_path}")
            size_bytes = archive_path.stat().st_size

        path_str = str(archive_path)

        existing = await self.db.execute(select(Artifact).where(Artifact.path == path_str))
        if existing.scalar_one_or_none():
            raise ArtifactPathExistsError(f"Artifact already registered at: {path_str}")

        artifact = Artifact(
            name=name or archive_path.name,
            path=path_str,
            size_bytes=size_bytes,
        )
        self.db.add(artifact)
        await self.db.commit()
        await self.db.refresh(artifact)
        return artifact

    async def list_artifacts(self) -> Sequence[Artifact]:
        """List all artifacts, newest first."""
        result = await self.db.execute(select(Artifact).order_by(Artifact.created_at.desc()))
        return result.scalars().all()

    async def get_artifact(self, artifact_id: str) -> Artifact:
        """Get an artifact by ID.

        Raises:
            ArtifactNotFoundError: If the artifact doesn't exist
        """
        result = await self.db.execute(select(Artifact).where(Artifact.id == artifact_id))
        artifact = result.scalar_one_or_none()
        if not artifact:
            raise ArtifactNotFoundError(f"Artifact not found: {artifact_id}")
        return artifact

    async def delete_artifact(self, artifact_id: str) -> None:
        """Unregister an artifact. The archive file itself is left in place."""
        artifact = await self.get_artifact(artifact_id)
        await self.db.delete(artifact)
        await self.db.commit()

    async def resolve_archive(self, artifact_id: str) -> Path:
        """Archive path for an artifact, checked to still exist on disk.

        Raises:
            ArtifactNotFoundError: If the artifact or its file is gone
        """
        artifact = await self.get_artifact(artifact_id)
        archive_path = Path(artifact.path)
        if not archive_path.is_file():
            raise ArtifactNotFoundError(f"Archive for artifact {artifact_id} no longer exists")
        return archive_path
