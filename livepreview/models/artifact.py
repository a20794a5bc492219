"""Artifact model - a packaged project archive that previews can start from."""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from livepreview.models.base import Base, TimestampMixin, generate_uuid


class Artifact(Base, TimestampMixin):
    """A zip archive produced upstream (e.g. by a migration step)."""

    __tablename__ = "artifacts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    # Display name, defaults to the archive file name
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Absolute path to the .zip file
    path: Mapped[str] = mapped_column(String(1024), nullable=False, unique=True)

    size_bytes: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    def __repr__(self) -> str:
        return f"<Artifact(id={self.id!r}, name={self.name!r}, path={self.path!r})>"
