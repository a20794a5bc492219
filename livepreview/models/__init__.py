"""Database models for livepreview."""

from livepreview.models.base import (
    Base,
    TimestampMixin,
    generate_uuid,
    utc_now,
    get_db,
    get_engine,
    get_session_factory,
    init_db,
    close_db,
)
from livepreview.models.artifact import Artifact

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "generate_uuid",
    "utc_now",
    "get_db",
    "get_engine",
    "get_session_factory",
    "init_db",
    "close_db",
    # Models
    "Artifact",
]
