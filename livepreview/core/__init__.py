"""Core business logic for livepreview."""

from livepreview.core.exceptions import (
    LivePreviewError,
    ExtractionError,
    ProjectRootError,
    InstallError,
    PortExhausted,
    ProcessSpawnError,
    LaunchTimeout,
    StartTimeout,
    ProxyTargetMissing,
    UpstreamUnavailable,
    UpstreamTimeout,
    UploadRejected,
    SessionConflictError,
    ArtifactNotFoundError,
    ArtifactPathExistsError,
    ArtifactPathInvalidError,
)
from livepreview.core.artifact_registry import ArtifactRegistry
from livepreview.core.health_prober import HealthProber
from livepreview.core.launcher import DevServerLauncher, parse_announced_port
from livepreview.core.port_allocator import PortAllocator
from livepreview.core.reaper import LifecycleReaper
from livepreview.core.session_records import SessionRecordStore
from livepreview.core.session_registry import SessionRegistry
from livepreview.core.strategies import STRATEGY_TABLE, LaunchStrategy
from livepreview.core.constants import Framework
from livepreview.core.types import LaunchResult, PreviewSession, SessionRecord

__all__ = [
    # Base exception
    "LivePreviewError",
    # Start-request exceptions
    "ExtractionError",
    "ProjectRootError",
    "InstallError",
    "PortExhausted",
    "ProcessSpawnError",
    "LaunchTimeout",
    "StartTimeout",
    # Session exceptions
    "ProxyTargetMissing",
    "UpstreamUnavailable",
    "UpstreamTimeout",
    "UploadRejected",
    "SessionConflictError",
    # Artifact exceptions
    "ArtifactNotFoundError",
    "ArtifactPathExistsError",
    "ArtifactPathInvalidError",
    # Components
    "ArtifactRegistry",
    "HealthProber",
    "DevServerLauncher",
    "parse_announced_port",
    "PortAllocator",
    "LifecycleReaper",
    "SessionRecordStore",
    "SessionRegistry",
    "STRATEGY_TABLE",
    "LaunchStrategy",
    "Framework",
    # Types
    "LaunchResult",
    "PreviewSession",
    "SessionRecord",
]
