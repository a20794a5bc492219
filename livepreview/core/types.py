"""Type definitions for livepreview core modules."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TypedDict


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass
class PreviewSession:
    """One live, proxied dev server.

    The id is the only capability to route to or stop the session. The
    port, temp dir and process group are owned exclusively by it until
    the reaper tears it down.
    """

    id: str
    port: int
    temp_dir: Path
    project_root: Path
    pid: int
    process: asyncio.subprocess.Process | None = None
    pgid: int | None = None
    framework: str = "unknown"
    strategy: str | None = None
    log_path: Path | None = None
    # Backend serves under the session prefix itself (public base path)
    base_path: str | None = None
    created_at: datetime = field(default_factory=utc_now)

    def age_seconds(self, now: datetime | None = None) -> float:
        return ((now or utc_now()) - self.created_at).total_seconds()

    @property
    def target(self) -> str:
        return f"http://127.0.0.1:{self.port}"


@dataclass
class LaunchResult:
    """Outcome of a successful launch."""

    process: asyncio.subprocess.Process
    port: int
    strategy: str
    log_path: Path
    attempts: int
    pgid: int | None = None
    # Set when the dev server was told to serve under this path prefix
    base_path: str | None = None


class SessionRecord(TypedDict):
    """On-disk crash-recovery record of a live session."""

    id: str
    pid: int
    pgid: int | None
    port: int
    temp_dir: str
    created_at: str  # ISO format
