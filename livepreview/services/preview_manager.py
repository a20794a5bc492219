"""Preview Manager - turns a project archive or directory into a live, proxied session."""

import asyncio
import logging
import secrets
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable

from livepreview.config import Settings, get_settings
from livepreview.core.artifact_registry import ArtifactRegistry
from livepreview.core.exceptions import ProjectRootError, ProxyTargetMissing, StartTimeout
from livepreview.core.health_prober import HealthProber
from livepreview.core.launcher import DevServerLauncher
from livepreview.core.port_allocator import PortAllocator
from livepreview.core.reaper import LifecycleReaper
from livepreview.core.session_records import SessionRecordStore
from livepreview.core.session_registry import SessionRegistry
from livepreview.core.types import LaunchResult, PreviewSession
from livepreview.services.installer import install_dependencies
from livepreview.utils.archive import copy_project, extract_archive, resolve_project_root
from livepreview.utils.process import pid_exists, process_group_of
from livepreview.utils.project_detector import detect_project

logger = logging.getLogger(__name__)

# Directories never copied from a local project into a session
COPY_IGNORE = ("node_modules", ".git", "__MACOSX")

# Fills a session temp dir in a worker thread; must stop once the event is set
Populate = Callable[[Path, threading.Event], None]


@dataclass
class PreviewHealth:
    session_id: str
    healthy: bool
    process_alive: bool
    port: int
    pid: int
    uptime_seconds: int
    framework: str


class PreviewManager:
    """Owns every live preview session of this service.

    A start request runs extract → resolve root → detect → install →
    launch → register under one wall-clock ceiling. Whatever it fails on,
    or if the caller goes away, everything acquired so far is released
    through the reaper, the same path expiry and stop use.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        allocator: PortAllocator | None = None,
        prober: HealthProber | None = None,
        launcher: DevServerLauncher | None = None,
        registry: SessionRegistry | None = None,
        records: SessionRecordStore | None = None,
        reaper: LifecycleReaper | None = None,
        installer: Callable[..., Awaitable[None]] = install_dependencies,
    ) -> None:
        self.settings = settings or get_settings()
        s = self.settings

        self.allocator = allocator or PortAllocator(host=s.bind_host)
        self.prober = prober or HealthProber(request_timeout=s.health_request_timeout_seconds)
        self.launcher = launcher or DevServerLauncher(
            self.allocator,
            self.prober,
            log_dir=s.launch_logs_dir,
            port_range=(s.port_range_start, s.port_range_end),
            health_budget=s.health_budget_seconds,
            poll_interval=s.health_poll_interval_seconds,
            kill_grace=s.kill_grace_seconds,
            npm_command=s.npm_command,
            bind_host=s.bind_host,
        )
        self.registry = registry or SessionRegistry()
        self.records = records or SessionRecordStore(s.session_records_dir)
        self.reaper = reaper or LifecycleReaper(
            self.registry,
            self.allocator,
            ttl_seconds=s.session_ttl_seconds,
            interval_seconds=s.reaper_interval_seconds,
            kill_grace=s.kill_grace_seconds,
            records=self.records,
        )
        self.installer = installer

    # ------------------------------------------------------------------
    # URLs
    # ------------------------------------------------------------------

    def preview_url(self, session: PreviewSession) -> str:
        return f"{self.settings.preview_prefix.rstrip('/')}/{session.id}/"

    def direct_url(self, session: PreviewSession) -> str:
        return f"{session.target}{session.base_path or '/'}"

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    async def start_from_artifact(
        self,
        artifacts: ArtifactRegistry,
        artifact_id: str,
        *,
        framework: str | None = None,
    ) -> PreviewSession:
        """Start a session from a registered artifact.

        Raises:
            ArtifactNotFoundError: If the id or its archive is gone
        """
        archive_path = await artifacts.resolve_archive(artifact_id)
        return await self.start_from_archive(archive_path, framework=framework)

    async def start_from_archive(
        self,
        archive_path: Path,
        *,
        framework: str | None = None,
        remove_archive: bool = False,
    ) -> PreviewSession:
        """Start a session from a zip archive.

        Args:
            archive_path: The .zip to extract into the session's temp dir
            framework: Override for the detected framework
            remove_archive: Delete the archive once extraction has finished
        """

        def populate(temp_dir: Path, abort: threading.Event) -> None:
            try:
                extract_archive(archive_path, temp_dir, abort)
            finally:
                if remove_archive:
                    archive_path.unlink(missing_ok=True)

        return await self._start(populate, framework)

    async def start_from_directory(
        self,
        project_path: Path,
        *,
        framework: str | None = None,
    ) -> PreviewSession:
        """Start a session from an already-extracted directory.

        The directory is copied so the session owns its temp dir exclusively.
        """
        source = Path(project_path).resolve()
        if not source.is_dir():
            raise ProjectRootError(f"Project directory does not exist: {source}")

        def populate(temp_dir: Path, abort: threading.Event) -> None:
            copy_project(source, temp_dir, COPY_IGNORE, abort)

        return await self._start(populate, framework)

    async def _start(self, populate: Populate, framework: str | None) -> PreviewSession:
        session_id = self._new_session_id()
        timeout = self.settings.start_timeout_seconds
        try:
            return await asyncio.wait_for(
                self._run_pipeline(session_id, populate, framework),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise StartTimeout(
                f"Preview start did not finish within {timeout:.0f}s"
            ) from None

    async def _run_pipeline(
        self,
        session_id: str,
        populate: Populate,
        framework_override: str | None,
    ) -> PreviewSession:
        s = self.settings
        temp_dir = s.previews_dir / session_id
        launched: LaunchResult | None = None
        owns_port = True

        logger.info("Starting preview session %s", session_id)
        try:
            temp_dir.mkdir(parents=True)
            await self._populate(populate, temp_dir)

            project_root = await asyncio.to_thread(resolve_project_root, temp_dir)
            detection = await asyncio.to_thread(detect_project, project_root)
            framework = framework_override or detection.framework
            logger.info(
                "Session %s: root=%s framework=%s package_manager=%s",
                session_id, project_root, framework, detection.package_manager,
            )

            if s.install_dependencies and detection.has_package_json:
                await self.installer(
                    project_root,
                    detection.package_manager,
                    timeout=s.install_timeout_seconds,
                    log_path=s.launch_logs_dir / f"{session_id}-install.log",
                    npm_command=s.npm_command,
                    kill_grace=s.kill_grace_seconds,
                )

            base_path = (
                f"{s.preview_prefix.rstrip('/')}/{session_id}/"
                if s.use_public_base_path
                else None
            )
            launched = await self.launcher.launch(
                project_root,
                framework,
                s.max_launch_attempts,
                label=session_id,
                base_path=base_path,
            )

            session = PreviewSession(
                id=session_id,
                port=launched.port,
                temp_dir=temp_dir,
                project_root=project_root,
                pid=launched.process.pid,
                process=launched.process,
                pgid=launched.pgid,
                framework=framework,
                strategy=launched.strategy,
                log_path=launched.log_path,
                base_path=launched.base_path,
            )
            if self.registry.is_port_owned(launched.port):
                # Self-selected port collides with a live session's
                owns_port = False
            self.registry.put(session_id, session)
        except BaseException as e:
            logger.warning(
                "Preview session %s aborted (%s), releasing resources",
                session_id, type(e).__name__,
            )
            await self.reaper.release(
                pid=launched.process.pid if launched else None,
                pgid=launched.pgid if launched else None,
                process=launched.process if launched else None,
                temp_dir=temp_dir,
                port=launched.port if launched and owns_port else None,
            )
            raise

        self.records.write(session)
        logger.info(
            "Preview session %s live on port %d (pid=%d, strategy=%s, attempts=%d)",
            session_id, session.port, session.pid, session.strategy, launched.attempts,
        )
        return session

    @staticmethod
    async def _populate(populate: Populate, temp_dir: Path) -> None:
        """Run ``populate`` in a worker thread that stops with its caller.

        A worker thread cannot be cancelled, so on cancellation it is told
        to stop and awaited; only then may the temp dir be deleted.
        """
        abort = threading.Event()
        worker = asyncio.ensure_future(asyncio.to_thread(populate, temp_dir, abort))
        try:
            await asyncio.shield(worker)
        except BaseException:
            abort.set()
            await asyncio.gather(worker, return_exceptions=True)
            raise

    def _new_session_id(self) -> str:
        while True:
            session_id = secrets.token_urlsafe(16)
            if not self.registry.was_issued(session_id):
                return session_id

    # ------------------------------------------------------------------
    # Query / stop
    # ------------------------------------------------------------------

    def get_session(self, session_id: str) -> PreviewSession:
        """Raises ProxyTargetMissing for unknown or expired ids."""
        session = self.registry.get(session_id)
        if session is None:
            raise ProxyTargetMissing(f"Preview session not found: {session_id}")
        return session

    def list_sessions(self) -> list[PreviewSession]:
        return sorted(self.registry.list_all(), key=lambda s: s.created_at)

    async def health(self, session_id: str) -> PreviewHealth:
        """Current liveness of a session's backend, bounded by the health-check budget."""
        session = self.get_session(session_id)
        if session.process is not None:
            alive = session.process.returncode is None
        else:
            alive = pid_exists(session.pid)

        healthy = False
        if alive:
            base = session.base_path.rstrip("/") if session.base_path else ""
            healthy = await self.prober.probe(
                f"{session.target}{base}",
                self.settings.health_check_budget_seconds,
                self.settings.health_poll_interval_seconds,
            )

        return PreviewHealth(
            session_id=session.id,
            healthy=healthy,
            process_alive=alive,
            port=session.port,
            pid=session.pid,
            uptime_seconds=int(session.age_seconds()),
            framework=session.framework,
        )

    async def stop(self, session_id: str) -> bool:
        """Idempotent stop; False when the session was already gone."""
        return await self.reaper.stop(session_id)

    # ------------------------------------------------------------------
    # Service lifecycle
    # ------------------------------------------------------------------

    async def startup(self) -> None:
        self.settings.previews_dir.mkdir(parents=True, exist_ok=True)
        await self.reap_orphans()
        self.reaper.start()

    async def cleanup_all(self) -> None:
        await self.reaper.shutdown()
        count = len(self.registry)
        await self.reaper.reap_all()
        if count:
            logger.info("Cleaned up %d preview session(s)", count)

    async def reap_orphans(self) -> int:
        """Kill and delete what a previous run of the service left behind.

        Returns:
            Number of recorded sessions reclaimed.
        """
        records = await asyncio.to_thread(self.records.load_all)
        reclaimed = 0
        for record in records:
            if record["id"] in self.registry:
                continue

            pid, pgid = record["pid"], record["pgid"]
            # Only signal a pid that still leads the group we recorded
            still_ours = pid_exists(pid) and (pgid is None or process_group_of(pid) == pgid)
            if still_ours:
                logger.info(
                    "Killing orphaned dev server of session %s (pid=%d, port=%d)",
                    record["id"], pid, record["port"],
                )
            await self.reaper.release(
                session_id=record["id"],
                pid=pid if still_ours else None,
                pgid=pgid,
                temp_dir=Path(record["temp_dir"]),
            )
            reclaimed += 1

        previews_dir = self.settings.previews_dir
        if previews_dir.is_dir():
            for stale in previews_dir.iterdir():
                if stale.is_dir() and stale.name not in self.registry:
                    logger.info("Removing stale preview directory %s", stale)
                    await self.reaper.release(temp_dir=stale)

        if reclaimed:
            logger.info("Reclaimed %d orphaned session(s)", reclaimed)
        return reclaimed


_preview_manager: PreviewManager | None = None


def get_preview_manager() -> PreviewManager:
    global _preview_manager
    if _preview_manager is None:
        _preview_manager = PreviewManager()
    return _preview_manager


def reset_preview_manager() -> None:
    global _preview_manager
    _preview_manager = None
