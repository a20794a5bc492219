"""Lifecycle Reaper - reclaims expired, dead and stopped sessions.

Teardown is the only path that releases session resources, whether it
is reached from the periodic sweep, an explicit stop, service shutdown
or an aborted start-preview request. Its own failures (killing a pid
that already exited, deleting a directory that is gone) are logged and
swallowed; they never change the outcome for the caller.
"""

import asyncio
import logging
import shutil
from datetime import datetime
from pathlib import Path

from livepreview.core.port_allocator import PortAllocator
from livepreview.core.session_records import SessionRecordStore
from livepreview.core.session_registry import SessionRegistry
from livepreview.core.types import PreviewSession
from livepreview.utils.process import terminate_process

logger = logging.getLogger(__name__)


class LifecycleReaper:
    """Periodic and on-demand teardown of preview sessions."""

    def __init__(
        self,
        registry: SessionRegistry,
        allocator: PortAllocator,
        *,
        ttl_seconds: float = 600.0,
        interval_seconds: float = 60.0,
        kill_grace: float = 5.0,
        records: SessionRecordStore | None = None,
    ) -> None:
        self.registry = registry
        self.allocator = allocator
        self.ttl_seconds = ttl_seconds
        self.interval_seconds = interval_seconds
        self.kill_grace = kill_grace
        self.records = records
        self._task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # On-demand
    # ------------------------------------------------------------------

    async def stop(self, session_id: str) -> bool:
        """Stop a session.

        Returns:
            True if this call tore the session down, False if the id was
            unknown or already stopped. Never raises for either case.
        """
        session = self.registry.remove(session_id)
        if session is None:
            return False
        await self.teardown(session)
        logger.info("Stopped preview session %s", session_id)
        return True

    async def sweep(self, now: datetime | None = None) -> list[str]:
        """Reap every session older than the TTL or whose process has exited."""
        candidates = {s.id: s for s in self.registry.list_expired(self.ttl_seconds, now)}
        for session in self.registry.list_all():
            if session.process is not None and session.process.returncode is not None:
                logger.info(
                    "Session %s dev server exited (code %s), reaping",
                    session.id, session.process.returncode,
                )
                candidates.setdefault(session.id, session)

        reaped: list[str] = []
        for session_id in candidates:
            session = self.registry.remove(session_id)
            if session is None:
                continue  # stopped concurrently
            await self.teardown(session)
            reaped.append(session_id)

        if reaped:
            logger.info("Reaped %d session(s): %s", len(reaped), ", ".join(reaped))
        return reaped

    async def reap_all(self) -> None:
        for session in self.registry.list_all():
            await self.stop(session.id)

    async def teardown(self, session: PreviewSession) -> None:
        """Release everything a session owns. The caller has removed it from the registry."""
        await self.release(
            session_id=session.id,
            pid=session.pid,
            pgid=session.pgid,
            process=session.process,
            temp_dir=session.temp_dir,
            port=session.port,
        )

    async def release(
        self,
        *,
        session_id: str | None = None,
        pid: int | None = None,
        pgid: int | None = None,
        process: asyncio.subprocess.Process | None = None,
        temp_dir: Path | None = None,
        port: int | None = None,
    ) -> None:
        """Release whatever subset of resources exists; safe on partial sessions."""
        if pid:
            try:
                await terminate_process(pid, pgid=pgid, process=process, grace=self.kill_grace)
            except Exception:
                logger.warning("Failed to terminate pid=%s", pid, exc_info=True)

        if temp_dir is not None:
            await asyncio.to_thread(_remove_tree, temp_dir)

        if port is not None:
            self.allocator.release(port)

        if session_id is not None and self.records is not None:
            try:
                self.records.remove(session_id)
            except OSError as e:
                logger.warning("Could not remove session record %s: %s", session_id, e)

    # ------------------------------------------------------------------
    # Periodic
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="livepreview-reaper")
            logger.info(
                "Reaper started (ttl=%.0fs, interval=%.0fs)",
                self.ttl_seconds, self.interval_seconds,
            )

    async def shutdown(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Reaper sweep failed")


def _remove_tree(path: Path) -> None:
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Failed to delete %s: %s", path, e)
