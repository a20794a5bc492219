"""Pytest configuration and fixtures for livepreview tests."""

import asyncio
import json
import sys
import threading
import zipfile
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Callable

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from livepreview.models import Base
from livepreview.models.base import get_db
from livepreview.api.app import create_app
from livepreview.api.deps import get_preview_manager_dep
from livepreview.api.routes.proxy import close_http_client
from livepreview.config import Settings, get_settings
from livepreview.core.types import PreviewSession
from livepreview.services.preview_manager import PreviewManager


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine) -> AsyncSession:
    """Create a database session for testing."""
    factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with factory() as session:
        yield session


# =============================================================================
# Settings / projects on disk
# =============================================================================


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings with every directory under tmp_path and short budgets."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        data_dir=tmp_path / "data",
        debug=True,
        cors_origins=["*"],
        port_range_start=18100,
        port_range_end=18199,
        session_ttl_seconds=600,
        reaper_interval_seconds=60,
        kill_grace_seconds=2,
        health_budget_seconds=10,
        health_poll_interval_seconds=0.2,
        health_request_timeout_seconds=1,
        health_check_budget_seconds=1,
        start_timeout_seconds=30,
        install_dependencies=False,
        # Prefix-stripping mode; base-path tests switch it on
        use_public_base_path=False,
    )


def write_package_json(root: Path, **fields) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    path = root / "package.json"
    path.write_text(json.dumps({"name": "demo", **fields}), encoding="utf-8")
    return path


def make_zip(path: Path, entries: dict[str, str]) -> Path:
    """Write a zip archive with the given name -> text entries."""
    with zipfile.ZipFile(path, "w") as zf:
        for name, content in entries.items():
            zf.writestr(name, content)
    return path


@pytest.fixture
def vite_archive(tmp_path: Path) -> Path:
    """A zipped Vite project wrapped in one folder, with macOS metadata."""
    return make_zip(
        tmp_path / "vite-app.zip",
        {
            "vite-app/package.json": json.dumps({
                "name": "vite-app",
                "scripts": {"dev": "vite"},
                "devDependencies": {"vite": "^5.0.0"},
            }),
            "vite-app/vite.config.ts": "export default {}\n",
            "vite-app/index.html": "<!doctype html><title>hi</title>\n",
            "__MACOSX/vite-app/._package.json": "",
        },
    )


# =============================================================================
# Child processes
# =============================================================================


@pytest.fixture
async def spawn_sleeper():
    """Start throwaway long-running children in their own process groups."""
    processes: list[asyncio.subprocess.Process] = []

    async def _spawn(seconds: int = 60) -> asyncio.subprocess.Process:
        process = await asyncio.create_subprocess_exec(
            sys.executable, "-c", f"import time; time.sleep({seconds})",
            start_new_session=True,
        )
        processes.append(process)
        return process

    yield _spawn

    for process in processes:
        if process.returncode is None:
            process.kill()
            await process.wait()


def http_server_command() -> tuple[str, ...]:
    """A launch command that serves the working directory on the given port."""
    return (sys.executable, "-m", "http.server", "{port}", "--bind", "127.0.0.1")


# =============================================================================
# Stub HTTP servers
# =============================================================================


class StubHandler(BaseHTTPRequestHandler):
    """Echoes the request as JSON; subclasses override ``status``."""

    status = 200

    def log_message(self, format, *args):
        pass

    def _reply(self) -> None:
        length = int(self.headers.get("content-length") or 0)
        body = self.rfile.read(length).decode() if length else ""
        payload = json.dumps({
            "method": self.command,
            "path": self.path,
            "headers": {k.lower(): v for k, v in self.headers.items()},
            "body": body,
        }).encode()
        self.send_response(self.status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(payload)

    do_GET = do_POST = do_PUT = do_DELETE = do_HEAD = _reply


@pytest.fixture
def stub_server() -> Callable[[type[BaseHTTPRequestHandler]], str]:
    """Start threaded stub servers; returns their base URL."""
    servers: list[ThreadingHTTPServer] = []

    def _start(handler: type[BaseHTTPRequestHandler] = StubHandler) -> str:
        server = ThreadingHTTPServer(("127.0.0.1", 0), handler)
        threading.Thread(target=server.serve_forever, daemon=True).start()
        servers.append(server)
        return f"http://127.0.0.1:{server.server_address[1]}"

    yield _start

    for server in servers:
        server.shutdown()
        server.server_close()


def port_of(base_url: str) -> int:
    return int(base_url.rsplit(":", 1)[1])


# =============================================================================
# Preview manager / API
# =============================================================================


@pytest.fixture
async def preview_manager(test_settings: Settings):
    """A real manager wired to test settings; torn down after the test."""
    manager = PreviewManager(test_settings)
    yield manager
    await manager.cleanup_all()


def register_stub_session(
    manager: PreviewManager,
    session_id: str,
    port: int,
    temp_dir: Path,
    *,
    pid: int,
    process=None,
    base_path: str | None = None,
) -> PreviewSession:
    """Insert a session that points at an already running backend."""
    temp_dir.mkdir(parents=True, exist_ok=True)
    session = PreviewSession(
        id=session_id,
        port=port,
        temp_dir=temp_dir,
        project_root=temp_dir,
        pid=pid,
        process=process,
        pgid=pid if process is not None else None,
        framework="vite",
        strategy="stub",
        base_path=base_path,
    )
    manager.allocator.claim(port)
    manager.registry.put(session_id, session)
    return session


@pytest.fixture
def test_app(db_engine, test_settings, preview_manager):
    """FastAPI app with database, settings and manager overridden."""
    factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    app = create_app(test_settings)

    async def override_get_db():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_preview_manager_dep] = lambda: preview_manager
    return app


@pytest.fixture
async def api_client(test_app):
    """Create an httpx AsyncClient for API testing.

    The lifespan does not run, so no reaper task or orphan recovery
    interferes with a test.
    """
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await close_http_client()
