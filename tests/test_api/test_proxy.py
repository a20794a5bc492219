"""Tests for the session reverse proxy (HTTP, Referer fallback and WebSocket)."""

import socket
import sys
import threading
import time
from http.server import BaseHTTPRequestHandler

import httpx
import pytest
from httpx import AsyncClient
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect
from websockets.sync.server import serve

from conftest import StubHandler, port_of, register_stub_session, write_package_json
from livepreview.api.app import create_app
from livepreview.api.deps import get_preview_manager_dep
from livepreview.api.routes import proxy
from livepreview.api.routes.proxy import is_absolute_asset, rewrite_location, session_id_from_referer
from livepreview.config import get_settings
from livepreview.core.health_prober import HealthProber
from livepreview.core.launcher import DevServerLauncher
from livepreview.core.port_allocator import PortAllocator
from livepreview.core.strategies import LaunchStrategy
from livepreview.core.types import PreviewSession
from livepreview.services.preview_manager import PreviewManager


def free_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class RedirectHandler(BaseHTTPRequestHandler):
    """Redirects to the path in ``?to=`` and sets two cookies."""

    def log_message(self, format, *args):
        pass

    def do_GET(self):
        target = self.path.split("?to=", 1)[1] if "?to=" in self.path else "/login"
        target = target.replace("SELF", f"http://127.0.0.1:{self.server.server_address[1]}")
        self.send_response(302)
        self.send_header("Location", target)
        self.send_header("Set-Cookie", "a=1; Path=/")
        self.send_header("Set-Cookie", "b=2; Path=/")
        self.send_header("Content-Length", "0")
        self.end_headers()


class NotFoundHandler(StubHandler):
    status = 404


class SlowHandler(StubHandler):

    def do_GET(self):
        time.sleep(1)
        self._reply()


@pytest.fixture
async def session(preview_manager, stub_server, spawn_sleeper, tmp_path):
    """A session pointing at the echoing stub server."""
    sleeper = await spawn_sleeper()
    base_url = stub_server(StubHandler)
    return register_stub_session(
        preview_manager, "abc", port_of(base_url), tmp_path / "abc", pid=sleeper.pid, process=sleeper
    )


# =============================================================================
# Helpers
# =============================================================================


def _session(port: int = 5101, base_path: str | None = None) -> PreviewSession:
    return PreviewSession(
        id="abc",
        port=port,
        temp_dir=None,
        project_root=None,
        pid=1,
        process=None,
        framework="vite",
        strategy="vite-dev",
        base_path=base_path,
    )


class TestHelpers:

    def test_session_id_from_referer(self):
        assert session_id_from_referer("http://host/preview/abc/", "/preview") == "abc"
        assert session_id_from_referer("http://host/preview/abc/src/App.tsx", "/preview") == "abc"
        assert session_id_from_referer("http://host/preview/abc", "/preview") == "abc"
        assert session_id_from_referer("http://host/other/abc/", "/preview") is None
        assert session_id_from_referer("http://host/preview/", "/preview") is None
        assert session_id_from_referer(None, "/preview") is None

    def test_is_absolute_asset(self):
        assert is_absolute_asset("/@vite/client")
        assert is_absolute_asset("/_next/static/chunks/main.js")
        assert is_absolute_asset("/src/main.tsx")
        assert not is_absolute_asset("/favicon.ico")
        assert not is_absolute_asset("/api/preview")

    def test_rewrite_relative_location(self):
        session = _session()
        assert rewrite_location("/login", session, "/preview/abc") == "/preview/abc/login"
        assert rewrite_location("/preview/abc/x", session, "/preview/abc") == "/preview/abc/x"
        assert rewrite_location("next", session, "/preview/abc") == "next"
        assert rewrite_location("//cdn.example.com/a", session, "/preview/abc") == "//cdn.example.com/a"

    def test_rewrite_absolute_location_to_backend(self):
        session = _session(port=5101)
        assert (
            rewrite_location("http://localhost:5101/a?b=1#c", session, "/preview/abc")
            == "/preview/abc/a?b=1#c"
        )
        assert (
            rewrite_location("https://example.com/a", session, "/preview/abc")
            == "https://example.com/a"
        )
        assert (
            rewrite_location("http://127.0.0.1:9999/a", session, "/preview/abc")
            == "http://127.0.0.1:9999/a"
        )

    def test_base_path_sessions_keep_location(self):
        session = _session(base_path="/preview/abc/")
        assert rewrite_location("/preview/abc/login", session, "/preview/abc") == "/preview/abc/login"


# =============================================================================
# HTTP forwarding
# =============================================================================


class TestHttpProxy:

    async def test_get_strips_prefix_and_keeps_query(self, api_client: AsyncClient, session):
        response = await api_client.get("/preview/abc/src/main.tsx?t=123")

        assert response.status_code == 200
        echoed = response.json()
        assert echoed["method"] == "GET"
        assert echoed["path"] == "/src/main.tsx?t=123"
        assert echoed["headers"]["host"] == f"127.0.0.1:{session.port}"
        assert echoed["headers"]["x-forwarded-host"] == "test"
        assert echoed["headers"]["x-forwarded-proto"] == "http"

    async def test_session_root(self, api_client: AsyncClient, session):
        response = await api_client.get("/preview/abc/")

        assert response.status_code == 200
        assert response.json()["path"] == "/"

    async def test_root_without_slash_redirects(self, api_client: AsyncClient, session):
        response = await api_client.get("/preview/abc?x=1")

        assert response.status_code == 307
        assert response.headers["location"] == "/preview/abc/?x=1"

    async def test_post_body_and_method(self, api_client: AsyncClient, session):
        response = await api_client.post(
            "/preview/abc/api/items",
            content=b'{"name": "x"}',
            headers={"Content-Type": "application/json"},
        )

        echoed = response.json()
        assert echoed["method"] == "POST"
        assert echoed["path"] == "/api/items"
        assert echoed["body"] == '{"name": "x"}'
        assert echoed["headers"]["content-type"] == "application/json"

    async def test_hop_by_hop_headers_not_forwarded(self, api_client: AsyncClient, session):
        response = await api_client.get(
            "/preview/abc/", headers={"Proxy-Authorization": "Basic x", "X-Custom": "kept"}
        )

        headers = response.json()["headers"]
        assert "proxy-authorization" not in headers
        assert headers["x-custom"] == "kept"

    async def test_upstream_status_passed_through(
        self, api_client: AsyncClient, preview_manager, stub_server, spawn_sleeper, tmp_path
    ):
        sleeper = await spawn_sleeper()
        base_url = stub_server(NotFoundHandler)
        register_stub_session(
            preview_manager, "nf", port_of(base_url), tmp_path / "nf", pid=sleeper.pid, process=sleeper
        )

        response = await api_client.get("/preview/nf/missing.js")

        assert response.status_code == 404
        assert response.json()["path"] == "/missing.js"

    async def test_redirects_and_cookies(
        self, api_client: AsyncClient, preview_manager, stub_server, spawn_sleeper, tmp_path
    ):
        sleeper = await spawn_sleeper()
        base_url = stub_server(RedirectHandler)
        register_stub_session(
            preview_manager, "rd", port_of(base_url), tmp_path / "rd", pid=sleeper.pid, process=sleeper
        )

        relative = await api_client.get("/preview/rd/")
        absolute = await api_client.get("/preview/rd/?to=SELF/dashboard")
        external = await api_client.get("/preview/rd/?to=https://example.com/")

        assert relative.status_code == 302
        assert relative.headers["location"] == "/preview/rd/login"
        assert relative.headers.get_list("set-cookie") == ["a=1; Path=/", "b=2; Path=/"]
        assert absolute.headers["location"] == "/preview/rd/dashboard"
        assert external.headers["location"] == "https://example.com/"

    async def test_base_path_session_keeps_prefix(
        self, api_client: AsyncClient, preview_manager, stub_server, spawn_sleeper, tmp_path
    ):
        sleeper = await spawn_sleeper()
        base_url = stub_server(StubHandler)
        register_stub_session(
            preview_manager, "bp", port_of(base_url), tmp_path / "bp",
            pid=sleeper.pid, process=sleeper, base_path="/preview/bp/",
        )

        response = await api_client.get("/preview/bp/src/main.tsx")

        assert response.json()["path"] == "/preview/bp/src/main.tsx"

    async def test_unknown_session(self, api_client: AsyncClient):
        response = await api_client.get("/preview/nope/index.html")

        assert response.status_code == 404
        data = response.json()
        assert data["ok"] is False
        assert data["code"] == "PROXY_TARGET_MISSING"

    async def test_unknown_session_root(self, api_client: AsyncClient):
        response = await api_client.get("/preview/nope")

        assert response.status_code == 404
        assert response.json()["code"] == "PROXY_TARGET_MISSING"

    async def test_stopped_session_is_unreachable(self, api_client: AsyncClient, preview_manager, session):
        await preview_manager.stop("abc")

        response = await api_client.get("/preview/abc/")

        assert response.status_code == 404

    async def test_upstream_down(self, api_client: AsyncClient, preview_manager, spawn_sleeper, tmp_path):
        sleeper = await spawn_sleeper()
        register_stub_session(
            preview_manager, "down", free_port(), tmp_path / "down", pid=sleeper.pid, process=sleeper
        )

        response = await api_client.get("/preview/down/")

        assert response.status_code == 502
        assert response.json()["code"] == "UPSTREAM_UNAVAILABLE"

    async def test_upstream_timeout(
        self, api_client: AsyncClient, preview_manager, stub_server, spawn_sleeper, tmp_path
    ):
        sleeper = await spawn_sleeper()
        base_url = stub_server(SlowHandler)
        register_stub_session(
            preview_manager, "slow", port_of(base_url), tmp_path / "slow", pid=sleeper.pid, process=sleeper
        )
        await proxy.close_http_client()
        proxy._http_client = httpx.AsyncClient(timeout=0.2)

        response = await api_client.get("/preview/slow/")

        assert response.status_code == 504
        assert response.json()["code"] == "UPSTREAM_TIMEOUT"


# =============================================================================
# Referer fallback
# =============================================================================


class TestRefererFallback:

    async def test_absolute_asset_routed_by_referer(self, api_client: AsyncClient, session):
        response = await api_client.get(
            "/@vite/client", headers={"Referer": "http://test/preview/abc/"}
        )

        assert response.status_code == 200
        assert response.json()["path"] == "/@vite/client"

    async def test_next_assets(self, api_client: AsyncClient, session):
        response = await api_client.get(
            "/_next/static/chunks/main.js?v=1",
            headers={"Referer": "http://test/preview/abc/about"},
        )

        assert response.json()["path"] == "/_next/static/chunks/main.js?v=1"

    async def test_asset_without_referer(self, api_client: AsyncClient, session):
        response = await api_client.get("/@vite/client")

        assert response.status_code == 404
        assert response.json()["code"] == "PROXY_TARGET_MISSING"

    async def test_referer_naming_unknown_session(self, api_client: AsyncClient, session):
        response = await api_client.get(
            "/@vite/client", headers={"Referer": "http://test/preview/other/"}
        )

        assert response.status_code == 404

    async def test_non_asset_path_not_proxied(self, api_client: AsyncClient, session):
        response = await api_client.get(
            "/favicon.ico", headers={"Referer": "http://test/preview/abc/"}
        )

        assert response.status_code == 404
        assert response.json()["code"] == "PROXY_TARGET_MISSING"

    async def test_fallback_can_be_disabled(self, api_client: AsyncClient, session, test_settings):
        test_settings.referer_fallback_enabled = False

        response = await api_client.get(
            "/@vite/client", headers={"Referer": "http://test/preview/abc/"}
        )

        assert response.status_code == 404

    async def test_api_routes_take_precedence(self, api_client: AsyncClient, session):
        response = await api_client.get("/health")

        assert response.json()["status"] == "healthy"


# =============================================================================
# WebSocket bridge
# =============================================================================


@pytest.fixture
def ws_upstream():
    """Echo WebSocket server speaking the ``vite-hmr`` subprotocol."""

    def handler(connection):
        connection.send(f"path:{connection.request.path}")
        for message in connection:
            if isinstance(message, bytes):
                connection.send(message[::-1])
            else:
                connection.send(f"echo:{message}")

    server = serve(handler, "127.0.0.1", 0, subprotocols=["vite-hmr"])
    threading.Thread(target=server.serve_forever, daemon=True).start()
    yield server.socket.getsockname()[1]
    server.shutdown()


@pytest.fixture
def ws_client(test_settings):
    """Synchronous client plus a manager whose sessions need no child process."""
    manager = PreviewManager(test_settings)
    app = create_app(test_settings)
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_preview_manager_dep] = lambda: manager
    yield TestClient(app), manager
    # Sessions here point at this process; drop them without signalling
    for session in manager.registry.list_all():
        manager.registry.remove(session.id)


def _ws_session(manager: PreviewManager, port: int, tmp_path) -> None:
    manager.registry.put("ws", PreviewSession(
        id="ws",
        port=port,
        temp_dir=tmp_path / "ws",
        project_root=tmp_path / "ws",
        pid=0,
        process=None,
        framework="vite",
        strategy="stub",
    ))


class TestWebSocketProxy:

    def test_bridges_text_and_binary(self, ws_client, ws_upstream, tmp_path):
        client, manager = ws_client
        _ws_session(manager, ws_upstream, tmp_path)

        with client.websocket_connect("/preview/ws/?token=t1", subprotocols=["vite-hmr"]) as ws:
            assert ws.accepted_subprotocol == "vite-hmr"
            assert ws.receive_text() == "path:/?token=t1"
            ws.send_text("hello")
            assert ws.receive_text() == "echo:hello"
            ws.send_bytes(b"abc")
            assert ws.receive_bytes() == b"cba"

    def test_nested_hmr_path(self, ws_client, ws_upstream, tmp_path):
        client, manager = ws_client
        _ws_session(manager, ws_upstream, tmp_path)

        with client.websocket_connect("/preview/ws/_next/webpack-hmr", subprotocols=["vite-hmr"]) as ws:
            assert ws.receive_text() == "path:/_next/webpack-hmr"

    def test_unknown_session_rejected(self, ws_client):
        client, _ = ws_client

        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/preview/nope/"):
                pass

        assert exc_info.value.code == 1008

    def test_upstream_refusing(self, ws_client, tmp_path):
        client, manager = ws_client
        _ws_session(manager, free_port(), tmp_path)

        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/preview/ws/"):
                pass

        assert exc_info.value.code == 1013


# =============================================================================
# Public base path (real dev-server process)
# =============================================================================


BASE_PATH_SERVER = '''\
import sys
from http.server import BaseHTTPRequestHandler, HTTPServer

port = int(sys.argv[1])
base = sys.argv[sys.argv.index("--base") + 1] if "--base" in sys.argv else "/"


class Handler(BaseHTTPRequestHandler):
    def log_message(self, format, *args):
        pass

    def _head(self):
        body = self.path.encode()
        self.send_response(200 if self.path.startswith(base) else 404)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        return body

    def do_HEAD(self):
        self._head()

    def do_GET(self):
        self.wfile.write(self._head())


HTTPServer(("127.0.0.1", port), Handler).serve_forever()
'''

# Vite-style: serves only under the path given with --base
BASE_PATH_STRATEGY = LaunchStrategy(
    name="base-path-serve",
    command=(sys.executable, "server.py", "{port}"),
    base_path_args=("--base", "{base_path}"),
)


class TestPublicBasePath:

    async def test_base_path_session_is_proxied_with_prefix_kept(
        self, api_client: AsyncClient, test_app, test_settings, tmp_path
    ):
        test_settings.use_public_base_path = True
        project = tmp_path / "site"
        write_package_json(project, devDependencies={"vite": "^5.0.0"})
        (project / "server.py").write_text(BASE_PATH_SERVER)

        allocator = PortAllocator()
        prober = HealthProber(request_timeout=1.0)
        launcher = DevServerLauncher(
            allocator,
            prober,
            log_dir=tmp_path / "logs",
            port_range=(18900, 18949),
            health_budget=10,
            poll_interval=0.2,
            kill_grace=2,
            strategy_table={"vite": (BASE_PATH_STRATEGY,), "unknown": (BASE_PATH_STRATEGY,)},
        )
        manager = PreviewManager(test_settings, allocator=allocator, prober=prober, launcher=launcher)
        test_app.dependency_overrides[get_preview_manager_dep] = lambda: manager

        try:
            session = await manager.start_from_directory(project)
            prefix = f"/preview/{session.id}/"

            assert session.base_path == prefix
            assert manager.direct_url(session) == f"http://127.0.0.1:{session.port}{prefix}"

            response = await api_client.get(f"{prefix}src/main.js")

            assert response.status_code == 200
            # The dev server saw the full prefixed path
            assert response.text == f"{prefix}src/main.js"

            health = await manager.health(session.id)
            assert health.healthy is True
        finally:
            await manager.cleanup_all()
