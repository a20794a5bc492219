"""Reverse proxy routes for live preview sessions.

Traffic under ``<prefix>/<session_id>/`` is forwarded to that session's
dev server on 127.0.0.1 with the prefix stripped (or kept, when the dev
server was started with the prefix as its public base path). WebSocket
upgrades on the same paths are bridged for HMR.

Dev servers also emit absolute asset URLs (``/@vite/client``,
``/_next/static/...``) that cannot carry the prefix. For those, the
session is inferred from the ``Referer`` header. This fallback is a
heuristic: two sessions open in the same browser can be confused, and
it never applies to WebSockets. Starting the dev server with a public
base path avoids it.
"""

import asyncio
import logging
from urllib.parse import urlsplit

import httpx
import websockets
from fastapi import APIRouter, Request, Response, WebSocket, WebSocketDisconnect
from fastapi.responses import RedirectResponse, StreamingResponse
from starlette.background import BackgroundTask
from starlette.websockets import WebSocketState

from livepreview.api.deps import AppSettings, PreviewManagerDep
from livepreview.config import Settings
from livepreview.core.constants import ABSOLUTE_ASSET_PREFIXES, HOP_BY_HOP_HEADERS, HTTP_METHODS
from livepreview.core.exceptions import ProxyTargetMissing, UpstreamTimeout, UpstreamUnavailable
from livepreview.core.types import PreviewSession

logger = logging.getLogger(__name__)

# Mounted under settings.preview_prefix by the app factory
router = APIRouter(tags=["proxy"])
# Catch-all for absolute asset paths; must be included last
fallback_router = APIRouter(tags=["proxy"])

_http_client: httpx.AsyncClient | None = None


def get_http_client() -> httpx.AsyncClient:
    """Get or create the shared HTTP client for proxying."""
    global _http_client
    if _http_client is None:
        _http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(30.0, connect=10.0),
            follow_redirects=False,  # the browser follows rewritten redirects itself
            limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
            trust_env=False,
        )
    return _http_client


async def close_http_client() -> None:
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
    _http_client = None


# =============================================================================
# Helpers
# =============================================================================


def _session_prefix(settings: Settings, session_id: str) -> str:
    return f"{settings.preview_prefix.rstrip('/')}/{session_id}"


def _upstream_path(session: PreviewSession, path: str) -> str:
    """Path on the dev server for a prefix-relative request path."""
    if session.base_path:
        return session.base_path.rstrip("/") + "/" + path
    return "/" + path


def session_id_from_referer(referer: str | None, prefix: str) -> str | None:
    """Session id named by a Referer under ``<prefix>/<id>/...``."""
    if not referer:
        return None
    referer_path = urlsplit(referer).path
    marker = prefix.rstrip("/") + "/"
    if not referer_path.startswith(marker):
        return None
    session_id = referer_path[len(marker):].split("/", 1)[0]
    return session_id or None


def is_absolute_asset(path: str) -> bool:
    return path.startswith(ABSOLUTE_ASSET_PREFIXES)


def rewrite_location(location: str, session: PreviewSession, session_prefix: str) -> str:
    """Keep redirects from a prefix-stripped backend inside the session."""
    if session.base_path:
        return location
    parts = urlsplit(location)
    if parts.scheme:
        if parts.hostname not in ("127.0.0.1", "localhost") or parts.port != session.port:
            return location
        location = parts.path or "/"
        if parts.query:
            location += f"?{parts.query}"
        if parts.fragment:
            location += f"#{parts.fragment}"
    if location.startswith("/") and not location.startswith("//"):
        if location == session_prefix or location.startswith(session_prefix + "/"):
            return location
        return session_prefix + location
    return location


def _request_headers(request: Request, session: PreviewSession) -> dict[str, str]:
    headers = {
        key: value
        for key, value in request.headers.items()
        if key.lower() not in HOP_BY_HOP_HEADERS and key.lower() != "host"
    }
    headers["host"] = f"127.0.0.1:{session.port}"
    client_host = request.client.host if request.client else "127.0.0.1"
    headers["x-forwarded-for"] = client_host
    headers["x-forwarded-proto"] = request.url.scheme
    if request.headers.get("host"):
        headers["x-forwarded-host"] = request.headers["host"]
    return headers


async def forward_request(
    request: Request,
    session: PreviewSession,
    upstream_path: str,
    *,
    session_prefix: str,
) -> Response:
    """Forward one HTTP request to a session's dev server and stream the answer back.

    Raises:
        UpstreamUnavailable: If the dev server refuses or breaks the connection
        UpstreamTimeout: If the dev server does not answer in time
    """
    url = f"{session.target}{upstream_path}"
    if request.url.query:
        url += f"?{request.url.query}"

    client = get_http_client()
    body = await request.body()
    upstream_request = client.build_request(
        request.method,
        url,
        headers=_request_headers(request, session),
        content=body or None,
    )

    try:
        upstream = await client.send(upstream_request, stream=True)
    except httpx.TimeoutException as e:
        logger.warning("Proxy timeout for session %s -> %s: %s", session.id, url, e)
        raise UpstreamTimeout(
            "Preview request timed out. The dev server might still be starting."
        ) from e
    except httpx.HTTPError as e:
        logger.warning("Proxy connection failed for session %s -> %s: %s", session.id, url, e)
        raise UpstreamUnavailable(f"Dev server for session {session.id} is not reachable") from e

    headers: dict[str, str] = {}
    cookies: list[str] = []
    for key, value in upstream.headers.multi_items():
        lower = key.lower()
        if lower in HOP_BY_HOP_HEADERS:
            continue
        if lower == "set-cookie":
            cookies.append(value)
        elif lower == "location":
            headers[key] = rewrite_location(value, session, session_prefix)
        else:
            headers[key] = value

    response = StreamingResponse(
        upstream.aiter_raw(),
        status_code=upstream.status_code,
        headers=headers,
        background=BackgroundTask(upstream.aclose),
    )
    for cookie in cookies:
        response.headers.append("set-cookie", cookie)
    return response


# =============================================================================
# Session-prefixed HTTP
# =============================================================================


@router.api_route("/{session_id}", methods=list(HTTP_METHODS), include_in_schema=False)
async def proxy_session_root(session_id: str, request: Request, manager: PreviewManagerDep):
    """Redirect to the trailing-slash form so relative asset URLs resolve inside the session."""
    manager.get_session(session_id)
    target = f"{request.url.path}/"
    if request.url.query:
        target += f"?{request.url.query}"
    return RedirectResponse(target, status_code=307)


@router.api_route("/{session_id}/{path:path}", methods=list(HTTP_METHODS), include_in_schema=False)
async def proxy_session(
    session_id: str,
    path: str,
    request: Request,
    manager: PreviewManagerDep,
    settings: AppSettings,
) -> Response:
    session = manager.get_session(session_id)
    return await forward_request(
        request,
        session,
        _upstream_path(session, path),
        session_prefix=_session_prefix(settings, session_id),
    )


# =============================================================================
# WebSocket (HMR)
# =============================================================================


@router.websocket("/{session_id}/{path:path}")
async def proxy_session_websocket(
    websocket: WebSocket,
    session_id: str,
    path: str,
    manager: PreviewManagerDep,
):
    """Bridge a WebSocket to the session's dev server.

    Vite (``/?token=``), webpack (``/ws``, ``/sockjs-node``) and Next.js
    (``/_next/webpack-hmr``) all use this for hot reload.
    """
    session = manager.registry.get(session_id)
    if session is None:
        await websocket.close(code=1008, reason="Preview session not found")
        return

    target = f"ws://127.0.0.1:{session.port}{_upstream_path(session, path)}"
    if websocket.url.query:
        target += f"?{websocket.url.query}"
    subprotocols = websocket.scope.get("subprotocols") or None

    try:
        upstream = await websockets.connect(
            target,
            subprotocols=subprotocols,
            open_timeout=10,
            ping_interval=30,
            ping_timeout=10,
            close_timeout=5,
            max_size=None,
        )
    except (websockets.exceptions.InvalidHandshake, OSError, asyncio.TimeoutError) as e:
        logger.warning("WebSocket upstream rejected for session %s (%s): %s", session_id, target, e)
        await websocket.close(code=1013, reason="Dev server not accepting WebSockets")
        return

    await websocket.accept(subprotocol=upstream.subprotocol)
    logger.debug("WebSocket bridged for session %s -> %s", session_id, target)

    async def client_to_upstream() -> None:
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                if message.get("text") is not None:
                    await upstream.send(message["text"])
                elif message.get("bytes") is not None:
                    await upstream.send(message["bytes"])
        except WebSocketDisconnect:
            pass

    async def upstream_to_client() -> None:
        try:
            async for message in upstream:
                if isinstance(message, str):
                    await websocket.send_text(message)
                else:
                    await websocket.send_bytes(message)
        except websockets.exceptions.ConnectionClosed:
            pass

    tasks = [
        asyncio.create_task(client_to_upstream()),
        asyncio.create_task(upstream_to_client()),
    ]
    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in tasks:
            task.cancel()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.debug("WebSocket bridge for session %s ended: %r", session_id, result)
        await upstream.close()
        if websocket.client_state != WebSocketState.DISCONNECTED:
            await websocket.close()


# =============================================================================
# Referer fallback for absolute asset paths
# =============================================================================


@fallback_router.api_route("/{path:path}", methods=list(HTTP_METHODS), include_in_schema=False)
async def proxy_by_referer(
    path: str,
    request: Request,
    manager: PreviewManagerDep,
    settings: AppSettings,
) -> Response:
    """Route an absolute asset request to the session named in its Referer."""
    request_path = "/" + path
    if not settings.referer_fallback_enabled or not is_absolute_asset(request_path):
        raise ProxyTargetMissing(f"Not found: {request_path}")

    session_id = session_id_from_referer(request.headers.get("referer"), settings.preview_prefix)
    if session_id is None:
        raise ProxyTargetMissing(f"No preview session referenced for {request_path}")

    session = manager.get_session(session_id)
    logger.debug("Referer fallback: %s -> session %s", request_path, session_id)
    return await forward_request(
        request,
        session,
        request_path,
        session_prefix=_session_prefix(settings, session_id),
    )
