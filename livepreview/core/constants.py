"""Constants used across livepreview core modules."""

from enum import Enum


# =============================================================================
# Frameworks
# =============================================================================


class Framework(str, Enum):
    """Framework classes the launcher has strategies for."""

    VITE = "vite"
    NEXTJS = "nextjs"
    CRA = "cra"
    NUXT = "nuxt"
    ASTRO = "astro"
    EXPRESS = "express"
    UNKNOWN = "unknown"


# =============================================================================
# Health probing
# =============================================================================

# Paths Next/Vite/CRA apps commonly answer on, tried in order every tick
HEALTH_CANDIDATE_PATHS: tuple[str, ...] = (
    "/",
    "/index.html",
    "/api/health",
    "/api/hello",
    "/api/status",
)


# =============================================================================
# Proxy
# =============================================================================

# Absolute paths dev servers emit that cannot carry the session prefix
ABSOLUTE_ASSET_PREFIXES: tuple[str, ...] = (
    "/@vite",
    "/@fs/",
    "/@id/",
    "/@react-refresh",
    "/src/",
    "/node_modules/",
    "/__vite_ping",
    "/_next/",
    "/__nextjs",
)

# RFC 7230 hop-by-hop headers, never forwarded in either direction
HOP_BY_HOP_HEADERS: frozenset[str] = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
})

HTTP_METHODS: tuple[str, ...] = (
    "GET",
    "HEAD",
    "POST",
    "PUT",
    "PATCH",
    "DELETE",
    "OPTIONS",
)


# =============================================================================
# Launch / teardown
# =============================================================================

# Max lines of dev server output carried in an error payload
MAX_LOG_TAIL_LINES = 30

# Directory names that never hold the project root inside an archive
IGNORED_ARCHIVE_DIRS: frozenset[str] = frozenset({"__MACOSX", ".git", "node_modules"})
