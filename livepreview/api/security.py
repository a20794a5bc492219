"""API security: API key authentication for control endpoints.

Only the control API (artifacts, start/stop/health of previews) is
protected. Proxied preview traffic is addressed by the unguessable
session id alone, since browsers loading a preview cannot attach headers.
"""

import secrets
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from livepreview.config import Settings, get_settings


# API Key header scheme
API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)


class AuthenticationError(HTTPException):
    """Raised when authentication fails."""

    def __init__(self, detail: str = "Invalid or missing API key"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "API-Key"},
        )


def _constant_time_compare(a: str, b: str) -> bool:
    """Compare two strings in constant time to prevent timing attacks."""
    return secrets.compare_digest(a.encode(), b.encode())


async def verify_api_key(
    api_key: str | None = Depends(API_KEY_HEADER),
    settings: Settings = Depends(get_settings),
) -> str:
    """Verify API key from X-API-Key header.

    Returns:
        The verified API key, or "dev-mode" when no key is configured

    Raises:
        AuthenticationError: If API key is missing or invalid
    """
    # If no API key configured in settings, auth is disabled (dev mode)
    if not settings.api_key:
        return "dev-mode"

    if not api_key:
        raise AuthenticationError("Missing API key. Include X-API-Key header.")

    if not _constant_time_compare(api_key, settings.api_key):
        raise AuthenticationError("Invalid API key")

    return api_key


# Type alias for dependency injection
ApiKeyDep = Annotated[str, Depends(verify_api_key)]
