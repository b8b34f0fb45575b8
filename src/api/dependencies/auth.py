"""
API Key authentication dependency.

Optional authentication controlled by the API_AUTH_ENABLED environment
variable. When enabled, every docket endpoint requires an X-API-Key header
matching API_KEY.

Settings are read per request so a running server (or a test) picks up
changes without re-importing the app.
"""

import os
import secrets
from typing import Optional

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

# Header definition
api_key_header = APIKeyHeader(
    name="X-API-Key",
    auto_error=False,  # 401 is raised below, only when auth is enabled
    description="API key for authentication (required when API_AUTH_ENABLED=true)",
)


def is_auth_enabled() -> bool:
    return os.getenv("API_AUTH_ENABLED", "false").lower() == "true"


def get_api_key() -> str:
    return os.getenv("API_KEY", "")


async def verify_api_key(
    api_key: Optional[str] = Security(api_key_header),
) -> Optional[str]:
    """
    Verify API key from X-API-Key header.

    Behavior:
    - API_AUTH_ENABLED=false: always passes (returns None)
    - API_AUTH_ENABLED=true: requires a key equal to API_KEY

    Raises:
        HTTPException: 401 if auth enabled and key is missing/invalid
        HTTPException: 500 if auth enabled but API_KEY is unset

    Returns:
        The API key if valid, None if auth disabled
    """
    if not is_auth_enabled():
        return None

    expected = get_api_key()
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="API_AUTH_ENABLED is true but API_KEY is not configured",
        )

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key. Provide X-API-Key header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if not secrets.compare_digest(api_key, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    return api_key
