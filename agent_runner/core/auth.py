"""API key authentication and caller identity."""

from fastapi import Header, HTTPException, Security, status
from fastapi.security import APIKeyHeader

from agent_runner.core.config import settings

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=True)


def verify_api_key(api_key: str = Security(api_key_header)) -> str:
    """Verify API key from request header."""
    if api_key != settings.api_secret_key:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )
    return api_key


def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Return the caller's user id.

    Session management lives in front of this service; the gateway forwards
    the authenticated user as ``X-User-Id``.
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    return x_user_id
