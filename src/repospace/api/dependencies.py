"""
Request guards for the archive API.
"""

from __future__ import annotations

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

from ..settings import settings

_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def require_api_key(api_key: str = Security(_api_key_header)) -> str | None:
    """
    Reject requests without the configured ``X-API-Key``.

    Saving and removing archives touches the local disk, so an API exposed
    beyond localhost should set ``REPOSPACE_API_KEY`` (or ``[general] api_key``
    in the settings file). Without a key every request is let through.
    """
    expected = settings.api_key
    if not expected:
        return None
    if api_key != expected:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key.",
        )
    return api_key
