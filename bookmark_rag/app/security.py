from __future__ import annotations

"""Caller identity resolution from API keys."""

from dataclasses import dataclass

from fastapi import HTTPException, Request, status

from bookmark_rag.app.settings import settings


@dataclass(frozen=True)
class AuthContext:
    """Resolved identity for the current request."""
    api_key: str | None
    user_id: str


async def require_user(request: Request) -> AuthContext:
    """Resolve the caller's user id, or allow anonymous access if configured."""
    api_key = _extract_api_key(request)
    key_map = settings.api_key_map
    if not key_map:
        if settings.allow_anonymous:
            return AuthContext(api_key=None, user_id=settings.default_user_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    user_id = key_map.get(api_key) if api_key else None
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return AuthContext(api_key=api_key, user_id=user_id)


def _extract_api_key(request: Request) -> str | None:
    """Extract API key from headers."""
    header_key = request.headers.get("x-api-key")
    if header_key:
        return header_key.strip()
    auth = request.headers.get("authorization")
    if not auth:
        return None
    parts = auth.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1].strip()
    return None
