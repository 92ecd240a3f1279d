"""
Authentication dependencies for API routes.

Provides:
- require_user: Resolve the calling user from the X-User-Id header
- require_admin: Require the shared admin token for queue administration

Authentication itself (sessions, tokens) happens upstream of this service:
the gateway in front of the API authenticates the caller and forwards the
user identifier in X-User-Id.
"""

import secrets
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from backend.src.config.settings import AppSettings, get_settings


USER_ID_HEADER = "X-User-Id"
ADMIN_TOKEN_HEADER = "X-Admin-Token"


@dataclass(frozen=True)
class UserContext:
    """Identity of the calling user."""

    user_id: str


async def require_user(
    x_user_id: Optional[str] = Header(default=None, alias=USER_ID_HEADER),
) -> UserContext:
    """
    FastAPI dependency that requires a caller identity.

    Returns:
        UserContext for the calling user

    Raises:
        HTTPException 401: If the X-User-Id header is missing or blank

    Example:
        @router.get("/notifications")
        async def list_notifications(
            user: UserContext = Depends(require_user)
        ):
            items, total = service.list_notifications(user.user_id)
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return UserContext(user_id=user_id)


async def require_admin(
    x_admin_token: Optional[str] = Header(default=None, alias=ADMIN_TOKEN_HEADER),
    settings: AppSettings = Depends(get_settings),
) -> None:
    """
    FastAPI dependency that requires the admin token.

    Raises:
        HTTPException 403: If admin endpoints are disabled (no ADMIN_API_TOKEN)
            or the supplied token doesn't match
    """
    if not settings.admin_api_enabled:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin API is disabled",
        )

    if not x_admin_token or not secrets.compare_digest(
        x_admin_token.encode("utf-8"), settings.admin_api_token.encode("utf-8")
    ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin token",
        )


__all__ = [
    "UserContext",
    "require_user",
    "require_admin",
]
