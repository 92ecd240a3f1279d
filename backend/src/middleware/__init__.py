"""
Middleware components for the Vocalis backend.

This module provides:
- UserContext: Dataclass representing the calling user
- require_user: FastAPI dependency resolving the calling user
- require_admin: FastAPI dependency guarding queue administration
"""

from backend.src.middleware.auth import UserContext, require_admin, require_user

__all__ = [
    "UserContext",
    "require_user",
    "require_admin",
]
