"""
Pydantic schemas for API request/response validation.

This module exports all schema classes for use in API endpoints.
"""

from backend.src.schemas.notifications import (
    NotificationResponse,
    NotificationListResponse,
    MarkAllReadResponse,
    UnreadCountResponse,
)
from backend.src.schemas.notification_queue import (
    QueueEntryResponse,
    QueueEntryListResponse,
    PurgeResponse,
)

__all__ = [
    "NotificationResponse",
    "NotificationListResponse",
    "MarkAllReadResponse",
    "UnreadCountResponse",
    "QueueEntryResponse",
    "QueueEntryListResponse",
    "PurgeResponse",
]
