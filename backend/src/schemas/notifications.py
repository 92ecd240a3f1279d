"""
Pydantic schemas for notification API request/response validation.

Provides data validation and serialization for:
- Notification history (list, single notification)
- Read state (mark all read result, unread count)
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_serializer

from backend.src.models.notification import NotificationChannel


class NotificationResponse(BaseModel):
    """Response schema for a single notification."""

    guid: str = Field(..., description="Notification GUID (ntf_xxx)")
    type: str = Field(..., description="Producer tag (e.g. challenge_published)")
    title: str
    body: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    read: bool
    channel: NotificationChannel
    sent_at: datetime
    delivered_at: Optional[datetime] = None
    created_at: datetime

    @field_serializer("sent_at", "delivered_at", "created_at")
    def serialize_datetime_utc(self, v: Optional[datetime]) -> Optional[str]:
        """Serialize datetime as ISO 8601 with explicit UTC timezone."""
        return v.isoformat() + "Z" if v else None

    model_config = {"from_attributes": True}


class NotificationListResponse(BaseModel):
    """Response schema for paginated notification list."""

    items: List[NotificationResponse]
    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1, le=100)
    total: int = Field(..., ge=0, description="Total notifications of the user")


class MarkAllReadResponse(BaseModel):
    """Response schema for mark-all-read."""

    updated_count: int = Field(..., ge=0, description="Notifications marked as read")


class UnreadCountResponse(BaseModel):
    """Response schema for unread notification count."""

    unread: int = Field(..., ge=0, description="Number of unread notifications")
