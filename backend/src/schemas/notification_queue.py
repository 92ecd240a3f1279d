"""
Pydantic schemas for the notification queue admin API.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_serializer

from backend.src.models.notification import NotificationChannel
from backend.src.models.notification_queue import DeliveryStatus


class QueueEntryResponse(BaseModel):
    """Response schema for a delivery queue entry."""

    guid: str = Field(..., description="Queue entry GUID (ndq_xxx)")
    notification_guid: Optional[str] = Field(
        default=None, description="GUID of the notification being delivered"
    )
    channel: NotificationChannel
    status: DeliveryStatus
    attempts: int = Field(..., ge=0)
    last_error: Optional[str] = None
    available_at: datetime
    created_at: datetime
    updated_at: datetime

    @field_serializer("available_at", "created_at", "updated_at")
    def serialize_datetime_utc(self, v: Optional[datetime]) -> Optional[str]:
        """Serialize datetime as ISO 8601 with explicit UTC timezone."""
        return v.isoformat() + "Z" if v else None

    @classmethod
    def from_entry(cls, entry) -> "QueueEntryResponse":
        """Build the response from a DeliveryQueueEntry model."""
        return cls(
            guid=entry.guid,
            notification_guid=entry.notification.guid if entry.notification else None,
            channel=entry.channel,
            status=entry.status,
            attempts=entry.attempts,
            last_error=entry.last_error,
            available_at=entry.available_at,
            created_at=entry.created_at,
            updated_at=entry.updated_at,
        )


class QueueEntryListResponse(BaseModel):
    """Response schema for a paginated list of queue entries."""

    items: List[QueueEntryResponse]
    total: int = Field(..., ge=0)
    limit: int
    offset: int


class PurgeResponse(BaseModel):
    """Response schema for purging terminal queue entries."""

    deleted_count: int = Field(..., ge=0)
    older_than_days: int
