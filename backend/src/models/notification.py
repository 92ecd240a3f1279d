"""
Notification model for user-facing notification records.

Notifications are created by producers (auth flow, billing webhooks, challenge
publishing, inactivity and weekly jobs) and serve as the source of truth for
the in-app notification list. Delivery over other channels is tracked
separately in the notification queue.
"""

import enum

from sqlalchemy import (
    Boolean, Column, DateTime, Enum, Index, Integer, JSON, String, Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from backend.src.models import Base
from backend.src.models.mixins import GuidMixin
from backend.src.utils.clock import utcnow


class NotificationChannel(str, enum.Enum):
    """
    Delivery channel for a notification.

    - INAPP: Visible through the notification list (and live push when connected)
    - EMAIL: Sent through the configured SMTP transport
    - PUSH: Mobile/browser push
    """
    INAPP = "inapp"
    EMAIL = "email"
    PUSH = "push"


class Notification(Base, GuidMixin):
    """
    Notification event addressed to a user.

    Attributes:
        user_id: Owning user's identifier (users live in a separate store)
        type: Free-form tag set by the producer (e.g. "challenge_published")
        title: Short notification title (max 200 chars)
        body: Notification body text
        payload: Arbitrary JSON map (email destination, html body, entity ids)
        read: Whether the user has read the notification
        channel: Delivery channel
        sent_at: When the producer created the notification
        delivered_at: When delivery was first confirmed (null until delivered)

    Lifecycle:
        Created by a producer call. Mutated only by read-state toggles and
        delivery confirmation. Never deleted by the delivery engine.
    """

    __tablename__ = "notifications"
    GUID_PREFIX = "ntf"

    id = Column(Integer, primary_key=True, autoincrement=True)

    user_id = Column(String(64), nullable=False, index=True)

    # Notification content
    type = Column(String(50), nullable=False)
    title = Column(String(200), nullable=False)
    body = Column(Text, nullable=False, default="")
    payload = Column(JSONB().with_variant(JSON(), "sqlite"), nullable=False, default=dict)

    read = Column(Boolean, nullable=False, default=False)
    channel = Column(
        Enum(
            NotificationChannel,
            native_enum=False,
            length=20,
            values_callable=lambda channels: [c.value for c in channels],
        ),
        nullable=False,
        default=NotificationChannel.INAPP,
    )

    # Delivery tracking
    sent_at = Column(DateTime, nullable=False, default=utcnow)
    delivered_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    queue_entries = relationship(
        "DeliveryQueueEntry",
        back_populates="notification",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_notifications_user_created", "user_id", "created_at"),
        Index("ix_notifications_user_read", "user_id", "read"),
    )

    def __repr__(self) -> str:
        return (
            f"<Notification(id={self.id}, user_id={self.user_id!r}, "
            f"type={self.type!r}, channel={self.channel})>"
        )
