"""
Delivery queue model for durable, retried notification delivery.

One entry per (notification, channel) delivery attempt cycle. Entries are
claimed by the delivery worker with an atomic conditional update, so several
worker instances can poll the same table safely.

State machine:
    pending --claim--> processing
    processing --success--> sent
    processing --failure, attempts < max--> pending (available_at pushed back)
    processing --failure, attempts >= max--> failed
sent and failed are terminal.
"""

import enum

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import relationship

from backend.src.models import Base
from backend.src.models.mixins import GuidMixin
from backend.src.models.notification import NotificationChannel
from backend.src.utils.clock import utcnow


class DeliveryStatus(str, enum.Enum):
    """
    Queue entry status.

    - PENDING: Waiting for available_at, claimable by any worker
    - PROCESSING: Claimed by a worker, send in flight
    - SENT: Delivered (terminal)
    - FAILED: Attempt budget exhausted (terminal)
    """
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"


TERMINAL_STATUSES = (DeliveryStatus.SENT, DeliveryStatus.FAILED)


class DeliveryQueueEntry(Base, GuidMixin):
    """
    Durable delivery attempt for one notification over one channel.

    Attributes:
        notification_id: Notification to deliver (FK to notifications)
        channel: Channel to deliver over
        status: pending / processing / sent / failed
        attempts: Number of completed claim-and-resolve cycles (never decreases)
        last_error: Error message of the most recent failure
        available_at: Entry is claimable only when available_at <= now
        updated_at: Last state change (used to detect stuck processing entries)
    """

    __tablename__ = "notification_queue"
    GUID_PREFIX = "ndq"

    id = Column(Integer, primary_key=True, autoincrement=True)

    notification_id = Column(
        Integer,
        ForeignKey(
            "notifications.id",
            name="fk_notification_queue_notification_id",
            ondelete="CASCADE",
        ),
        nullable=False,
        index=True,
    )

    channel = Column(
        Enum(
            NotificationChannel,
            native_enum=False,
            length=20,
            values_callable=lambda channels: [c.value for c in channels],
        ),
        nullable=False,
    )

    status = Column(
        Enum(
            DeliveryStatus,
            native_enum=False,
            length=20,
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        nullable=False,
        default=DeliveryStatus.PENDING,
    )

    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    available_at = Column(DateTime, nullable=False, default=utcnow)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    notification = relationship("Notification", back_populates="queue_entries")

    __table_args__ = (
        # Claim query: status = pending AND available_at <= now ORDER BY created_at
        Index("ix_notification_queue_status_available", "status", "available_at"),
    )

    @property
    def is_terminal(self) -> bool:
        """Check if the entry reached a terminal status."""
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return (
            f"<DeliveryQueueEntry(id={self.id}, notification_id={self.notification_id}, "
            f"channel={self.channel}, status={self.status}, attempts={self.attempts})>"
        )
