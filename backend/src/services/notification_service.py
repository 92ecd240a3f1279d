"""
Notification service for creating, listing, and managing notifications.

Provides business logic for:
- Creating notification records (the producer entry point)
- Immediate best-effort push over the realtime hub
- Enqueueing durable delivery for non in-app channels
- Listing, read-state toggles, and unread counts
- Recording delivery confirmation (at most once per notification)
- Fanning a notification out to many users in the background
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from backend.src.models import Notification, NotificationChannel
from backend.src.services.delivery_queue_service import DeliveryQueueService
from backend.src.services.exceptions import NotFoundError, ValidationError
from backend.src.utils.clock import utcnow
from backend.src.utils.logging_config import get_logger
from backend.src.utils.websocket import RealtimeHub


logger = get_logger("services")

EVENT_CREATED = "notification:created"
EVENT_DELIVERED = "notification:delivered"

TITLE_MAX_LENGTH = 200
TYPE_MAX_LENGTH = 50


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() + "Z" if value else None


def notification_event_payload(notification: Notification) -> Dict[str, Any]:
    """
    Build the JSON payload pushed over the realtime hub for a notification.

    Args:
        notification: Notification with loaded attributes

    Returns:
        JSON-serializable dict mirroring the API representation
    """
    return {
        "guid": notification.guid,
        "type": notification.type,
        "title": notification.title,
        "body": notification.body,
        "payload": notification.payload or {},
        "channel": NotificationChannel(notification.channel).value,
        "read": notification.read,
        "sent_at": _isoformat(notification.sent_at),
        "delivered_at": _isoformat(notification.delivered_at),
        "created_at": _isoformat(notification.created_at),
    }


def parse_channel(channel: Any) -> NotificationChannel:
    """
    Parse a channel name.

    Raises:
        ValidationError: If the channel is unknown
    """
    try:
        return NotificationChannel(channel)
    except ValueError:
        raise ValidationError(f"Unknown notification channel: {channel}", field="channel")


class NotificationService:
    """
    Service for notification creation and management.

    Producer flow (create_notification):
    1. Persist the notification
    2. Push notification:created to the owner's live connections (best effort)
    3. Enqueue durable delivery when the channel is not in-app or send_now
       was requested (in-app + send_now is confirmed delivered immediately)
    """

    def __init__(self, db: Session, hub: Optional[RealtimeHub] = None):
        """
        Initialize notification service.

        Args:
            db: SQLAlchemy database session
            hub: Realtime hub for immediate push (None disables live push)
        """
        self.db = db
        self.hub = hub

    # ========================================================================
    # Producer entry point
    # ========================================================================

    async def create_notification(
        self,
        user_id: str,
        type: str,
        title: str,
        body: str = "",
        payload: Optional[Dict[str, Any]] = None,
        channel: Any = NotificationChannel.INAPP,
        send_now: bool = False,
    ) -> Notification:
        """
        Create a notification and start its delivery.

        Hub and enqueue errors are logged, never raised: the persisted
        notification is always returned.

        Args:
            user_id: Recipient user identifier
            type: Producer tag (e.g. "challenge_published")
            title: Notification title (truncated to 200 chars)
            body: Notification body text
            payload: Arbitrary JSON map (email destination, html body, ...)
            channel: Delivery channel (inapp, email, push)
            send_now: Request delivery even for the in-app channel

        Returns:
            Created Notification instance

        Raises:
            ValidationError: If the channel is unknown
        """
        channel = parse_channel(channel)
        notification = self.create(
            user_id=user_id,
            type=type,
            title=title,
            body=body,
            payload=payload,
            channel=channel,
        )

        await self._emit_created(notification)

        if channel == NotificationChannel.INAPP and send_now:
            self.mark_delivered(notification.id, notification.sent_at)
            self.db.refresh(notification)
        elif channel != NotificationChannel.INAPP or send_now:
            try:
                DeliveryQueueService(self.db).enqueue(
                    notification.id, channel, available_at=notification.sent_at
                )
            except Exception as e:
                self.db.rollback()
                logger.error(
                    "Failed to enqueue notification delivery",
                    extra={
                        "notification_guid": notification.guid,
                        "user_id": user_id,
                        "channel": channel.value,
                        "error": str(e),
                    },
                    exc_info=True,
                )

        return notification

    async def _emit_created(self, notification: Notification) -> None:
        """Push notification:created to the owner, logging hub errors."""
        if self.hub is None:
            return

        event_payload = notification_event_payload(notification)
        try:
            await self.hub.emit_to_user(notification.user_id, EVENT_CREATED, event_payload)
        except Exception as e:
            logger.warning(
                "Realtime push failed",
                extra={
                    "notification_guid": notification.guid,
                    "user_id": notification.user_id,
                    "error": str(e),
                },
            )

    # ========================================================================
    # Notification CRUD
    # ========================================================================

    def create(
        self,
        user_id: str,
        type: str,
        title: str,
        body: str = "",
        payload: Optional[Dict[str, Any]] = None,
        channel: NotificationChannel = NotificationChannel.INAPP,
    ) -> Notification:
        """
        Persist a notification record.

        Args:
            user_id: Recipient user identifier
            type: Producer tag (max 50 chars)
            title: Notification title (truncated to 200 chars)
            body: Notification body text
            payload: Arbitrary JSON map
            channel: Delivery channel

        Returns:
            Created Notification instance
        """
        if not user_id:
            raise ValidationError("user_id is required", field="user_id")

        now = utcnow()
        notification = Notification(
            user_id=str(user_id),
            type=(type or "")[:TYPE_MAX_LENGTH],
            title=(title or "")[:TITLE_MAX_LENGTH],
            body=body or "",
            payload=dict(payload or {}),
            read=False,
            channel=NotificationChannel(channel),
            sent_at=now,
            created_at=now,
            updated_at=now,
        )
        self.db.add(notification)
        self.db.commit()
        self.db.refresh(notification)
        logger.info(
            "Created notification",
            extra={
                "notification_guid": notification.guid,
                "type": notification.type,
                "user_id": notification.user_id,
                "channel": notification.channel.value,
            },
        )
        return notification

    def get_notification_by_guid(self, guid: str, user_id: str) -> Notification:
        """
        Get a notification by GUID, scoped to its owner.

        Args:
            guid: Notification GUID (ntf_xxx)
            user_id: Owning user identifier

        Returns:
            Notification instance

        Raises:
            NotFoundError: If malformed, not found, or owned by another user
        """
        try:
            uuid_value = Notification.parse_guid(guid)
        except ValueError:
            raise NotFoundError("Notification", guid)

        notification = (
            self.db.query(Notification)
            .filter(
                Notification.uuid == uuid_value,
                Notification.user_id == str(user_id),
            )
            .first()
        )

        if not notification:
            raise NotFoundError("Notification", guid)

        return notification

    def list_notifications(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 50,
    ) -> Tuple[List[Notification], int]:
        """
        List a user's notifications, newest first.

        Args:
            user_id: Owning user identifier
            page: 1-based page number (values below 1 are treated as 1)
            limit: Page size

        Returns:
            Tuple of (notifications list, total count)
        """
        page = max(page, 1)
        limit = max(limit, 1)

        query = self.db.query(Notification).filter(Notification.user_id == str(user_id))
        total = query.count()

        notifications = (
            query.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

        return notifications, total

    def get_unread_count(self, user_id: str) -> int:
        """Get the count of unread notifications for a user."""
        return (
            self.db.query(func.count(Notification.id))
            .filter(
                Notification.user_id == str(user_id),
                Notification.read.is_(False),
            )
            .scalar()
        )

    def mark_as_read(self, guid: str, user_id: str) -> Notification:
        """
        Mark a notification as read (idempotent).

        Args:
            guid: Notification GUID (ntf_xxx)
            user_id: Owning user identifier

        Returns:
            Updated Notification instance

        Raises:
            NotFoundError: If not found or owned by another user
        """
        notification = self.get_notification_by_guid(guid, user_id)

        if not notification.read:
            notification.read = True
            self.db.commit()
            self.db.refresh(notification)

        return notification

    def mark_all_as_read(self, user_id: str) -> int:
        """
        Mark all unread notifications as read for a user.

        Returns:
            Number of notifications that were marked as read
        """
        updated = (
            self.db.query(Notification)
            .filter(
                Notification.user_id == str(user_id),
                Notification.read.is_(False),
            )
            .update(
                {Notification.read: True, Notification.updated_at: utcnow()},
                synchronize_session="fetch",
            )
        )
        self.db.commit()
        return updated

    def mark_delivered(self, notification_id: int, when: Optional[datetime] = None) -> bool:
        """
        Record delivery confirmation if none was recorded yet.

        Args:
            notification_id: Internal notification ID
            when: Delivery time (default: current UTC time)

        Returns:
            True if this call set delivered_at
        """
        when = when or utcnow()
        updated = (
            self.db.query(Notification)
            .filter(
                Notification.id == notification_id,
                Notification.delivered_at.is_(None),
            )
            .update(
                {Notification.delivered_at: when, Notification.updated_at: when},
                synchronize_session=False,
            )
        )
        self.db.commit()
        return updated == 1


# ============================================================================
# Background fan-out
# ============================================================================


@dataclass
class FanOutResult:
    """Outcome of a background fan-out."""

    created: int = 0
    failed: List[str] = field(default_factory=list)


async def _fan_out(
    session_factory: Callable[[], Session],
    hub: Optional[RealtimeHub],
    user_ids: List[str],
    kwargs: Dict[str, Any],
) -> FanOutResult:
    result = FanOutResult()

    for user_id in user_ids:
        db = None
        try:
            db = session_factory()
            await NotificationService(db, hub).create_notification(user_id=user_id, **kwargs)
            result.created += 1
        except Exception as e:
            if db is not None:
                db.rollback()
            result.failed.append(str(user_id))
            logger.error(
                "Failed to create notification during fan-out",
                extra={"user_id": user_id, "type": kwargs.get("type"), "error": str(e)},
                exc_info=True,
            )
        finally:
            if db is not None:
                db.close()

    logger.info(
        "Notification fan-out finished",
        extra={
            "type": kwargs.get("type"),
            "created_count": result.created,
            "failed_count": len(result.failed),
        },
    )
    return result


def _log_fan_out_failure(task: "asyncio.Task[FanOutResult]") -> None:
    if task.cancelled():
        logger.warning("Notification fan-out cancelled", extra={"task": task.get_name()})
        return
    error = task.exception()
    if error is not None:
        logger.error(
            "Notification fan-out aborted",
            extra={"task": task.get_name(), "error": str(error)},
            exc_info=(type(error), error, error.__traceback__),
        )


def notify_users_in_background(
    session_factory: Callable[[], Session],
    hub: Optional[RealtimeHub],
    user_ids: Iterable[str],
    type: str,
    title: str,
    body: str = "",
    payload: Optional[Dict[str, Any]] = None,
    channel: Any = NotificationChannel.INAPP,
    send_now: bool = False,
) -> "asyncio.Task[FanOutResult]":
    """
    Create one notification per user in a background task.

    Each user is handled in its own session; a failure for one user is
    logged with the user id and does not stop the others. Must be called
    from a running event loop.

    Args:
        session_factory: Callable returning a new Session (e.g. SessionLocal)
        hub: Realtime hub for immediate push
        user_ids: Recipients
        type, title, body, payload, channel, send_now: As for create_notification

    Returns:
        Task whose result is a FanOutResult
    """
    kwargs = {
        "type": type,
        "title": title,
        "body": body,
        "payload": payload,
        "channel": channel,
        "send_now": send_now,
    }
    task = asyncio.create_task(
        _fan_out(session_factory, hub, list(user_ids), kwargs),
        name=f"notification-fan-out:{type}",
    )
    task.add_done_callback(_log_fan_out_failure)
    return task
