"""
Notification delivery worker.

Claims due delivery queue entries and drives the channel senders:
- Due entries are selected oldest first and claimed one by one with an
  atomic conditional update; claims lost to another worker are skipped
- Entries of a batch are dispatched concurrently, each with its own
  database sessions
- Success marks the entry sent, confirms delivery on the notification and
  emits notification:delivered to the owner
- Failure applies exponential backoff, failing the entry once the attempt
  budget is exhausted

No database transaction is held open while a sender is awaited: the claim
and the outcome are recorded in separate short sessions.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from backend.src.models import Notification, NotificationChannel
from backend.src.services.channels.base import ChannelSender, SendResult
from backend.src.services.delivery_queue_service import (
    DeliveryQueueService,
    MAX_ATTEMPTS,
)
from backend.src.services.notification_service import (
    EVENT_DELIVERED,
    NotificationService,
)
from backend.src.utils.clock import utcnow
from backend.src.utils.logging_config import get_logger
from backend.src.utils.websocket import RealtimeHub


logger = get_logger("worker")

# Backoff after the n-th failure: min(MAX_BACKOFF_MS, BASE_BACKOFF_MS * 2**n)
BASE_BACKOFF_MS = 1000
MAX_BACKOFF_MS = 3_600_000

MISSING_NOTIFICATION_ERROR = "Notification missing"

OUTCOME_SENT = "sent"
OUTCOME_RETRIED = "retried"
OUTCOME_FAILED = "failed"
OUTCOME_SKIPPED = "skipped"


def compute_backoff(attempts: int) -> timedelta:
    """
    Get the retry delay after a failed attempt.

    Args:
        attempts: Attempt count including the failure just recorded

    Returns:
        Delay before the entry becomes claimable again
    """
    # Cap the exponent; 2**12 s already exceeds the one hour ceiling
    delay_ms = min(MAX_BACKOFF_MS, BASE_BACKOFF_MS * 2 ** min(attempts, 32))
    return timedelta(milliseconds=delay_ms)


@dataclass
class BatchResult:
    """Summary of one delivery batch."""

    selected: int = 0
    claimed: int = 0
    sent: int = 0
    retried: int = 0
    failed: int = 0
    skipped: int = 0
    errors: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "selected": self.selected,
            "claimed": self.claimed,
            "sent": self.sent,
            "retried": self.retried,
            "failed": self.failed,
            "skipped": self.skipped,
            "errors": self.errors,
        }


class NotificationDeliveryService:
    """
    Processes batches of due delivery queue entries.

    Several instances (in one or many processes) may process the same queue
    concurrently; each entry is delivered by the worker that wins its claim.

    Usage:
        >>> worker = NotificationDeliveryService(
        ...     SessionLocal, build_channel_senders(settings), hub=hub
        ... )
        >>> result = await worker.process_batch(50)
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        senders: Dict[NotificationChannel, ChannelSender],
        hub: Optional[RealtimeHub] = None,
        max_attempts: int = MAX_ATTEMPTS,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the delivery worker.

        Args:
            session_factory: Callable returning a new Session
            senders: Channel -> sender mapping
            hub: Realtime hub for notification:delivered events
            max_attempts: Attempts before an entry is marked failed
            clock: Source of the current naive UTC time
        """
        self._session_factory = session_factory
        self._senders = senders
        self._hub = hub
        self._max_attempts = max_attempts
        self._clock = clock

    async def process_batch(self, limit: int) -> BatchResult:
        """
        Select, claim, and dispatch up to `limit` due entries.

        Failures of individual entries are recorded on the entries and
        logged; they never propagate out of the batch.

        Args:
            limit: Maximum number of entries to select

        Returns:
            BatchResult summary
        """
        db = self._session_factory()
        try:
            due_ids = [entry.id for entry in DeliveryQueueService(db).find_due(limit, now=self._clock())]
        finally:
            db.close()

        result = BatchResult(selected=len(due_ids))
        if not due_ids:
            return result

        outcomes = await asyncio.gather(
            *(self._process_entry(entry_id) for entry_id in due_ids),
            return_exceptions=True,
        )

        for entry_id, outcome in zip(due_ids, outcomes):
            if isinstance(outcome, BaseException):
                result.errors += 1
                logger.error(
                    "Unexpected error processing queue entry",
                    extra={"entry_id": entry_id},
                    exc_info=(type(outcome), outcome, outcome.__traceback__),
                )
            elif outcome == OUTCOME_SKIPPED:
                result.skipped += 1
            else:
                result.claimed += 1
                setattr(result, outcome, getattr(result, outcome) + 1)

        if result.claimed or result.errors:
            logger.info("Delivery batch processed", extra=result.as_dict())
        return result

    async def _process_entry(self, entry_id: int) -> str:
        """
        Claim and deliver a single entry.

        Returns:
            One of the OUTCOME_* values
        """
        # Claim and load everything the sender needs, then release the session
        db = self._session_factory()
        try:
            queue = DeliveryQueueService(db)
            now = self._clock()
            entry = queue.claim(entry_id, now=now)
            if entry is None:
                return OUTCOME_SKIPPED

            attempts = entry.attempts + 1
            channel = NotificationChannel(entry.channel)
            entry_guid = entry.guid
            notification = db.get(Notification, entry.notification_id)

            if notification is None:
                queue.record_failure(
                    entry_id,
                    attempts=attempts,
                    error=MISSING_NOTIFICATION_ERROR,
                    available_at=now,
                    terminal=True,
                    now=now,
                )
                logger.warning(
                    "Queue entry references a missing notification",
                    extra={"entry_guid": entry_guid, "notification_id": entry.notification_id},
                )
                return OUTCOME_FAILED
        finally:
            db.close()

        send_result = await self._send(channel, notification)

        db = self._session_factory()
        try:
            queue = DeliveryQueueService(db)
            now = self._clock()

            if send_result.success:
                if queue.mark_sent(entry_id, attempts=attempts, now=now):
                    NotificationService(db).mark_delivered(notification.id, now)
                    outcome = OUTCOME_SENT
                else:
                    # Entry left processing while sending (stale sweep)
                    logger.warning(
                        "Queue entry no longer processing after send",
                        extra={"entry_guid": entry_guid, "channel": channel.value},
                    )
                    outcome = OUTCOME_SKIPPED
            else:
                terminal = attempts >= self._max_attempts
                available_at = now + compute_backoff(attempts)
                queue.record_failure(
                    entry_id,
                    attempts=attempts,
                    error=send_result.error or "Unknown error",
                    available_at=available_at,
                    terminal=terminal,
                    now=now,
                )
                outcome = OUTCOME_FAILED if terminal else OUTCOME_RETRIED
                log = logger.error if terminal else logger.warning
                log(
                    "Notification delivery failed",
                    extra={
                        "entry_guid": entry_guid,
                        "channel": channel.value,
                        "attempts": attempts,
                        "terminal": terminal,
                        "available_at": available_at.isoformat(),
                        "error": send_result.error,
                    },
                )
        finally:
            db.close()

        if outcome == OUTCOME_SENT:
            logger.debug(
                "Notification delivered",
                extra={"entry_guid": entry_guid, "channel": channel.value, "attempts": attempts},
            )
            await self._emit_delivered(notification, channel, now)

        return outcome

    async def _send(self, channel: NotificationChannel, notification: Notification) -> SendResult:
        """Dispatch to the channel's sender, converting exceptions to failures."""
        sender = self._senders.get(channel)
        if sender is None:
            return SendResult.failed(f"No sender registered for channel {channel.value}")

        try:
            return await sender.send(notification)
        except Exception as e:
            logger.debug(
                "Channel sender raised",
                extra={"channel": channel.value, "error": str(e)},
                exc_info=True,
            )
            return SendResult.failed(str(e) or e.__class__.__name__)

    async def _emit_delivered(
        self,
        notification: Notification,
        channel: NotificationChannel,
        delivered_at: datetime,
    ) -> None:
        if self._hub is None:
            return

        try:
            await self._hub.emit_to_user(
                notification.user_id,
                EVENT_DELIVERED,
                {
                    "guid": notification.guid,
                    "channel": channel.value,
                    "delivered_at": delivered_at.isoformat() + "Z",
                },
            )
        except Exception as e:
            logger.warning(
                "Realtime push failed",
                extra={"notification_guid": notification.guid, "error": str(e)},
            )

    # ========================================================================
    # Maintenance
    # ========================================================================

    def requeue_stale(self, older_than_seconds: int) -> int:
        """Resolve entries stuck in processing longer than the threshold."""
        db = self._session_factory()
        try:
            return DeliveryQueueService(db).requeue_stale_processing(
                older_than_seconds,
                max_attempts=self._max_attempts,
                now=self._clock(),
            )
        finally:
            db.close()

    def purge_terminal(self, older_than_days: int) -> int:
        """Delete sent and failed entries older than the retention window."""
        db = self._session_factory()
        try:
            return DeliveryQueueService(db).purge_terminal(older_than_days, now=self._clock())
        finally:
            db.close()
