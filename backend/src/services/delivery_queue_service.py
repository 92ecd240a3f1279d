"""
Delivery queue service for durable notification delivery.

Provides persistence for delivery queue entries (one per notification and
channel) and the state transitions driven by the delivery worker:
- Enqueueing pending entries
- Selecting due entries (oldest first)
- Claiming entries atomically (safe across several worker instances)
- Recording successful and failed attempts
- Dead-letter administration (list failed, requeue, purge)
- Re-arming entries stuck in processing

Every transition out of pending or processing is a conditional UPDATE
guarded by the expected current status. A transition whose guard no longer
matches affects zero rows and is reported to the caller as lost.
"""

from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from backend.src.models import (
    DeliveryQueueEntry,
    DeliveryStatus,
    NotificationChannel,
    TERMINAL_STATUSES,
)
from backend.src.services.exceptions import ConflictError, NotFoundError
from backend.src.utils.clock import utcnow
from backend.src.utils.logging_config import get_logger


logger = get_logger("services")

# Delivery attempts before an entry is marked failed
MAX_ATTEMPTS = 5

STALE_PROCESSING_ERROR = "Processing timed out"


class DeliveryQueueService:
    """
    Service for delivery queue persistence and state transitions.

    Usage:
        >>> service = DeliveryQueueService(db)
        >>> entry = service.enqueue(notification.id, NotificationChannel.EMAIL)
        >>> due = service.find_due(limit=50)
        >>> claimed = service.claim(due[0].id)
    """

    def __init__(self, db: Session):
        """
        Initialize delivery queue service.

        Args:
            db: SQLAlchemy database session
        """
        self.db = db
        self._is_sqlite = self._check_is_sqlite()

    def _check_is_sqlite(self) -> bool:
        """Check if the database backend is SQLite."""
        try:
            return self.db.bind.dialect.name == "sqlite"
        except Exception:
            return False

    # ========================================================================
    # Producer side
    # ========================================================================

    def enqueue(
        self,
        notification_id: int,
        channel: NotificationChannel,
        available_at: Optional[datetime] = None,
    ) -> DeliveryQueueEntry:
        """
        Create a pending queue entry for a notification.

        Args:
            notification_id: Internal notification ID
            channel: Channel to deliver over
            available_at: Earliest time the entry may be claimed (default: now)

        Returns:
            Created DeliveryQueueEntry (status pending, attempts 0)
        """
        now = utcnow()
        entry = DeliveryQueueEntry(
            notification_id=notification_id,
            channel=NotificationChannel(channel),
            status=DeliveryStatus.PENDING,
            attempts=0,
            available_at=available_at or now,
            created_at=now,
            updated_at=now,
        )
        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)

        logger.info(
            "Enqueued notification delivery",
            extra={
                "entry_guid": entry.guid,
                "notification_id": notification_id,
                "channel": entry.channel.value,
            },
        )
        return entry

    # ========================================================================
    # Worker side
    # ========================================================================

    def find_due(self, limit: int, now: Optional[datetime] = None) -> List[DeliveryQueueEntry]:
        """
        Find pending entries that are due for delivery.

        Args:
            limit: Maximum number of entries to return
            now: Reference time (default: current UTC time)

        Returns:
            Due entries, oldest created first
        """
        now = now or utcnow()
        query = (
            self.db.query(DeliveryQueueEntry)
            .filter(
                DeliveryQueueEntry.status == DeliveryStatus.PENDING,
                DeliveryQueueEntry.available_at <= now,
            )
            .order_by(DeliveryQueueEntry.created_at.asc(), DeliveryQueueEntry.id.asc())
            .limit(limit)
        )

        # FOR UPDATE SKIP LOCKED keeps concurrent workers from selecting the
        # same rows (PostgreSQL only, SQLite doesn't support it)
        if not self._is_sqlite:
            query = query.with_for_update(skip_locked=True)

        entries = query.all()
        # Release row locks; claim() is the authoritative guard
        self.db.commit()
        return entries

    def claim(self, entry_id: int, now: Optional[datetime] = None) -> Optional[DeliveryQueueEntry]:
        """
        Atomically transition an entry from pending to processing.

        Args:
            entry_id: Internal queue entry ID
            now: Claim time (default: current UTC time)

        Returns:
            The claimed entry, or None if another worker claimed it first
            (or it is no longer pending)
        """
        now = now or utcnow()
        updated = (
            self.db.query(DeliveryQueueEntry)
            .filter(
                DeliveryQueueEntry.id == entry_id,
                DeliveryQueueEntry.status == DeliveryStatus.PENDING,
            )
            .update(
                {
                    DeliveryQueueEntry.status: DeliveryStatus.PROCESSING,
                    DeliveryQueueEntry.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        self.db.commit()

        if updated != 1:
            logger.debug("Queue entry claim lost", extra={"entry_id": entry_id})
            return None

        return self.db.get(DeliveryQueueEntry, entry_id)

    def mark_sent(self, entry_id: int, attempts: int, now: Optional[datetime] = None) -> bool:
        """
        Record a successful delivery for a processing entry.

        Args:
            entry_id: Internal queue entry ID
            attempts: New attempt count
            now: Completion time (default: current UTC time)

        Returns:
            True if the entry was updated
        """
        now = now or utcnow()
        return self._resolve(
            entry_id,
            {
                DeliveryQueueEntry.status: DeliveryStatus.SENT,
                DeliveryQueueEntry.attempts: attempts,
                DeliveryQueueEntry.updated_at: now,
            },
        )

    def record_failure(
        self,
        entry_id: int,
        attempts: int,
        error: str,
        available_at: datetime,
        terminal: bool,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Record a failed delivery attempt for a processing entry.

        Args:
            entry_id: Internal queue entry ID
            attempts: New attempt count
            error: Failure reason stored in last_error
            available_at: Next time the entry may be claimed
            terminal: True to mark the entry failed, False to return it to pending
            now: Failure time (default: current UTC time)

        Returns:
            True if the entry was updated
        """
        now = now or utcnow()
        return self._resolve(
            entry_id,
            {
                DeliveryQueueEntry.status: (
                    DeliveryStatus.FAILED if terminal else DeliveryStatus.PENDING
                ),
                DeliveryQueueEntry.attempts: attempts,
                DeliveryQueueEntry.last_error: error,
                DeliveryQueueEntry.available_at: available_at,
                DeliveryQueueEntry.updated_at: now,
            },
        )

    def _resolve(self, entry_id: int, values: dict) -> bool:
        """Apply an outcome to an entry that is still processing."""
        updated = (
            self.db.query(DeliveryQueueEntry)
            .filter(
                DeliveryQueueEntry.id == entry_id,
                DeliveryQueueEntry.status == DeliveryStatus.PROCESSING,
            )
            .update(values, synchronize_session=False)
        )
        self.db.commit()

        if updated != 1:
            logger.warning(
                "Queue entry was not processing when resolving outcome",
                extra={"entry_id": entry_id},
            )
            return False
        return True

    # ========================================================================
    # Lookup and dead-letter administration
    # ========================================================================

    def get_by_guid(self, guid: str) -> DeliveryQueueEntry:
        """
        Get a queue entry by GUID.

        Raises:
            NotFoundError: If the GUID is malformed or unknown
        """
        try:
            uuid_value = DeliveryQueueEntry.parse_guid(guid)
        except ValueError:
            raise NotFoundError("Queue entry", guid)

        entry = (
            self.db.query(DeliveryQueueEntry)
            .filter(DeliveryQueueEntry.uuid == uuid_value)
            .first()
        )
        if not entry:
            raise NotFoundError("Queue entry", guid)
        return entry

    def list_failed(self, limit: int = 50, offset: int = 0) -> Tuple[List[DeliveryQueueEntry], int]:
        """
        List failed (dead-letter) entries, most recently failed first.

        Args:
            limit: Maximum number of entries to return
            offset: Number of entries to skip

        Returns:
            Tuple of (entries, total failed count)
        """
        query = self.db.query(DeliveryQueueEntry).filter(
            DeliveryQueueEntry.status == DeliveryStatus.FAILED
        )
        total = query.count()
        entries = (
            query.order_by(DeliveryQueueEntry.updated_at.desc(), DeliveryQueueEntry.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return entries, total

    def requeue(self, guid: str) -> DeliveryQueueEntry:
        """
        Start a new delivery cycle for a failed entry.

        The failed entry stays failed; a fresh pending entry is enqueued for
        the same notification and channel, available immediately.

        Args:
            guid: GUID of the failed entry

        Returns:
            The newly enqueued entry

        Raises:
            NotFoundError: If the entry doesn't exist
            ConflictError: If the entry is not failed
        """
        entry = self.get_by_guid(guid)
        if entry.status != DeliveryStatus.FAILED:
            raise ConflictError(
                f"Only failed entries can be requeued (entry is {entry.status.value})",
                current_status=entry.status.value,
            )

        new_entry = self.enqueue(entry.notification_id, entry.channel)
        logger.info(
            "Requeued failed delivery",
            extra={"failed_entry_guid": guid, "entry_guid": new_entry.guid},
        )
        return new_entry

    def purge_terminal(self, older_than_days: int, now: Optional[datetime] = None) -> int:
        """
        Delete sent and failed entries last updated before the retention window.

        Args:
            older_than_days: Retention window in days
            now: Reference time (default: current UTC time)

        Returns:
            Number of entries deleted
        """
        cutoff = (now or utcnow()) - timedelta(days=older_than_days)
        deleted = (
            self.db.query(DeliveryQueueEntry)
            .filter(
                DeliveryQueueEntry.status.in_(TERMINAL_STATUSES),
                DeliveryQueueEntry.updated_at < cutoff,
            )
            .delete(synchronize_session=False)
        )
        self.db.commit()

        if deleted:
            logger.info(
                "Purged terminal queue entries",
                extra={"deleted": deleted, "older_than_days": older_than_days},
            )
        return deleted

    def requeue_stale_processing(
        self,
        older_than_seconds: int,
        max_attempts: int = MAX_ATTEMPTS,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Resolve entries stuck in processing (e.g. the worker crashed mid-send).

        Each stale entry counts as a failed attempt: it returns to pending,
        available immediately, or becomes failed when the attempt budget is
        exhausted.

        Args:
            older_than_seconds: Processing time after which an entry is stale
            max_attempts: Attempt budget
            now: Reference time (default: current UTC time)

        Returns:
            Number of entries re-armed or failed
        """
        now = now or utcnow()
        cutoff = now - timedelta(seconds=older_than_seconds)

        stale = (
            self.db.query(DeliveryQueueEntry)
            .filter(
                DeliveryQueueEntry.status == DeliveryStatus.PROCESSING,
                DeliveryQueueEntry.updated_at <= cutoff,
            )
            .all()
        )

        resolved = 0
        for entry in stale:
            attempts = entry.attempts + 1
            terminal = attempts >= max_attempts
            updated = (
                self.db.query(DeliveryQueueEntry)
                .filter(
                    DeliveryQueueEntry.id == entry.id,
                    DeliveryQueueEntry.status == DeliveryStatus.PROCESSING,
                    DeliveryQueueEntry.updated_at <= cutoff,
                )
                .update(
                    {
                        DeliveryQueueEntry.status: (
                            DeliveryStatus.FAILED if terminal else DeliveryStatus.PENDING
                        ),
                        DeliveryQueueEntry.attempts: attempts,
                        DeliveryQueueEntry.last_error: STALE_PROCESSING_ERROR,
                        DeliveryQueueEntry.available_at: now,
                        DeliveryQueueEntry.updated_at: now,
                    },
                    synchronize_session=False,
                )
            )
            resolved += updated
        self.db.commit()

        if resolved:
            logger.warning(
                "Resolved stale processing queue entries",
                extra={"count": resolved, "older_than_seconds": older_than_seconds},
            )
        return resolved
