"""
Unit tests for DeliveryQueueService.

Tests enqueueing, due selection, atomic claiming, outcome recording and
dead-letter administration.
"""

from datetime import timedelta

import pytest

from backend.src.models import DeliveryQueueEntry, DeliveryStatus, NotificationChannel
from backend.src.services.delivery_queue_service import (
    STALE_PROCESSING_ERROR,
    DeliveryQueueService,
)
from backend.src.services.exceptions import ConflictError, NotFoundError
from backend.src.utils.clock import utcnow


@pytest.fixture
def email_notification(create_notification):
    return create_notification(
        channel=NotificationChannel.EMAIL, payload={"email": "user@example.com"}
    )


@pytest.fixture
def failed_entry(test_db_session, email_notification):
    """A queue entry that exhausted its attempts."""
    service = DeliveryQueueService(test_db_session)
    entry = service.enqueue(email_notification.id, NotificationChannel.EMAIL)
    entry.status = DeliveryStatus.FAILED
    entry.attempts = 5
    entry.last_error = "SMTP transport not configured"
    test_db_session.commit()
    return entry


class TestEnqueueAndFindDue:
    """Tests for enqueueing and due selection."""

    def test_enqueue_creates_pending_entry(self, test_db_session, email_notification):
        """New entries are pending with no attempts."""
        service = DeliveryQueueService(test_db_session)

        entry = service.enqueue(email_notification.id, NotificationChannel.EMAIL)

        assert entry.guid.startswith("ndq_")
        assert entry.status == DeliveryStatus.PENDING
        assert entry.attempts == 0
        assert entry.last_error is None
        assert entry.available_at <= utcnow()

    def test_find_due_excludes_future_and_non_pending(self, test_db_session, email_notification):
        """Only pending entries whose available_at has passed are due."""
        service = DeliveryQueueService(test_db_session)
        now = utcnow()
        due = service.enqueue(email_notification.id, NotificationChannel.EMAIL, available_at=now)
        service.enqueue(
            email_notification.id, NotificationChannel.EMAIL, available_at=now + timedelta(minutes=5)
        )
        sent = service.enqueue(email_notification.id, NotificationChannel.PUSH, available_at=now)
        sent.status = DeliveryStatus.SENT
        test_db_session.commit()

        result = service.find_due(limit=10, now=now)

        assert [e.id for e in result] == [due.id]

    def test_find_due_oldest_first_with_limit(self, test_db_session, email_notification):
        """Due entries are returned oldest created first, up to the limit."""
        service = DeliveryQueueService(test_db_session)
        now = utcnow()
        entries = [
            service.enqueue(email_notification.id, NotificationChannel.EMAIL, available_at=now)
            for _ in range(3)
        ]
        # Make the last one the oldest
        entries[2].created_at = now - timedelta(hours=1)
        test_db_session.commit()

        result = service.find_due(limit=2, now=now)

        assert [e.id for e in result] == [entries[2].id, entries[0].id]


class TestClaimAndResolve:
    """Tests for claiming and recording outcomes."""

    def test_claim_pending_entry(self, test_db_session, email_notification):
        """Claiming moves a pending entry to processing."""
        service = DeliveryQueueService(test_db_session)
        entry = service.enqueue(email_notification.id, NotificationChannel.EMAIL)

        claimed = service.claim(entry.id)

        assert claimed is not None
        assert claimed.status == DeliveryStatus.PROCESSING
        assert claimed.attempts == 0

    def test_second_claim_loses(self, test_db_session, test_session_factory, email_notification):
        """Only one of two claims on the same entry succeeds."""
        entry = DeliveryQueueService(test_db_session).enqueue(
            email_notification.id, NotificationChannel.EMAIL
        )
        other_session = test_session_factory()
        try:
            first = DeliveryQueueService(test_db_session).claim(entry.id)
            second = DeliveryQueueService(other_session).claim(entry.id)
        finally:
            other_session.close()

        assert first is not None
        assert second is None

    def test_mark_sent(self, test_db_session, email_notification, queue_entries):
        """A processing entry can be marked sent."""
        service = DeliveryQueueService(test_db_session)
        entry = service.enqueue(email_notification.id, NotificationChannel.EMAIL)
        service.claim(entry.id)

        assert service.mark_sent(entry.id, attempts=1) is True

        stored = queue_entries()[0]
        assert stored.status == DeliveryStatus.SENT
        assert stored.attempts == 1
        assert stored.is_terminal

    def test_resolve_requires_processing(self, test_db_session, email_notification, queue_entries):
        """Outcomes are ignored for entries that are not processing."""
        service = DeliveryQueueService(test_db_session)
        entry = service.enqueue(email_notification.id, NotificationChannel.EMAIL)

        assert service.mark_sent(entry.id, attempts=1) is False
        assert queue_entries()[0].status == DeliveryStatus.PENDING

    def test_record_failure_retry_and_terminal(self, test_db_session, email_notification, queue_entries):
        """Failures return the entry to pending or fail it when terminal."""
        service = DeliveryQueueService(test_db_session)
        entry = service.enqueue(email_notification.id, NotificationChannel.EMAIL)
        retry_at = utcnow() + timedelta(seconds=2)

        service.claim(entry.id)
        service.record_failure(entry.id, 1, "boom", retry_at, terminal=False)
        stored = queue_entries()[0]
        assert stored.status == DeliveryStatus.PENDING
        assert stored.attempts == 1
        assert stored.last_error == "boom"
        assert stored.available_at == retry_at

        service.claim(entry.id, now=retry_at)
        service.record_failure(entry.id, 2, "boom again", retry_at, terminal=True)
        stored = queue_entries()[0]
        assert stored.status == DeliveryStatus.FAILED
        assert stored.attempts == 2


class TestDeadLetters:
    """Tests for failed entry administration."""

    def test_list_failed(self, test_db_session, failed_entry, email_notification):
        """Only failed entries are listed."""
        service = DeliveryQueueService(test_db_session)
        service.enqueue(email_notification.id, NotificationChannel.EMAIL)

        entries, total = service.list_failed()

        assert total == 1
        assert entries[0].id == failed_entry.id

    def test_requeue_creates_fresh_entry(self, test_db_session, failed_entry, queue_entries):
        """Requeue enqueues a new entry and leaves the failed one untouched."""
        service = DeliveryQueueService(test_db_session)
        failed_guid = failed_entry.guid

        new_entry = service.requeue(failed_guid)

        assert new_entry.guid != failed_guid
        assert new_entry.status == DeliveryStatus.PENDING
        assert new_entry.attempts == 0
        assert new_entry.notification_id == failed_entry.notification_id
        assert new_entry.channel == NotificationChannel.EMAIL

        old = next(e for e in queue_entries() if e.guid == failed_guid)
        assert old.status == DeliveryStatus.FAILED
        assert old.attempts == 5

    def test_requeue_requires_failed(self, test_db_session, email_notification):
        """Only failed entries can be requeued."""
        service = DeliveryQueueService(test_db_session)
        entry = service.enqueue(email_notification.id, NotificationChannel.EMAIL)

        with pytest.raises(ConflictError) as exc_info:
            service.requeue(entry.guid)

        assert exc_info.value.current_status == "pending"

    @pytest.mark.parametrize("guid", ["ndq_unknown", "ndq_01hgw2bbg00000000000000000", "ntf_x"])
    def test_requeue_unknown(self, test_db_session, guid):
        """Unknown or malformed GUIDs raise NotFoundError."""
        with pytest.raises(NotFoundError):
            DeliveryQueueService(test_db_session).requeue(guid)

    def test_purge_terminal(self, test_db_session, email_notification, queue_entries):
        """Only old sent/failed entries are purged."""
        service = DeliveryQueueService(test_db_session)
        now = utcnow()
        old_sent = service.enqueue(email_notification.id, NotificationChannel.EMAIL)
        old_pending = service.enqueue(email_notification.id, NotificationChannel.EMAIL)
        recent_failed = service.enqueue(email_notification.id, NotificationChannel.EMAIL)

        old_sent.status = DeliveryStatus.SENT
        old_sent.updated_at = now - timedelta(days=40)
        old_pending.updated_at = now - timedelta(days=40)
        recent_failed.status = DeliveryStatus.FAILED
        recent_failed.updated_at = now - timedelta(days=1)
        test_db_session.commit()
        old_sent_id, old_pending_id, recent_failed_id = old_sent.id, old_pending.id, recent_failed.id

        deleted = service.purge_terminal(30, now=now)

        assert deleted == 1
        assert {e.id for e in queue_entries()} == {old_pending_id, recent_failed_id}
        assert old_sent_id not in {e.id for e in queue_entries()}


class TestStaleProcessing:
    """Tests for re-arming entries stuck in processing."""

    def test_stale_entry_returns_to_pending(self, test_db_session, email_notification, queue_entries):
        """A stale processing entry counts as a failed attempt and becomes due."""
        service = DeliveryQueueService(test_db_session)
        entry = service.enqueue(email_notification.id, NotificationChannel.EMAIL)
        claimed_at = utcnow()
        service.claim(entry.id, now=claimed_at)
        sweep_at = claimed_at + timedelta(seconds=120)

        count = service.requeue_stale_processing(60, max_attempts=5, now=sweep_at)

        stored = queue_entries()[0]
        assert count == 1
        assert stored.status == DeliveryStatus.PENDING
        assert stored.attempts == 1
        assert stored.last_error == STALE_PROCESSING_ERROR
        assert stored.available_at == sweep_at

    def test_stale_entry_fails_when_budget_exhausted(self, test_db_session, email_notification, queue_entries):
        """A stale entry on its last attempt becomes failed."""
        service = DeliveryQueueService(test_db_session)
        entry = service.enqueue(email_notification.id, NotificationChannel.EMAIL)
        entry.attempts = 4
        test_db_session.commit()
        claimed_at = utcnow()
        service.claim(entry.id, now=claimed_at)

        service.requeue_stale_processing(60, max_attempts=5, now=claimed_at + timedelta(minutes=5))

        stored = queue_entries()[0]
        assert stored.status == DeliveryStatus.FAILED
        assert stored.attempts == 5

    def test_recent_processing_untouched(self, test_db_session, email_notification, queue_entries):
        """Entries processing for less than the threshold are left alone."""
        service = DeliveryQueueService(test_db_session)
        entry = service.enqueue(email_notification.id, NotificationChannel.EMAIL)
        claimed_at = utcnow()
        service.claim(entry.id, now=claimed_at)

        count = service.requeue_stale_processing(60, now=claimed_at + timedelta(seconds=10))

        assert count == 0
        assert queue_entries()[0].status == DeliveryStatus.PROCESSING
