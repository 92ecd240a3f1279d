"""
Integration tests for the notification queue admin API.
"""

from datetime import timedelta

import pytest

from backend.src.config.settings import AppSettings, get_settings
from backend.src.models import DeliveryStatus, NotificationChannel
from backend.src.services.delivery_queue_service import DeliveryQueueService
from backend.src.utils.clock import utcnow


ADMIN_TOKEN = "test-admin-token"
ADMIN_HEADERS = {"X-Admin-Token": ADMIN_TOKEN}


@pytest.fixture
def admin_client(test_client):
    """TestClient with the admin API enabled."""
    app = test_client.app
    app.dependency_overrides[get_settings] = lambda: AppSettings(
        ADMIN_API_TOKEN=ADMIN_TOKEN,
        NOTIF_QUEUE_RETENTION_DAYS=30,
        _env_file=None,
    )
    yield test_client
    app.dependency_overrides.pop(get_settings, None)


@pytest.fixture
def failed_entry(test_db_session, create_notification):
    notification = create_notification(
        channel=NotificationChannel.EMAIL, payload={"email": "user@example.com"}
    )
    entry = DeliveryQueueService(test_db_session).enqueue(
        notification.id, NotificationChannel.EMAIL
    )
    entry.status = DeliveryStatus.FAILED
    entry.attempts = 5
    entry.last_error = "SMTP transport not configured"
    test_db_session.commit()
    return entry


class TestAdminAuth:
    """Tests for admin token checks."""

    def test_disabled_without_configured_token(self, test_client):
        response = test_client.get(
            "/api/admin/notification-queue/failed", headers=ADMIN_HEADERS
        )

        assert response.status_code == 403

    @pytest.mark.parametrize("headers", [{}, {"X-Admin-Token": "wrong"}])
    def test_rejects_missing_or_wrong_token(self, admin_client, headers):
        response = admin_client.get("/api/admin/notification-queue/failed", headers=headers)

        assert response.status_code == 403


class TestFailedEntries:
    """Tests for listing and requeueing failed entries."""

    def test_list_failed(self, admin_client, failed_entry):
        response = admin_client.get(
            "/api/admin/notification-queue/failed", headers=ADMIN_HEADERS
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        item = data["items"][0]
        assert item["guid"] == failed_entry.guid
        assert item["status"] == "failed"
        assert item["attempts"] == 5
        assert item["channel"] == "email"
        assert item["notification_guid"].startswith("ntf_")
        assert item["last_error"] == "SMTP transport not configured"

    def test_requeue(self, admin_client, failed_entry, queue_entries):
        failed_guid = failed_entry.guid

        response = admin_client.post(
            f"/api/admin/notification-queue/{failed_guid}/requeue", headers=ADMIN_HEADERS
        )

        assert response.status_code == 201
        data = response.json()
        assert data["guid"] != failed_guid
        assert data["status"] == "pending"
        assert data["attempts"] == 0

        statuses = {e.guid: e.status for e in queue_entries()}
        assert statuses[failed_guid] == DeliveryStatus.FAILED
        assert statuses[data["guid"]] == DeliveryStatus.PENDING

    def test_requeue_pending_conflicts(self, admin_client, test_db_session, create_notification):
        notification = create_notification(channel=NotificationChannel.EMAIL)
        entry = DeliveryQueueService(test_db_session).enqueue(
            notification.id, NotificationChannel.EMAIL
        )

        response = admin_client.post(
            f"/api/admin/notification-queue/{entry.guid}/requeue", headers=ADMIN_HEADERS
        )

        assert response.status_code == 409

    def test_requeue_unknown(self, admin_client):
        response = admin_client.post(
            "/api/admin/notification-queue/ndq_missing/requeue", headers=ADMIN_HEADERS
        )

        assert response.status_code == 404


class TestPurge:
    """Tests for purging terminal entries."""

    def test_purge(self, admin_client, test_db_session, failed_entry, queue_entries):
        failed_entry.updated_at = utcnow() - timedelta(days=45)
        test_db_session.commit()

        response = admin_client.post(
            "/api/admin/notification-queue/purge", headers=ADMIN_HEADERS
        )

        assert response.status_code == 200
        assert response.json() == {"deleted_count": 1, "older_than_days": 30}
        assert queue_entries() == []

    def test_purge_custom_window(self, admin_client, failed_entry):
        response = admin_client.post(
            "/api/admin/notification-queue/purge",
            params={"older_than_days": 90},
            headers=ADMIN_HEADERS,
        )

        assert response.json() == {"deleted_count": 0, "older_than_days": 90}

    def test_purge_requires_window_when_retention_disabled(self, admin_client, failed_entry):
        admin_client.app.dependency_overrides[get_settings] = lambda: AppSettings(
            ADMIN_API_TOKEN=ADMIN_TOKEN,
            NOTIF_QUEUE_RETENTION_DAYS=0,
            _env_file=None,
        )

        default_window = admin_client.post(
            "/api/admin/notification-queue/purge", headers=ADMIN_HEADERS
        )
        explicit_window = admin_client.post(
            "/api/admin/notification-queue/purge",
            params={"older_than_days": 7},
            headers=ADMIN_HEADERS,
        )

        assert default_window.status_code == 400
        assert explicit_window.status_code == 200
        assert explicit_window.json()["older_than_days"] == 7
