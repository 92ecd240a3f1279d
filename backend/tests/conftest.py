"""
Pytest configuration and fixtures for backend tests.

Provides shared fixtures for:
- Test database engine, sessions and session factory
- A controllable clock for the delivery worker
- Recording realtime hub and scripted channel senders
- Sample data factories
- FastAPI TestClient with the database dependency overridden
"""

import os
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app modules
os.environ['VOCALIS_DB_URL'] = 'sqlite:///:memory:'
os.environ['NOTIF_WORKER_ENABLED'] = 'false'
os.environ.setdefault('VOCALIS_LOG_LEVEL', 'WARNING')

from backend.src.models import Base, DeliveryQueueEntry, Notification, NotificationChannel
from backend.src.services.channels.base import ChannelSender, SendResult
from backend.src.services.notification_service import NotificationService
from backend.src.utils.clock import utcnow
from backend.src.utils.websocket import RealtimeHub


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture(scope='function')
def test_db_engine():
    """Create an in-memory SQLite database engine for testing."""
    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )

    # Enable foreign key constraints for SQLite
    # This must be set for each connection
    def _fk_pragma_on_connect(dbapi_con, con_record):
        dbapi_con.execute('pragma foreign_keys=ON')

    event.listen(engine, 'connect', _fk_pragma_on_connect)

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope='function')
def test_session_factory(test_db_engine):
    """Session factory bound to the test engine (used by workers and the app)."""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=test_db_engine,
    )


@pytest.fixture(scope='function')
def test_db_session(test_session_factory):
    """Create a test database session."""
    session = test_session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# ============================================================================
# Clock, Hub and Sender Fixtures
# ============================================================================

class FakeClock:
    """Controllable naive UTC clock."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingHub(RealtimeHub):
    """Realtime hub recording every emitted event."""

    def __init__(self, fail: bool = False):
        self.events: List[Dict[str, Any]] = []
        self.sockets: Dict[str, List[Any]] = {}
        self.fail = fail

    async def connect(self, user_id: str, websocket) -> None:
        await websocket.accept()
        self.sockets.setdefault(user_id, []).append(websocket)

    def disconnect(self, user_id: str, websocket) -> None:
        if websocket in self.sockets.get(user_id, []):
            self.sockets[user_id].remove(websocket)

    def get_connection_count(self, user_id: Optional[str] = None) -> int:
        if user_id is not None:
            return len(self.sockets.get(user_id, []))
        return sum(len(sockets) for sockets in self.sockets.values())

    async def emit_to_user(self, user_id: str, event: str, payload: Dict[str, Any]) -> bool:
        if self.fail:
            raise RuntimeError("hub unavailable")
        self.events.append({"user_id": user_id, "event": event, "data": payload})
        return True

    def names(self) -> List[str]:
        return [e["event"] for e in self.events]


class ScriptedSender(ChannelSender):
    """Channel sender returning scripted results and recording calls."""

    def __init__(
        self,
        channel: NotificationChannel,
        results: Optional[List[Any]] = None,
        default: Any = None,
    ):
        self.channel = channel
        self._results = list(results or [])
        self._default = default if default is not None else SendResult.ok()
        self.sent: List[int] = []

    async def send(self, notification: Notification) -> SendResult:
        self.sent.append(notification.id)
        result = self._results.pop(0) if self._results else self._default
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def fake_clock():
    """Clock starting slightly ahead of real time so new entries are due."""
    return FakeClock(utcnow() + timedelta(seconds=1))


@pytest.fixture
def recording_hub():
    """Realtime hub recording emitted events."""
    return RecordingHub()


@pytest.fixture
def failing_hub():
    """Realtime hub raising on every emit."""
    return RecordingHub(fail=True)


@pytest.fixture
def scripted_sender():
    """Factory for ScriptedSender instances."""
    def _create(channel=NotificationChannel.EMAIL, results=None, default=None):
        return ScriptedSender(channel, results=results, default=default)
    return _create


# ============================================================================
# Sample Data Factories
# ============================================================================

@pytest.fixture
def create_notification(test_db_session):
    """Factory persisting a Notification without starting delivery."""
    def _create(
        user_id='user-1',
        type='challenge_published',
        title='New challenge',
        body='A new vocal challenge is available',
        payload=None,
        channel=NotificationChannel.INAPP,
    ) -> Notification:
        return NotificationService(test_db_session).create(
            user_id=user_id,
            type=type,
            title=title,
            body=body,
            payload=payload,
            channel=channel,
        )
    return _create


@pytest.fixture
def queue_entries(test_db_session):
    """Fetch all queue entries with fresh state from the database."""
    def _fetch(notification_id=None) -> List[DeliveryQueueEntry]:
        test_db_session.expire_all()
        query = test_db_session.query(DeliveryQueueEntry)
        if notification_id is not None:
            query = query.filter(DeliveryQueueEntry.notification_id == notification_id)
        return query.order_by(DeliveryQueueEntry.id).all()
    return _fetch


# ============================================================================
# API Fixtures
# ============================================================================

@pytest.fixture
def test_client(test_session_factory):
    """FastAPI TestClient using the test database."""
    from fastapi.testclient import TestClient

    from backend.src.db.database import get_db
    from backend.src.main import app

    def override_get_db():
        db = test_session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
