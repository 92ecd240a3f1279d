"""
SQLAlchemy models for the Vocalis backend.

This module provides the declarative base class and imports all models
to ensure they are registered with SQLAlchemy's metadata.
"""

from sqlalchemy.orm import declarative_base

# All models inherit from this Base class
Base = declarative_base()


# Import all models here so they are registered with Base.metadata
# This is required for Alembic autogenerate to detect models
from backend.src.models.notification import Notification, NotificationChannel
from backend.src.models.notification_queue import (
    DeliveryQueueEntry,
    DeliveryStatus,
    TERMINAL_STATUSES,
)

__all__ = [
    "Base",
    "Notification",
    "NotificationChannel",
    "DeliveryQueueEntry",
    "DeliveryStatus",
    "TERMINAL_STATUSES",
]
