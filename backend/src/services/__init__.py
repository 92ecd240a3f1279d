"""
Service layer for business logic.

This module exports all service classes for use in API endpoints.
"""

from backend.src.services.exceptions import (
    ServiceError,
    NotFoundError,
    ConflictError,
    ValidationError,
)
from backend.src.services.notification_service import (
    NotificationService,
    notify_users_in_background,
)
from backend.src.services.delivery_queue_service import DeliveryQueueService
from backend.src.services.notification_delivery_service import (
    NotificationDeliveryService,
    BatchResult,
)
from backend.src.services.delivery_polling_loop import DeliveryPollingLoop

__all__ = [
    "ServiceError",
    "NotFoundError",
    "ConflictError",
    "ValidationError",
    "NotificationService",
    "notify_users_in_background",
    "DeliveryQueueService",
    "NotificationDeliveryService",
    "BatchResult",
    "DeliveryPollingLoop",
]
