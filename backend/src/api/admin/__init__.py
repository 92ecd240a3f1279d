"""
Admin API module.

Contains endpoints for operator tasks:
- Notification delivery queue administration (failed entries, requeue, purge)
"""

from backend.src.api.admin.notification_queue import router as notification_queue_router

__all__ = ["notification_queue_router"]
