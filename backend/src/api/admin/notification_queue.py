"""
Admin notification queue API endpoints.

Provides endpoints for operating the delivery queue dead letters:
- List failed entries
- Requeue a failed entry (starts a fresh delivery cycle)
- Purge old sent/failed entries

All endpoints require the X-Admin-Token header.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from backend.src.config.settings import AppSettings, get_settings
from backend.src.db.database import get_db
from backend.src.middleware.auth import require_admin
from backend.src.schemas.notification_queue import (
    PurgeResponse,
    QueueEntryListResponse,
    QueueEntryResponse,
)
from backend.src.services.delivery_queue_service import DeliveryQueueService
from backend.src.services.exceptions import ConflictError, NotFoundError
from backend.src.utils.logging_config import get_logger


logger = get_logger("api")

router = APIRouter(
    prefix="/notification-queue",
    tags=["Admin - Notification Queue"],
    dependencies=[Depends(require_admin)],
)


def get_delivery_queue_service(db: Session = Depends(get_db)) -> DeliveryQueueService:
    """Create DeliveryQueueService instance with database session."""
    return DeliveryQueueService(db)


@router.get("/failed", response_model=QueueEntryListResponse)
async def list_failed_entries(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    service: DeliveryQueueService = Depends(get_delivery_queue_service),
):
    """
    List failed delivery queue entries, most recently failed first.
    """
    entries, total = service.list_failed(limit=limit, offset=offset)
    return QueueEntryListResponse(
        items=[QueueEntryResponse.from_entry(e) for e in entries],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post(
    "/{guid}/requeue",
    response_model=QueueEntryResponse,
    status_code=status.HTTP_201_CREATED,
)
async def requeue_entry(
    guid: str,
    service: DeliveryQueueService = Depends(get_delivery_queue_service),
):
    """
    Requeue a failed entry.

    The failed entry is left as is; a new pending entry for the same
    notification and channel is created and returned.
    """
    try:
        entry = service.requeue(guid)
    except NotFoundError as err:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Queue entry not found",
        ) from err
    except ConflictError as err:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=err.message,
        ) from err

    logger.info(
        "Admin requeued notification delivery",
        extra={"event": "admin.notification_queue.requeued", "failed_entry_guid": guid},
    )
    return QueueEntryResponse.from_entry(entry)


@router.post("/purge", response_model=PurgeResponse)
async def purge_terminal_entries(
    older_than_days: Optional[int] = Query(
        default=None,
        ge=1,
        description="Retention window in days (default: NOTIF_QUEUE_RETENTION_DAYS)",
    ),
    service: DeliveryQueueService = Depends(get_delivery_queue_service),
    settings: AppSettings = Depends(get_settings),
):
    """
    Delete sent and failed entries last updated before the retention window.

    Without older_than_days the configured retention applies; when that is
    0 (keep forever) an explicit window is required.
    """
    days = older_than_days or settings.notif_queue_retention_days
    if not days:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Queue retention is disabled; pass older_than_days explicitly",
        )
    deleted = service.purge_terminal(days)
    return PurgeResponse(deleted_count=deleted, older_than_days=days)
