"""
Notifications API endpoints for notification history and live updates.

Provides endpoints for:
- Notification history (list, unread count)
- Read state (mark one, mark all)
- Live notification events over WebSocket
"""

import asyncio
from typing import Optional

from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    Query,
    Request,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from sqlalchemy.orm import Session

from backend.src.db.database import get_db
from backend.src.middleware.auth import UserContext, require_user
from backend.src.schemas.notifications import (
    MarkAllReadResponse,
    NotificationListResponse,
    NotificationResponse,
    UnreadCountResponse,
)
from backend.src.services.exceptions import NotFoundError
from backend.src.services.notification_service import NotificationService
from backend.src.utils.logging_config import get_logger
from backend.src.utils.websocket import RealtimeHub


logger = get_logger("api")

router = APIRouter(
    prefix="/notifications",
    tags=["Notifications"],
)

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50
WS_HEARTBEAT_SECONDS = 30.0


# ============================================================================
# Dependencies
# ============================================================================


def get_realtime_hub(request: Request) -> Optional[RealtimeHub]:
    """Get the realtime hub created by the application lifespan."""
    return getattr(request.app.state, "realtime_hub", None)


def get_notification_service(
    db: Session = Depends(get_db),
    hub: Optional[RealtimeHub] = Depends(get_realtime_hub),
) -> NotificationService:
    """Create NotificationService instance with database session and realtime hub."""
    return NotificationService(db=db, hub=hub)


# ============================================================================
# Notification History Endpoints
# ============================================================================


@router.get(
    "",
    response_model=NotificationListResponse,
    summary="List notification history",
)
async def list_notifications(
    page: int = Query(default=1, description="1-based page number"),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, description="Page size (capped at 100)"),
    user: UserContext = Depends(require_user),
    service: NotificationService = Depends(get_notification_service),
):
    """
    Returns the calling user's notifications, newest first.
    """
    page = max(page, 1)
    limit = min(limit, MAX_PAGE_SIZE)

    notifications, total = service.list_notifications(
        user_id=user.user_id,
        page=page,
        limit=limit,
    )
    return NotificationListResponse(
        items=[NotificationResponse.model_validate(n) for n in notifications],
        page=page,
        limit=limit,
        total=total,
    )


@router.get(
    "/unread-count",
    response_model=UnreadCountResponse,
    summary="Get unread notification count",
)
async def get_unread_count(
    user: UserContext = Depends(require_user),
    service: NotificationService = Depends(get_notification_service),
):
    """
    Returns the count of unread notifications for the notification bell badge.
    """
    return UnreadCountResponse(unread=service.get_unread_count(user_id=user.user_id))


@router.post(
    "/mark-all-read",
    response_model=MarkAllReadResponse,
    summary="Mark all notifications as read",
)
async def mark_all_notifications_read(
    user: UserContext = Depends(require_user),
    service: NotificationService = Depends(get_notification_service),
):
    """
    Mark all unread notifications as read for the calling user.

    Idempotent: calling when all notifications are already read returns 0.
    """
    updated_count = service.mark_all_as_read(user_id=user.user_id)
    return MarkAllReadResponse(updated_count=updated_count)


@router.post(
    "/{guid}/read",
    response_model=NotificationResponse,
    summary="Mark notification as read",
)
async def mark_notification_read(
    guid: str,
    user: UserContext = Depends(require_user),
    service: NotificationService = Depends(get_notification_service),
):
    """
    Mark a single notification as read. Marking an already-read notification
    is a no-op.
    """
    try:
        notification = service.mark_as_read(guid=guid, user_id=user.user_id)
        return NotificationResponse.model_validate(notification)
    except NotFoundError as err:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found",
        ) from err


# ============================================================================
# Live Updates
# ============================================================================


@router.websocket("/ws")
async def notifications_websocket(
    websocket: WebSocket,
    user_id: Optional[str] = Query(default=None),
):
    """
    WebSocket endpoint for live notification events.

    The caller identity is supplied by the connecting layer in the user_id
    query parameter.

    Messages are JSON objects:
    {
        "event": "notification:created" | "notification:delivered",
        "data": { ...notification fields... }
    }
    """
    hub = getattr(websocket.app.state, "realtime_hub", None)
    user_id = (user_id or "").strip()

    if not user_id or hub is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await hub.connect(user_id, websocket)
    logger.info("Notification WebSocket connected", extra={"user_id": user_id})

    try:
        while True:
            try:
                data = await asyncio.wait_for(
                    websocket.receive_text(),
                    timeout=WS_HEARTBEAT_SECONDS,
                )
                if data == "ping":
                    await websocket.send_text("pong")
            except asyncio.TimeoutError:
                try:
                    await websocket.send_json({"event": "heartbeat", "data": {}})
                except Exception:
                    break
    except WebSocketDisconnect:
        logger.info("Notification WebSocket disconnected", extra={"user_id": user_id})
    finally:
        hub.disconnect(user_id, websocket)
