"""Notification router - inbox, preferences and the real-time event stream"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session

from ...auth import get_current_user, require_role, user_from_token
from ...database import SessionLocal, get_db
from ...models import User
from ...services.realtime import SUBSCRIBER_QUEUE_SIZE, board_channel, hub, user_channel
from .schemas import (
    NotificationCreate,
    NotificationResponse,
    NotificationStats,
    PreferenceResponse,
    PreferenceUpdate,
)
from .service import NotificationService, serialize_notification

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/notifications", tags=["Notifications"])

STREAM_BOARDS = ("hiring", "shifts")


def get_notification_service(db: Session = Depends(get_db)) -> NotificationService:
    """Dependency injection for NotificationService"""
    return NotificationService(db)


def _preference_response(preference) -> PreferenceResponse:
    return PreferenceResponse(
        emailEnabled=preference.email_enabled,
        inAppEnabled=preference.in_app_enabled,
        digestFrequency=preference.digest_frequency,
        quietHoursStart=preference.quiet_hours_start,
        quietHoursEnd=preference.quiet_hours_end,
        categories=preference.categories or {},
    )


# ============================================================================
# INBOX
# ============================================================================


@router.get("", response_model=list[NotificationResponse])
async def list_notifications(
    category: Optional[str] = Query(None),
    priority: Optional[str] = Query(None),
    is_read: Optional[bool] = Query(None, alias="isRead"),
    entity_type: Optional[str] = Query(None, alias="entityType"),
    date_from: Optional[datetime] = Query(None, alias="dateFrom"),
    date_to: Optional[datetime] = Query(None, alias="dateTo"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    notifications = service.list_notifications(
        current_user, category, priority, is_read, entity_type, date_from, date_to, limit, offset
    )
    return [serialize_notification(n) for n in notifications]


@router.get("/stats", response_model=NotificationStats)
async def get_stats(
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    return service.get_stats(current_user)


@router.post("", response_model=NotificationResponse)
async def create_notification(
    data: NotificationCreate,
    current_user: User = Depends(require_role("manager")),
    service: NotificationService = Depends(get_notification_service),
):
    """Send a notification to a user of the same organization (managers and admins)"""
    notification = await service.create(
        current_user.organization_id,
        data.recipientId,
        title=data.title,
        message=data.message,
        category=data.category,
        priority=data.priority,
        entity_type=data.entityType,
        entity_id=data.entityId,
        channels=data.deliveryChannels,
    )
    if not notification:
        raise HTTPException(status_code=409, detail="Recipient has disabled this notification category")
    return serialize_notification(notification)


@router.post("/read-all")
async def mark_all_read(
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    return {"updated": service.mark_all_read(current_user)}


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    return serialize_notification(service.mark_read(current_user, notification_id))


@router.post("/{notification_id}/acknowledge", response_model=NotificationResponse)
async def acknowledge(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    return serialize_notification(service.acknowledge(current_user, notification_id))


# ============================================================================
# PREFERENCES
# ============================================================================


@router.get("/preferences", response_model=PreferenceResponse)
async def get_preferences(
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    return _preference_response(service.get_preferences(current_user))


@router.put("/preferences", response_model=PreferenceResponse)
async def update_preferences(
    data: PreferenceUpdate,
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    return _preference_response(service.update_preferences(current_user, data))


# ============================================================================
# REAL-TIME STREAM
# ============================================================================


async def pump_events(queue: asyncio.Queue, receive_text, send_json) -> None:
    """
    Forward queued events to the client until it disconnects. Messages from
    the client are read and discarded so a disconnect is noticed while idle.
    Both helper tasks are cancelled and awaited before returning.
    """

    async def _drain_client():
        while True:
            await receive_text()

    receiver = asyncio.create_task(_drain_client())
    getter = None
    try:
        while True:
            getter = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait({getter, receiver}, return_when=asyncio.FIRST_COMPLETED)
            if receiver in done:
                break
            await send_json(getter.result())
    except WebSocketDisconnect:
        pass
    finally:
        tasks = [task for task in (getter, receiver) if task is not None]
        for task in tasks:
            task.cancel()
        for result in await asyncio.gather(*tasks, return_exceptions=True):
            if isinstance(result, Exception) and not isinstance(result, WebSocketDisconnect):
                logger.warning(f"⚠️ Event stream task failed: {result}")


@router.websocket("/ws")
async def event_stream(websocket: WebSocket, token: str = Query(...), boards: str = Query("")):
    """
    Streams the user's notifications plus events of the requested boards
    (comma separated: hiring, shifts) of the user's organization.
    """
    db = SessionLocal()
    try:
        user = user_from_token(db, token)
    except HTTPException as e:
        logger.warning(f"⚠️ Rejected event stream connection: {e.detail}")
        await websocket.close(code=4401)
        return
    finally:
        db.close()

    channels = [user_channel(user.id)]
    for board in filter(None, (b.strip() for b in boards.split(","))):
        if board in STREAM_BOARDS:
            channels.append(board_channel(user.organization_id, board))

    await websocket.accept()
    queue: asyncio.Queue = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
    for channel in channels:
        hub.subscribe(channel, queue)
    logger.info(f"🔌 User {user.id} subscribed to {channels}")

    try:
        await pump_events(queue, websocket.receive_text, websocket.send_json)
    finally:
        for channel in channels:
            hub.unsubscribe(channel, queue)
        logger.info(f"🔌 User {user.id} event stream closed")
