"""
Notification API endpoints: feed, read state, push tokens and preferences.

All routes require a bearer token.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fitsocial.app.core.config import settings
from fitsocial.app.core.dependencies import get_current_user, get_push_dispatcher
from fitsocial.app.core.exceptions import BadRequestError
from fitsocial.app.db.session import get_db
from fitsocial.app.models.enums import NotificationCategory
from fitsocial.app.schemas.common import ApiResponse
from fitsocial.app.schemas.notification import (
    MarkAllReadResponse,
    NotificationPage,
    NotificationResponse,
    PreferencesResponse,
    PreferencesUpdate,
    PushTestResponse,
    PushTokenResponse,
    RegisterPushTokenRequest,
    UnreadCountResponse,
    UnregisterPushTokenRequest,
    UnregisterPushTokenResponse,
)
from fitsocial.app.services.notification_service import NotificationService, WORKOUT_CHANNEL
from fitsocial.app.services.push_service import (
    PushDispatcher,
    PushPayload,
    PushTokenRegistry,
    get_preferences,
    update_preferences,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("", response_model=ApiResponse[NotificationPage])
async def list_notifications(
    limit: int = Query(settings.notifications_page_size, ge=1, le=settings.notifications_max_page_size),
    cursor: Optional[str] = Query(None, description="nextCursor from the previous page"),
    category: Optional[NotificationCategory] = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Newest first, with actor and post summaries."""
    rows, next_cursor = await NotificationService.list_notifications(
        db, current_user["user_id"], limit=limit, cursor=cursor, category=category
    )
    page = NotificationPage(
        notifications=[NotificationResponse.model_validate(row) for row in rows],
        next_cursor=next_cursor,
    )
    return ApiResponse.ok(page)


@router.get("/unread-count", response_model=ApiResponse[UnreadCountResponse])
async def unread_count(
    category: Optional[NotificationCategory] = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    count = await NotificationService.unread_count(db, current_user["user_id"], category)
    return ApiResponse.ok(UnreadCountResponse(count=count))


# Registered before /{notification_id}/read so "read-all" never parses as an id
@router.put("/read-all", response_model=ApiResponse[MarkAllReadResponse])
async def mark_all_notifications_read(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    count = await NotificationService.mark_all_as_read(db, current_user["user_id"])
    await db.commit()
    return ApiResponse.ok(MarkAllReadResponse(updated=count), "All notifications marked as read")


@router.put("/{notification_id}/read", response_model=ApiResponse[None])
async def mark_notification_read(
    notification_id: int = Path(...),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Mark one notification read. Already-read notifications succeed unchanged."""
    flipped = await NotificationService.mark_as_read(db, notification_id, current_user["user_id"])
    await db.commit()
    if not flipped:
        return ApiResponse.ok(message="Notification already marked as read")
    return ApiResponse.ok(message="Notification marked as read")


# --- Push tokens ---

@router.post("/register-push-token", response_model=ApiResponse[PushTokenResponse])
async def register_push_token(
    body: RegisterPushTokenRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    device_info = body.device_info.model_dump(mode="json") if body.device_info else None
    token = await PushTokenRegistry.register(db, current_user["user_id"], body.push_token, device_info)
    await db.commit()
    return ApiResponse.ok(PushTokenResponse.model_validate(token), "Push token registered successfully")


@router.post("/unregister-push-token", response_model=ApiResponse[UnregisterPushTokenResponse])
async def unregister_push_token(
    body: Optional[UnregisterPushTokenRequest] = None,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Deactivate one device token, or remove every token when none is given."""
    push_token = body.push_token if body else None
    removed = await PushTokenRegistry.unregister(db, current_user["user_id"], push_token)
    await db.commit()
    return ApiResponse.ok(UnregisterPushTokenResponse(removed=removed), "Push token unregistered successfully")


# --- Preferences ---

@router.get("/preferences", response_model=ApiResponse[PreferencesResponse])
async def read_preferences(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    prefs = await get_preferences(db, current_user["user_id"])
    return ApiResponse.ok(PreferencesResponse.model_validate(prefs))


@router.put("/preferences", response_model=ApiResponse[PreferencesResponse])
async def write_preferences(
    body: PreferencesUpdate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    prefs = await update_preferences(db, current_user["user_id"], changes)
    await db.commit()
    return ApiResponse.ok(PreferencesResponse.model_validate(prefs), "Notification preferences updated successfully")


@router.post("/test-push", response_model=ApiResponse[PushTestResponse])
async def send_test_push(
    current_user: dict = Depends(get_current_user),
    dispatcher: PushDispatcher = Depends(get_push_dispatcher),
    db: AsyncSession = Depends(get_db)
):
    """Push a test message to every registered device of the caller."""
    payload = PushPayload(
        title="Test Notification",
        body="This is a test push notification from your backend!",
        data={"type": "test", "timestamp": datetime.now(timezone.utc).isoformat()},
        channel_id=WORKOUT_CHANNEL,
    )
    tickets = await dispatcher.send(db, current_user["user_id"], payload)
    await db.commit()

    if not tickets:
        raise BadRequestError(
            "Failed to send test push notification. Check that a valid push token is registered "
            "and push notifications are enabled."
        )
    return ApiResponse.ok(PushTestResponse(tickets=tickets), "Test push notification sent")
