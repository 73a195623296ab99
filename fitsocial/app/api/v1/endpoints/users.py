"""
Profile and follow endpoints.
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Path
from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fitsocial.app.core.dependencies import get_current_user, get_optional_user, get_notification_service
from fitsocial.app.core.exceptions import BadRequestError, ConflictError, ResourceNotFoundError
from fitsocial.app.db.session import get_db
from fitsocial.app.models.enums import NotificationKind
from fitsocial.app.models.follow import UserFollow
from fitsocial.app.models.user import User
from fitsocial.app.schemas.common import ApiResponse
from fitsocial.app.schemas.user import FollowResponse, UserProfileResponse
from fitsocial.app.services import counters
from fitsocial.app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["Users"])


async def _get_active_user_or_404(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        raise ResourceNotFoundError("User", user_id)
    return user


async def _followers_count(db: AsyncSession, user_id: int) -> int:
    result = await db.execute(select(User.followers_count).where(User.id == user_id))
    return result.scalar_one()


@router.get("/{user_id}", response_model=ApiResponse[UserProfileResponse])
async def get_profile(
    user_id: int = Path(...),
    viewer: Optional[dict] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db)
):
    user = await _get_active_user_or_404(db, user_id)

    is_following = None
    if viewer and viewer["user_id"] != user_id:
        result = await db.execute(
            select(UserFollow.id).where(
                UserFollow.follower_id == viewer["user_id"], UserFollow.following_id == user_id
            )
        )
        is_following = result.scalar_one_or_none() is not None

    profile = UserProfileResponse.model_validate(user).model_copy(update={"is_following": is_following})
    return ApiResponse.ok(profile)


@router.post("/{user_id}/follow", response_model=ApiResponse[FollowResponse])
async def follow_user(
    background_tasks: BackgroundTasks,
    user_id: int = Path(...),
    current_user: dict = Depends(get_current_user),
    notifications: NotificationService = Depends(get_notification_service),
    db: AsyncSession = Depends(get_db)
):
    follower_id = current_user["user_id"]
    if follower_id == user_id:
        raise BadRequestError("You cannot follow yourself")
    await _get_active_user_or_404(db, user_id)

    db.add(UserFollow(follower_id=follower_id, following_id=user_id))
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Already following")

    await counters.increment(db, User.followers_count, user_id)
    await counters.increment(db, User.following_count, follower_id)
    followers = await _followers_count(db, user_id)
    await db.commit()

    background_tasks.add_task(notifications.notify_follow, user_id, follower_id)
    return ApiResponse.ok(FollowResponse(following=True, followers_count=followers), "User followed")


@router.delete("/{user_id}/follow", response_model=ApiResponse[FollowResponse])
async def unfollow_user(
    background_tasks: BackgroundTasks,
    user_id: int = Path(...),
    current_user: dict = Depends(get_current_user),
    notifications: NotificationService = Depends(get_notification_service),
    db: AsyncSession = Depends(get_db)
):
    follower_id = current_user["user_id"]
    result = await db.execute(
        delete(UserFollow).where(UserFollow.follower_id == follower_id, UserFollow.following_id == user_id)
    )
    if result.rowcount == 0:
        raise ResourceNotFoundError("Follow")

    await counters.decrement(db, User.followers_count, user_id)
    await counters.decrement(db, User.following_count, follower_id)
    followers = await _followers_count(db, user_id)
    await db.commit()

    background_tasks.add_task(
        notifications.delete_notifications, follower_id, NotificationKind.FOLLOW, recipient_id=user_id
    )
    return ApiResponse.ok(FollowResponse(following=False, followers_count=followers), "User unfollowed")
