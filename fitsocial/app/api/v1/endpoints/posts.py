"""
Social feed endpoints: posts, likes and comments.

Each action commits its own rows and counters first; the notification it
triggers runs afterwards as a background task and cannot change the response.
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
from fitsocial.app.models.post import Post, PostComment, PostLike
from fitsocial.app.models.user import User
from fitsocial.app.schemas.common import ApiResponse
from fitsocial.app.schemas.notification import ActorSummary
from fitsocial.app.schemas.post import CommentCreate, CommentResponse, PostCreate, PostResponse
from fitsocial.app.services import counters
from fitsocial.app.services.content_filter import content_filter
from fitsocial.app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/posts", tags=["Posts"])


async def _get_post_or_404(db: AsyncSession, post_id: int) -> Post:
    post = await db.get(Post, post_id)
    if post is None:
        raise ResourceNotFoundError("Post", post_id)
    return post


async def _post_response(db: AsyncSession, post: Post, viewer_id: Optional[int] = None) -> PostResponse:
    author = await db.get(User, post.user_id)
    liked_by_me = None
    if viewer_id is not None:
        result = await db.execute(
            select(PostLike.id).where(PostLike.post_id == post.id, PostLike.user_id == viewer_id)
        )
        liked_by_me = result.scalar_one_or_none() is not None

    response = PostResponse.model_validate(post)
    return response.model_copy(update={
        "user": ActorSummary.model_validate(author) if author else None,
        "liked_by_me": liked_by_me,
    })


@router.post(
    "",
    response_model=ApiResponse[PostResponse],
    status_code=201,
    dependencies=[Depends(content_filter("caption"))],
)
async def create_post(
    body: PostCreate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    user_id = current_user["user_id"]
    post = Post(
        user_id=user_id,
        workout_name=body.workout_name,
        caption=body.caption,
        image_urls=body.image_urls,
    )
    db.add(post)
    await db.flush()
    await counters.increment(db, User.posts_count, user_id)
    await db.refresh(post)

    data = await _post_response(db, post)
    await db.commit()

    logger.info("User %s created post %s", user_id, post.id)
    return ApiResponse.ok(data)


@router.get("/{post_id}", response_model=ApiResponse[PostResponse])
async def get_post(
    post_id: int = Path(...),
    viewer: Optional[dict] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db)
):
    """Post details; ``likedByMe`` is set for authenticated viewers."""
    post = await _get_post_or_404(db, post_id)
    viewer_id = viewer["user_id"] if viewer else None
    return ApiResponse.ok(await _post_response(db, post, viewer_id))


@router.post("/{post_id}/like", response_model=ApiResponse[None])
async def like_post(
    background_tasks: BackgroundTasks,
    post_id: int = Path(...),
    current_user: dict = Depends(get_current_user),
    notifications: NotificationService = Depends(get_notification_service),
    db: AsyncSession = Depends(get_db)
):
    user_id = current_user["user_id"]
    post = await _get_post_or_404(db, post_id)
    owner_id = post.user_id

    db.add(PostLike(post_id=post_id, user_id=user_id))
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Already liked")

    await counters.increment(db, Post.likes_count, post_id)
    await db.commit()

    background_tasks.add_task(notifications.notify_like, owner_id, user_id, post_id)
    return ApiResponse.ok(message="Post liked")


@router.delete("/{post_id}/like", response_model=ApiResponse[None])
async def unlike_post(
    background_tasks: BackgroundTasks,
    post_id: int = Path(...),
    current_user: dict = Depends(get_current_user),
    notifications: NotificationService = Depends(get_notification_service),
    db: AsyncSession = Depends(get_db)
):
    user_id = current_user["user_id"]
    result = await db.execute(
        delete(PostLike).where(PostLike.post_id == post_id, PostLike.user_id == user_id)
    )
    if result.rowcount == 0:
        raise ResourceNotFoundError("Like")

    await counters.decrement(db, Post.likes_count, post_id)
    await db.commit()

    background_tasks.add_task(
        notifications.delete_notifications, user_id, NotificationKind.LIKE, post_id=post_id
    )
    return ApiResponse.ok(message="Post unliked")


@router.post(
    "/{post_id}/comments",
    response_model=ApiResponse[CommentResponse],
    status_code=201,
    dependencies=[Depends(content_filter("commentText", "comment_text"))],
)
async def add_comment(
    body: CommentCreate,
    background_tasks: BackgroundTasks,
    post_id: int = Path(...),
    current_user: dict = Depends(get_current_user),
    notifications: NotificationService = Depends(get_notification_service),
    db: AsyncSession = Depends(get_db)
):
    """
    Comment on a post, or reply when ``parentCommentId`` is set.

    A reply notifies the parent comment's author, and the post author too
    unless they wrote the parent comment or the reply.
    """
    user_id = current_user["user_id"]
    text = body.comment_text.strip()
    if not text:
        raise BadRequestError("Comment text is required")

    post = await _get_post_or_404(db, post_id)
    post_owner_id = post.user_id

    parent = None
    if body.parent_comment_id is not None:
        parent = await db.get(PostComment, body.parent_comment_id)
        if parent is None:
            raise ResourceNotFoundError("Parent comment", body.parent_comment_id)
        if parent.post_id != post_id:
            raise BadRequestError("Parent comment does not belong to this post")

    comment = PostComment(
        post_id=post_id,
        user_id=user_id,
        comment_text=text,
        parent_comment_id=parent.id if parent else None,
    )
    db.add(comment)
    await db.flush()

    if parent is not None:
        await counters.increment(db, PostComment.replies_count, parent.id)
    await counters.increment(db, Post.comments_count, post_id)
    await db.refresh(comment)
    await db.commit()

    if parent is not None:
        background_tasks.add_task(notifications.notify_reply, parent.user_id, user_id, post_id, comment.id)
        if post_owner_id not in (user_id, parent.user_id):
            background_tasks.add_task(notifications.notify_comment, post_owner_id, user_id, post_id, comment.id)
    else:
        background_tasks.add_task(notifications.notify_comment, post_owner_id, user_id, post_id, comment.id)

    return ApiResponse.ok(CommentResponse.model_validate(comment))
