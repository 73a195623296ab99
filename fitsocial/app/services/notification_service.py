"""
Notification Service.

Creates, reverses and reads in-app notifications, and hands each new one to
the push dispatcher.

Side-effect operations (``create_notification``, the ``notify_*`` helpers and
``delete_notifications``) run in their own session, log and swallow every
failure and return ``None`` / ``False``: a like must succeed even when its
notification cannot be written. Read-side operations take the request's
session and raise like any other service.
"""

import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, update, delete, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from fitsocial.app.core.exceptions import BadRequestError, InsufficientPermissionsError, ResourceNotFoundError
from fitsocial.app.models.enums import NotificationCategory, NotificationKind, ReminderType
from fitsocial.app.models.notification import Notification
from fitsocial.app.models.user import User
from fitsocial.app.services import counters
from fitsocial.app.services.push_service import PushDispatcher, PushPayload

logger = logging.getLogger(__name__)

SOCIAL_CHANNEL = "social-notifications"
WORKOUT_CHANNEL = "workout-notifications"

_REMINDER_TITLES = {
    NotificationKind.WORKOUT_REMINDER_DAILY: "Time to crush it!",
    NotificationKind.WORKOUT_REMINDER_UPCOMING: "Get ready!",
    NotificationKind.WORKOUT_REMINDER_MISSED: "You still have time!",
    NotificationKind.WORKOUT_REMINDER_REST: "Rest Day",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_push_payload(
    kind: NotificationKind,
    actor_name: Optional[str] = None,
    post_id: Optional[int] = None,
    comment_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
    notification_id: Optional[int] = None,
) -> PushPayload:
    """Title, body and deep-link data for one notification kind."""
    actor = actor_name or "Someone"
    meta = metadata or {}

    if kind == NotificationKind.LIKE:
        return PushPayload(
            title="New Like",
            body=f"{actor} liked your workout post",
            data={"type": kind.value, "postId": post_id, "screen": "post-detail"},
            channel_id=SOCIAL_CHANNEL,
        )
    if kind == NotificationKind.COMMENT:
        return PushPayload(
            title="New Comment",
            body=f"{actor} commented on your post",
            data={"type": kind.value, "postId": post_id, "commentId": comment_id, "screen": "post-detail"},
            channel_id=SOCIAL_CHANNEL,
        )
    if kind == NotificationKind.REPLY:
        return PushPayload(
            title="New Reply",
            body=f"{actor} replied to your comment",
            data={"type": kind.value, "postId": post_id, "commentId": comment_id, "screen": "post-detail"},
            channel_id=SOCIAL_CHANNEL,
        )
    if kind == NotificationKind.FOLLOW:
        return PushPayload(
            title="New Follower",
            body=f"{actor} started following you",
            data={"type": kind.value, "screen": "profile"},
            channel_id=SOCIAL_CHANNEL,
        )

    # System kinds: no actor, body built from metadata
    data: Dict[str, Any] = {"type": kind.value, "notificationId": notification_id}

    if kind in _REMINDER_TITLES:
        workout_name = meta.get("workout_name") or "Your workout"
        bodies = {
            NotificationKind.WORKOUT_REMINDER_DAILY: f"{workout_name} is scheduled for today",
            NotificationKind.WORKOUT_REMINDER_UPCOMING: f"{workout_name} starts in 1 hour",
            NotificationKind.WORKOUT_REMINDER_MISSED: "Complete today's workout before midnight",
            NotificationKind.WORKOUT_REMINDER_REST: "Today is your rest day. Recovery is progress too!",
        }
        data.update(workoutId=meta.get("workout_id"), screen="workout-detail")
        title, body = _REMINDER_TITLES[kind], bodies[kind]
    elif kind == NotificationKind.WORKOUT_COMPLETED:
        calories = meta.get("calories_burned")
        calories_text = f" - {calories} cal burned" if calories else ""
        title = "Amazing work!"
        body = f"{meta.get('workout_name')} completed in {meta.get('duration_minutes')} min{calories_text}"
        data.update(completionId=meta.get("completion_id"), screen="workout-summary")
    elif kind == NotificationKind.WEEKLY_GOAL_ACHIEVED:
        title = "Weekly Goal Crushed!"
        body = f"{meta.get('workouts_completed')}/{meta.get('weekly_goal')} workouts completed this week"
        data["screen"] = "weekly-summary"
    elif kind == NotificationKind.MONTHLY_MILESTONE:
        title = "Monthly Milestone!"
        body = f"{meta.get('workouts_count')} workouts completed in {meta.get('month')}"
        data["screen"] = "monthly-summary"
    elif kind == NotificationKind.PLAN_GENERATED:
        title = "New Plan Ready!"
        body = f"Your {meta.get('plan_name')} plan is ready to start"
        data.update(planId=meta.get("plan_id"), screen="plan-detail")
    elif kind == NotificationKind.WEEKLY_REPORT:
        title = "Your Weekly Summary"
        body = (
            f"{meta.get('workouts_completed')} workouts, "
            f"{meta.get('total_minutes')} min active time this week"
        )
        data["screen"] = "weekly-report"
    elif kind == NotificationKind.INACTIVE_ALERT:
        title = "We miss you!"
        body = f"It's been {meta.get('days_inactive')} days since your last workout"
        data["screen"] = "workout-planner"
    elif kind == NotificationKind.RECOVERY_REMINDER:
        title = "Time to Recover"
        body = f"You've worked out {meta.get('consecutive_days')} days straight. Consider a rest day!"
        data["screen"] = "home"
    else:
        raise ValueError(f"No push payload for notification kind {kind!r}")

    return PushPayload(title=title, body=body, data=data, channel_id=WORKOUT_CHANNEL)


def actor_label(user: Optional[User]) -> str:
    if user is None:
        return "Someone"
    return user.username or user.full_name or "Someone"


def encode_cursor(notification: Notification) -> str:
    """Opaque page cursor: ``<created_at iso>|<id>`` of the last row served."""
    return f"{notification.created_at.isoformat()}|{notification.id}"


def decode_cursor(cursor: str) -> Tuple[datetime, int]:
    created_at, sep, notification_id = cursor.rpartition("|")
    try:
        if not sep:
            raise ValueError("missing separator")
        return datetime.fromisoformat(created_at), int(notification_id)
    except ValueError as e:
        raise BadRequestError("Invalid cursor", details={"cursor": cursor}) from e


class NotificationService:
    """
    Notification pipeline bound to a session factory and a push dispatcher.

    Create runs in two steps. The row and the recipient's unread counter are
    committed together first. The push send and the push-sent stamp follow,
    so a push failure never loses the notification.
    """

    def __init__(self, session_factory: async_sessionmaker, dispatcher: PushDispatcher):
        self.session_factory = session_factory
        self.dispatcher = dispatcher

    # --- Creation ---

    async def create_notification(
        self,
        recipient_id: int,
        kind: NotificationKind,
        actor_id: Optional[int] = None,
        post_id: Optional[int] = None,
        comment_id: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[Notification]:
        """
        Create one notification for ``recipient_id`` and push it.

        Returns:
            The notification, or None when suppressed (self action) or on failure
        """
        if actor_id is not None and actor_id == recipient_id:
            logger.debug("Skipping %s notification: user %s acted on own content", kind.value, actor_id)
            return None

        try:
            async with self.session_factory() as db:
                actor = await db.get(User, actor_id) if actor_id is not None else None

                notification = Notification(
                    user_id=recipient_id,
                    actor_id=actor_id,
                    type=kind,
                    notification_category=kind.category,
                    post_id=post_id,
                    comment_id=comment_id,
                    payload=metadata or {},
                )
                db.add(notification)
                await db.flush()
                await counters.increment(db, User.unread_notifications_count, recipient_id)
                await db.commit()

                logger.info(
                    "Created %s notification %s for user %s", kind.value, notification.id, recipient_id,
                    extra={"notification_id": notification.id, "user_id": recipient_id},
                )

                payload = build_push_payload(
                    kind,
                    actor_name=actor_label(actor),
                    post_id=post_id,
                    comment_id=comment_id,
                    metadata=notification.payload,
                    notification_id=notification.id,
                )
                await self._push(db, notification, payload)
                return notification
        except Exception:
            logger.exception(
                "Failed to create %s notification for user %s", kind.value, recipient_id,
                extra={"user_id": recipient_id, "actor_id": actor_id},
            )
            return None

    async def _push(self, db: AsyncSession, notification: Notification, payload: PushPayload) -> None:
        notification_id = notification.id
        try:
            tickets = await self.dispatcher.send(db, notification.user_id, payload)
            if any(ticket.is_ok for ticket in tickets):
                notification.push_sent = True
                notification.push_sent_at = _utcnow()
            await db.commit()
        except Exception:
            logger.exception("Push dispatch failed for notification %s", notification_id)
            await db.rollback()

    # --- Social helpers ---

    async def notify_like(self, post_owner_id: int, liker_id: int, post_id: int):
        return await self.create_notification(post_owner_id, NotificationKind.LIKE, actor_id=liker_id, post_id=post_id)

    async def notify_comment(self, post_owner_id: int, commenter_id: int, post_id: int, comment_id: int):
        return await self.create_notification(
            post_owner_id, NotificationKind.COMMENT, actor_id=commenter_id, post_id=post_id, comment_id=comment_id
        )

    async def notify_reply(self, parent_author_id: int, replier_id: int, post_id: int, reply_id: int):
        return await self.create_notification(
            parent_author_id, NotificationKind.REPLY, actor_id=replier_id, post_id=post_id, comment_id=reply_id
        )

    async def notify_follow(self, followed_id: int, follower_id: int):
        return await self.create_notification(followed_id, NotificationKind.FOLLOW, actor_id=follower_id)

    # --- Workout helpers ---

    async def notify_workout_reminder(
        self, user_id: int, workout: Dict[str, Any], reminder_type: ReminderType = ReminderType.DAILY
    ):
        return await self.create_notification(
            user_id,
            ReminderType(reminder_type).kind,
            metadata={
                "workout_id": workout.get("id"),
                "workout_name": workout.get("workout_name"),
                "scheduled_date": workout.get("scheduled_date"),
                "estimated_duration": workout.get("estimated_duration_minutes") or 45,
            },
        )

    async def notify_workout_completed(self, user_id: int, completion: Dict[str, Any]):
        return await self.create_notification(
            user_id,
            NotificationKind.WORKOUT_COMPLETED,
            metadata={
                "workout_name": completion.get("workout_name"),
                "duration_minutes": completion.get("duration_minutes"),
                "calories_burned": completion.get("calories_burned") or 0,
                "difficulty_rating": completion.get("difficulty_rating"),
                "completion_id": completion.get("id"),
            },
        )

    async def notify_weekly_goal(self, user_id: int, week: Dict[str, Any]):
        keys = ("workouts_completed", "weekly_goal", "week_start", "week_end", "total_minutes", "total_calories")
        return await self.create_notification(
            user_id, NotificationKind.WEEKLY_GOAL_ACHIEVED, metadata={k: week.get(k) for k in keys}
        )

    async def notify_monthly_milestone(self, user_id: int, month: Dict[str, Any]):
        keys = ("workouts_count", "month", "total_minutes", "total_calories")
        return await self.create_notification(
            user_id, NotificationKind.MONTHLY_MILESTONE, metadata={k: month.get(k) for k in keys}
        )

    async def notify_plan_generated(self, user_id: int, plan: Dict[str, Any]):
        return await self.create_notification(
            user_id,
            NotificationKind.PLAN_GENERATED,
            metadata={
                "plan_id": plan.get("id"),
                "plan_name": plan.get("plan_name"),
                "duration_weeks": plan.get("duration_weeks"),
                "workouts_count": plan.get("workouts_count"),
            },
        )

    async def notify_weekly_report(self, user_id: int, report: Dict[str, Any]):
        keys = ("workouts_completed", "total_minutes", "total_calories", "avg_difficulty", "most_common_time")
        return await self.create_notification(
            user_id, NotificationKind.WEEKLY_REPORT, metadata={k: report.get(k) for k in keys}
        )

    async def notify_inactive(self, user_id: int, inactivity: Dict[str, Any]):
        keys = ("days_inactive", "last_workout_date", "last_workout_name")
        return await self.create_notification(
            user_id, NotificationKind.INACTIVE_ALERT, metadata={k: inactivity.get(k) for k in keys}
        )

    async def notify_recovery(self, user_id: int, recovery: Dict[str, Any]):
        keys = ("consecutive_days", "workouts_this_week", "total_minutes_this_week")
        return await self.create_notification(
            user_id, NotificationKind.RECOVERY_REMINDER, metadata={k: recovery.get(k) for k in keys}
        )

    # --- Reversal ---

    async def delete_notifications(
        self,
        actor_id: int,
        kind: NotificationKind,
        post_id: Optional[int] = None,
        comment_id: Optional[int] = None,
        recipient_id: Optional[int] = None,
    ) -> bool:
        """
        Delete the notifications an undone action produced (unlike, unfollow).

        Matching rows are locked, deleted by id, and every unread one
        decrements its recipient's counter, all in one transaction.
        """
        filters = [Notification.actor_id == actor_id, Notification.type == kind]
        if post_id is not None:
            filters.append(Notification.post_id == post_id)
        if comment_id is not None:
            filters.append(Notification.comment_id == comment_id)
        if recipient_id is not None:
            filters.append(Notification.user_id == recipient_id)

        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(Notification.id, Notification.user_id, Notification.is_read)
                    .where(*filters)
                    .with_for_update()
                )
                rows = result.all()
                if not rows:
                    return True

                await db.execute(
                    delete(Notification)
                    .where(Notification.id.in_([row.id for row in rows]))
                    .execution_options(synchronize_session=False)
                )
                unread = Counter(row.user_id for row in rows if not row.is_read)
                for user_id, n in unread.items():
                    await counters.decrement(db, User.unread_notifications_count, user_id, by=n)
                await db.commit()

                logger.info("Deleted %d %s notification(s) from actor %s", len(rows), kind.value, actor_id)
                return True
        except Exception:
            logger.exception("Failed to delete %s notifications from actor %s", kind.value, actor_id)
            return False

    # --- Read side ---

    @staticmethod
    async def list_notifications(
        db: AsyncSession,
        user_id: int,
        limit: int = 20,
        cursor: Optional[str] = None,
        category: Optional[NotificationCategory] = None,
    ) -> Tuple[List[Notification], Optional[str]]:
        """
        Newest first, keyset-paginated on ``(created_at, id)``.

        Returns:
            (page, next_cursor); next_cursor is None on the last page
        """
        query = (
            select(Notification)
            .options(selectinload(Notification.actor), selectinload(Notification.post))
            .where(Notification.user_id == user_id)
        )
        if category is not None:
            query = query.where(Notification.notification_category == category)
        if cursor is not None:
            created_at, notification_id = decode_cursor(cursor)
            query = query.where(or_(
                Notification.created_at < created_at,
                and_(Notification.created_at == created_at, Notification.id < notification_id),
            ))

        query = query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit + 1)
        result = await db.execute(query)
        rows = list(result.scalars().all())

        next_cursor = None
        if len(rows) > limit:
            rows = rows[:limit]
            next_cursor = encode_cursor(rows[-1])
        return rows, next_cursor

    @staticmethod
    async def unread_count(db: AsyncSession, user_id: int, category: Optional[NotificationCategory] = None) -> int:
        """Per category: live count of unread rows. Overall: the badge counter."""
        if category is not None:
            result = await db.execute(
                select(func.count(Notification.id)).where(
                    Notification.user_id == user_id,
                    Notification.is_read.is_(False),
                    Notification.notification_category == category,
                )
            )
            return result.scalar_one()

        result = await db.execute(select(User.unread_notifications_count).where(User.id == user_id))
        return result.scalar_one_or_none() or 0

    @staticmethod
    async def mark_as_read(db: AsyncSession, notification_id: int, user_id: int) -> bool:
        """
        Mark one notification read.

        Returns:
            True if the row flipped, False if it was already read

        Raises:
            ResourceNotFoundError: no such notification
            InsufficientPermissionsError: notification belongs to another user
        """
        result = await db.execute(select(Notification.user_id).where(Notification.id == notification_id))
        owner_id = result.scalar_one_or_none()
        if owner_id is None:
            raise ResourceNotFoundError("Notification", notification_id)
        if owner_id != user_id:
            raise InsufficientPermissionsError("Not authorized to modify this notification")

        # Conditional flip: only the request that changes the row decrements
        result = await db.execute(
            update(Notification)
            .where(Notification.id == notification_id, Notification.is_read.is_(False))
            .values(is_read=True, read_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        await counters.decrement(db, User.unread_notifications_count, user_id)
        return True

    @staticmethod
    async def mark_all_as_read(db: AsyncSession, user_id: int) -> int:
        """Mark every unread notification read and reset the counter to 0."""
        result = await db.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True, read_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        await counters.reset(db, User.unread_notifications_count, user_id)
        return result.rowcount
