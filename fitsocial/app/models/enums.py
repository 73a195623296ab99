"""
Enumerations shared by models, schemas and services.
"""

import enum


class NotificationCategory(str, enum.Enum):
    """
    Notification feed categories.

    SOCIAL: produced by another user's action (like, comment, reply, follow)
    WORKOUT: system generated (reminders, achievements, reports); no actor
    """
    SOCIAL = "social"
    WORKOUT = "workout"


class NotificationKind(str, enum.Enum):
    LIKE = "like"
    COMMENT = "comment"
    REPLY = "reply"
    FOLLOW = "follow"
    WORKOUT_REMINDER_DAILY = "workout_reminder_daily"
    WORKOUT_REMINDER_UPCOMING = "workout_reminder_upcoming"
    WORKOUT_REMINDER_MISSED = "workout_reminder_missed"
    WORKOUT_REMINDER_REST = "workout_reminder_rest"
    WORKOUT_COMPLETED = "workout_completed"
    WEEKLY_GOAL_ACHIEVED = "weekly_goal_achieved"
    MONTHLY_MILESTONE = "monthly_milestone"
    PLAN_GENERATED = "plan_generated"
    WEEKLY_REPORT = "weekly_report"
    INACTIVE_ALERT = "inactive_alert"
    RECOVERY_REMINDER = "recovery_reminder"

    @property
    def category(self) -> NotificationCategory:
        if self in SOCIAL_KINDS:
            return NotificationCategory.SOCIAL
        return NotificationCategory.WORKOUT


SOCIAL_KINDS = frozenset({
    NotificationKind.LIKE,
    NotificationKind.COMMENT,
    NotificationKind.REPLY,
    NotificationKind.FOLLOW,
})


class ReminderType(str, enum.Enum):
    DAILY = "daily"
    UPCOMING = "upcoming"
    MISSED = "missed"
    REST = "rest"

    @property
    def kind(self) -> NotificationKind:
        return NotificationKind(f"workout_reminder_{self.value}")


class DevicePlatform(str, enum.Enum):
    IOS = "ios"
    ANDROID = "android"
    WEB = "web"
