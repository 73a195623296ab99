"""
Per-user notification preferences.

A default row is created when the user registers. Quiet hours are
timezone-naive: they are compared with the server's wall clock.
"""

from datetime import time

from sqlalchemy import Column, Integer, Boolean, DateTime, ForeignKey, Time
from sqlalchemy.sql import func
from fitsocial.app.db.session import Base


class NotificationPreference(Base):
    __tablename__ = "notification_preferences"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)

    # Global toggles
    push_enabled = Column(Boolean, default=True, nullable=False)
    in_app_enabled = Column(Boolean, default=True, nullable=False)

    # Workout reminders
    daily_reminder_enabled = Column(Boolean, default=True, nullable=False)
    daily_reminder_time = Column(Time, default=time(8, 0), nullable=False)
    upcoming_reminder_enabled = Column(Boolean, default=True, nullable=False)
    upcoming_reminder_minutes = Column(Integer, default=60, nullable=False)
    missed_reminder_enabled = Column(Boolean, default=True, nullable=False)
    rest_day_reminder_enabled = Column(Boolean, default=True, nullable=False)

    # Achievements
    workout_completed_enabled = Column(Boolean, default=True, nullable=False)
    weekly_goal_enabled = Column(Boolean, default=True, nullable=False)
    monthly_milestone_enabled = Column(Boolean, default=True, nullable=False)

    # Plan updates
    plan_generated_enabled = Column(Boolean, default=True, nullable=False)

    # Insights & re-engagement
    weekly_report_enabled = Column(Boolean, default=True, nullable=False)
    weekly_report_day = Column(Integer, default=0, nullable=False)  # 0 = Sunday
    weekly_report_time = Column(Time, default=time(18, 0), nullable=False)
    inactive_alert_enabled = Column(Boolean, default=True, nullable=False)
    inactive_alert_days = Column(Integer, default=3, nullable=False)
    recovery_reminder_enabled = Column(Boolean, default=True, nullable=False)

    # Quiet hours
    quiet_hours_enabled = Column(Boolean, default=False, nullable=False)
    quiet_hours_start = Column(Time, default=time(22, 0), nullable=False)
    quiet_hours_end = Column(Time, default=time(7, 0), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
