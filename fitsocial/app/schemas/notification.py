"""
Notification, push token and preference schemas.

Request bodies accept the mobile client's camelCase keys (``pushToken``,
``deviceInfo``); rows are returned with their column names.
"""

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from datetime import datetime, time
from typing import Optional, Dict, Any, List

from fitsocial.app.models.enums import DevicePlatform, NotificationCategory, NotificationKind
from fitsocial.app.services.push_provider import PushTicket


class ActorSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    full_name: Optional[str] = None
    profile_photo_url: Optional[str] = None


class PostSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    workout_name: Optional[str] = None
    image_urls: List[str] = []


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    actor_id: Optional[int] = None
    type: NotificationKind
    notification_category: NotificationCategory
    post_id: Optional[int] = None
    comment_id: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("payload", "metadata"))
    is_read: bool
    read_at: Optional[datetime] = None
    push_sent: bool
    push_sent_at: Optional[datetime] = None
    created_at: datetime
    actor: Optional[ActorSummary] = None
    post: Optional[PostSummary] = None


class NotificationPage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    notifications: List[NotificationResponse]
    next_cursor: Optional[str] = Field(default=None, alias="nextCursor")


class UnreadCountResponse(BaseModel):
    count: int


class MarkAllReadResponse(BaseModel):
    updated: int


# --- Push tokens ---

class DeviceInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    platform: Optional[DevicePlatform] = None
    device_name: Optional[str] = Field(default=None, max_length=255, alias="deviceName")
    device_id: Optional[str] = Field(default=None, max_length=255, alias="deviceId")


class RegisterPushTokenRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    push_token: str = Field(..., min_length=1, max_length=255, alias="pushToken")
    device_info: Optional[DeviceInfo] = Field(default=None, alias="deviceInfo")


class UnregisterPushTokenRequest(BaseModel):
    """Without ``pushToken`` every token of the caller is removed."""
    model_config = ConfigDict(populate_by_name=True)

    push_token: Optional[str] = Field(default=None, alias="pushToken")


class PushTokenResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    token: str
    platform: Optional[str] = None
    device_name: Optional[str] = None
    device_id: Optional[str] = None
    is_active: bool
    last_used_at: Optional[datetime] = None


class UnregisterPushTokenResponse(BaseModel):
    removed: int


class PushTestResponse(BaseModel):
    tickets: List[PushTicket]


# --- Preferences ---

class PreferencesResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    push_enabled: bool
    in_app_enabled: bool
    daily_reminder_enabled: bool
    daily_reminder_time: time
    upcoming_reminder_enabled: bool
    upcoming_reminder_minutes: int
    missed_reminder_enabled: bool
    rest_day_reminder_enabled: bool
    workout_completed_enabled: bool
    weekly_goal_enabled: bool
    monthly_milestone_enabled: bool
    plan_generated_enabled: bool
    weekly_report_enabled: bool
    weekly_report_day: int
    weekly_report_time: time
    inactive_alert_enabled: bool
    inactive_alert_days: int
    recovery_reminder_enabled: bool
    quiet_hours_enabled: bool
    quiet_hours_start: time
    quiet_hours_end: time
    updated_at: Optional[datetime] = None


class PreferencesUpdate(BaseModel):
    """Partial update: only the fields sent are changed."""
    push_enabled: Optional[bool] = None
    in_app_enabled: Optional[bool] = None
    daily_reminder_enabled: Optional[bool] = None
    daily_reminder_time: Optional[time] = None
    upcoming_reminder_enabled: Optional[bool] = None
    upcoming_reminder_minutes: Optional[int] = Field(default=None, ge=5, le=24 * 60)
    missed_reminder_enabled: Optional[bool] = None
    rest_day_reminder_enabled: Optional[bool] = None
    workout_completed_enabled: Optional[bool] = None
    weekly_goal_enabled: Optional[bool] = None
    monthly_milestone_enabled: Optional[bool] = None
    plan_generated_enabled: Optional[bool] = None
    weekly_report_enabled: Optional[bool] = None
    weekly_report_day: Optional[int] = Field(default=None, ge=0, le=6)
    weekly_report_time: Optional[time] = None
    inactive_alert_enabled: Optional[bool] = None
    inactive_alert_days: Optional[int] = Field(default=None, ge=1, le=30)
    recovery_reminder_enabled: Optional[bool] = None
    quiet_hours_enabled: Optional[bool] = None
    quiet_hours_start: Optional[time] = None
    quiet_hours_end: Optional[time] = None
