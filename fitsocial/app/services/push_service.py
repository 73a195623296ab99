"""
Push dispatch: per-user fan-out to devices, token registry and preferences.

Delivery is at-most-once. A send that fails at the provider is logged and
reported as an empty ticket list; it is never retried.
"""

import logging
from datetime import datetime, time, timezone
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from fitsocial.app.core.exceptions import InvalidPushTokenError, ResourceNotFoundError
from fitsocial.app.core.reliability import CircuitOpenError
from fitsocial.app.models.notification_preference import NotificationPreference
from fitsocial.app.models.push_token import PushToken
from fitsocial.app.services.push_provider import (
    PushMessage,
    PushProvider,
    PushProviderError,
    PushTicket,
    is_expo_push_token,
)

logger = logging.getLogger(__name__)


class PushPayload(BaseModel):
    title: str
    body: str
    data: Dict[str, Any] = Field(default_factory=dict)
    channel_id: str = "default"


# --- Quiet hours ---

def is_quiet_time(start: time, end: time, now: time) -> bool:
    """
    Whether ``now`` falls inside the [start, end) window, compared as HH:MM.

    A window whose start is later than its end spans midnight. A window with
    equal bounds covers the whole day.
    """
    s = (start.hour, start.minute)
    e = (end.hour, end.minute)
    n = (now.hour, now.minute)
    if s < e:
        return s <= n < e
    return n >= s or n < e


def in_quiet_hours(prefs: Optional[NotificationPreference], now: time) -> bool:
    if prefs is None or not prefs.quiet_hours_enabled:
        return False
    return is_quiet_time(prefs.quiet_hours_start, prefs.quiet_hours_end, now)


# --- Dispatch ---

class PushDispatcher:
    """
    Sends one payload to every active device of a user.

    Token state is reconciled from the provider tickets in the caller's
    session; the caller commits.
    """

    def __init__(self, provider: PushProvider, clock: Callable[[], datetime] = datetime.now):
        self.provider = provider
        # Local wall clock; quiet hours are timezone-naive
        self.clock = clock

    async def send(self, db: AsyncSession, user_id: int, payload: PushPayload) -> List[PushTicket]:
        prefs = await get_preferences_row(db, user_id)
        if prefs is not None and not prefs.push_enabled:
            logger.info("Push disabled for user %s, skipping", user_id)
            return []

        if in_quiet_hours(prefs, self.clock().time()):
            logger.info("User %s is in quiet hours, skipping push", user_id)
            return []

        result = await db.execute(
            select(PushToken).where(PushToken.user_id == user_id, PushToken.is_active.is_(True))
        )
        tokens = result.scalars().all()
        if not tokens:
            logger.debug("No active push tokens for user %s", user_id)
            return []

        messages: List[PushMessage] = []
        token_ids: List[int] = []
        malformed: List[int] = []
        for row in tokens:
            if not is_expo_push_token(row.token):
                malformed.append(row.id)
                continue
            messages.append(
                PushMessage(
                    to=row.token,
                    title=payload.title,
                    body=payload.body,
                    data=payload.data,
                    channel_id=payload.channel_id,
                )
            )
            token_ids.append(row.id)

        if malformed:
            logger.warning("Deactivating %d malformed push token(s) for user %s", len(malformed), user_id)
            await _set_active(db, malformed, False)

        if not messages:
            return []

        try:
            tickets = await self.provider.send(messages)
        except (PushProviderError, CircuitOpenError) as e:
            logger.warning(
                "Push delivery failed for user %s: %s", user_id, e,
                extra={"user_id": user_id, "devices": len(messages)},
            )
            return []

        delivered: List[int] = []
        unregistered: List[int] = []
        for token_id, ticket in zip(token_ids, tickets):
            if ticket.is_ok:
                delivered.append(token_id)
            elif ticket.is_device_unregistered:
                unregistered.append(token_id)
            else:
                logger.warning(
                    "Push ticket error for token %s: %s (%s)", token_id, ticket.message, ticket.error
                )

        if delivered:
            await db.execute(
                update(PushToken)
                .where(PushToken.id.in_(delivered))
                .values(last_used_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
        if unregistered:
            logger.info("Deactivating %d unregistered device token(s) for user %s", len(unregistered), user_id)
            await _set_active(db, unregistered, False)

        logger.info(
            "Push sent to user %s: %d/%d device(s) accepted", user_id, len(delivered), len(tickets),
            extra={"user_id": user_id},
        )
        return tickets


async def _set_active(db: AsyncSession, token_ids: List[int], active: bool) -> None:
    await db.execute(
        update(PushToken)
        .where(PushToken.id.in_(token_ids))
        .values(is_active=active)
        .execution_options(synchronize_session=False)
    )


# --- Token registry ---

class PushTokenRegistry:

    @staticmethod
    async def register(
        db: AsyncSession,
        user_id: int,
        token: str,
        device_info: Optional[Dict[str, Optional[str]]] = None,
    ) -> PushToken:
        """
        Attach a device token to ``user_id``.

        The same token registered under any other account is removed first so a
        shared device never receives another account's notifications.
        Raises InvalidPushTokenError for a malformed token.
        """
        if not is_expo_push_token(token):
            raise InvalidPushTokenError(token)
        device_info = device_info or {}

        moved = await db.execute(
            delete(PushToken)
            .where(PushToken.token == token, PushToken.user_id != user_id)
            .execution_options(synchronize_session=False)
        )
        if moved.rowcount:
            logger.info("Removed push token from %d other account(s)", moved.rowcount)

        result = await db.execute(
            select(PushToken).where(PushToken.user_id == user_id, PushToken.token == token)
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = PushToken(user_id=user_id, token=token, is_active=True)
            db.add(row)
        else:
            row.is_active = True
            row.updated_at = datetime.now(timezone.utc)

        row.platform = device_info.get("platform")
        row.device_name = device_info.get("device_name")
        row.device_id = device_info.get("device_id")

        await db.flush()
        return row

    @staticmethod
    async def unregister(db: AsyncSession, user_id: int, token: Optional[str] = None) -> int:
        """
        With ``token``: deactivate that device (404 when the user has no such token).
        Without: hard-delete every token of the user.

        Returns:
            Number of affected rows
        """
        if token:
            result = await db.execute(
                update(PushToken)
                .where(PushToken.user_id == user_id, PushToken.token == token)
                .values(is_active=False)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise ResourceNotFoundError("Push token", token)
            return result.rowcount

        result = await db.execute(
            delete(PushToken)
            .where(PushToken.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        logger.info("Removed %d push token(s) for user %s", result.rowcount, user_id)
        return result.rowcount


# --- Preferences ---

_PREFERENCE_FIELDS = frozenset(
    c.key for c in NotificationPreference.__table__.columns
    if c.key not in {"id", "user_id", "created_at", "updated_at"}
)


async def get_preferences_row(db: AsyncSession, user_id: int) -> Optional[NotificationPreference]:
    result = await db.execute(
        select(NotificationPreference).where(NotificationPreference.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def get_preferences(db: AsyncSession, user_id: int) -> NotificationPreference:
    prefs = await get_preferences_row(db, user_id)
    if prefs is None:
        raise ResourceNotFoundError("Notification preferences", user_id)
    return prefs


async def update_preferences(db: AsyncSession, user_id: int, changes: Dict[str, Any]) -> NotificationPreference:
    """Partial update; unknown keys are ignored and a missing row is created."""
    prefs = await get_preferences_row(db, user_id)
    if prefs is None:
        prefs = NotificationPreference(user_id=user_id)
        db.add(prefs)

    for key, value in changes.items():
        if key in _PREFERENCE_FIELDS:
            setattr(prefs, key, value)
    prefs.updated_at = datetime.now(timezone.utc)

    await db.flush()
    return prefs
