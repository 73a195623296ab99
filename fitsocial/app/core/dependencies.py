"""
Request dependencies: authentication and service wiring.

Services are built per request from objects created at startup (session
factory, push provider on ``app.state``), so tests swap any of them with
``app.dependency_overrides``.
"""

from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fitsocial.app.core.exceptions import TokenRevokedError
from fitsocial.app.core.jwt import decode_access_token
from fitsocial.app.core.token_revocation import is_token_revoked
from fitsocial.app.db.session import get_db, get_session_factory
from fitsocial.app.models.user import User
from fitsocial.app.services.notification_service import NotificationService
from fitsocial.app.services.push_provider import PushProvider
from fitsocial.app.services.push_service import PushDispatcher

# Missing credentials are reported by get_current_user as 401
security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> dict:
    """
    Authenticate the bearer token.

    Checks, in order: signature and expiry, revocation (logout), and that the
    user still exists and is active.

    Returns:
        Decoded token payload (``user_id``, ``username``, ``jti``, ``exp``)

    Raises:
        HTTPException: 401 on a missing/invalid token or unknown user, 403 if inactive
        TokenRevokedError: 401 when the token was logged out
    """
    if credentials is None:
        raise _unauthorized("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise _unauthorized("Could not validate credentials")

    user_id = payload.get("user_id")
    if not user_id:
        raise _unauthorized("Invalid token payload")

    if await is_token_revoked(payload):
        raise TokenRevokedError()

    result = await db.execute(select(User.is_active).where(User.id == user_id))
    is_active = result.scalar_one_or_none()
    if is_active is None:
        raise _unauthorized("User not found")
    if not is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is inactive")

    return payload


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[dict]:
    """Token payload when a valid bearer token is present, otherwise None. Never fails."""
    if credentials is None:
        return None
    payload = decode_access_token(credentials.credentials)
    if payload is None or not payload.get("user_id"):
        return None
    if await is_token_revoked(payload):
        return None
    return payload


def get_push_provider(request: Request) -> PushProvider:
    return request.app.state.push_provider


def get_push_dispatcher(provider: PushProvider = Depends(get_push_provider)) -> PushDispatcher:
    return PushDispatcher(provider)


def get_notification_service(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    dispatcher: PushDispatcher = Depends(get_push_dispatcher),
) -> NotificationService:
    return NotificationService(session_factory, dispatcher)
