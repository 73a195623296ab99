"""
Authentication API endpoints.

Register, login, logout and current-user info for the mobile client.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_

from fitsocial.app.db.session import get_db
from fitsocial.app.models.user import User
from fitsocial.app.models.notification_preference import NotificationPreference
from fitsocial.app.schemas.auth import UserRegister, UserLogin, LogoutRequest, TokenResponse, UserResponse
from fitsocial.app.schemas.common import ApiResponse
from fitsocial.app.core.exceptions import AuthenticationError, ConflictError, InsufficientPermissionsError, ResourceNotFoundError
from fitsocial.app.core.security import get_password_hash, verify_password
from fitsocial.app.core.jwt import create_access_token
from fitsocial.app.core.dependencies import get_current_user
from fitsocial.app.core.token_revocation import revoke_token
from fitsocial.app.services.push_service import PushTokenRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


def _token_response(user: User) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(user.id, user.username),
        user=UserResponse.model_validate(user),
    )


@router.post("/register", response_model=ApiResponse[TokenResponse], status_code=status.HTTP_201_CREATED)
async def register(
    user_data: UserRegister,
    db: AsyncSession = Depends(get_db)
):
    """
    Register a new user.

    Also creates the user's default notification preferences.
    """
    result = await db.execute(
        select(User).where(
            or_(User.username == user_data.username, User.email == user_data.email)
        )
    )
    existing_user = result.scalars().first()
    if existing_user:
        if existing_user.username == user_data.username:
            raise ConflictError("Username already registered")
        raise ConflictError("Email already registered")

    new_user = User(
        email=user_data.email,
        username=user_data.username,
        full_name=user_data.full_name,
        hashed_password=get_password_hash(user_data.password),
        is_active=True,
    )
    db.add(new_user)
    await db.flush()
    db.add(NotificationPreference(user_id=new_user.id))
    await db.commit()
    await db.refresh(new_user)

    logger.info("Registered user %s", new_user.id, extra={"user_id": new_user.id})
    return ApiResponse.ok(_token_response(new_user), "Account created")


@router.post("/login", response_model=ApiResponse[TokenResponse])
async def login(
    credentials: UserLogin,
    db: AsyncSession = Depends(get_db)
):
    """
    Login with username or email and return a JWT.
    """
    result = await db.execute(
        select(User).where(
            or_(User.username == credentials.username, User.email == credentials.username)
        )
    )
    user = result.scalar_one_or_none()

    if not user or not verify_password(credentials.password, user.hashed_password):
        logger.warning("Failed login for %s", credentials.username)
        raise AuthenticationError("Invalid credentials")

    if not user.is_active:
        raise InsufficientPermissionsError("Inactive user account")

    return ApiResponse.ok(_token_response(user))


@router.get("/me", response_model=ApiResponse[UserResponse])
async def get_current_user_info(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Current authenticated user, including the unread notification badge."""
    user = await db.get(User, current_user["user_id"])
    if not user:
        raise ResourceNotFoundError("User", current_user["user_id"])
    return ApiResponse.ok(UserResponse.model_validate(user))


@router.post("/logout", response_model=ApiResponse[None])
async def logout(
    body: Optional[LogoutRequest] = None,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Revoke the bearer token. When ``pushToken`` is sent, that device stops
    receiving pushes for this account.
    """
    if body and body.push_token:
        try:
            await PushTokenRegistry.unregister(db, current_user["user_id"], body.push_token)
            await db.commit()
        except ResourceNotFoundError:
            logger.info("Logout: push token not registered for user %s", current_user["user_id"])

    await revoke_token(current_user)
    return ApiResponse.ok(message="Logged out")
