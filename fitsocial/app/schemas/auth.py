"""
Authentication Pydantic schemas.

Defines request and response schemas for authentication endpoints.
"""

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from datetime import datetime
from typing import Optional


class UserRegister(BaseModel):
    """
    Schema for user registration.

    Used by POST /auth/register endpoint.
    """
    model_config = ConfigDict(populate_by_name=True)

    email: EmailStr = Field(..., description="User email address")
    username: str = Field(..., min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_.]+$", description="Unique username")
    password: str = Field(..., min_length=6, description="Password (min 6 characters)")
    full_name: Optional[str] = Field(default=None, max_length=255, alias="fullName")


class UserLogin(BaseModel):
    """
    Schema for user login.

    Supports login with either username or email.
    """
    username: str = Field(..., description="Username or email")
    password: str = Field(..., description="Password")


class LogoutRequest(BaseModel):
    """Optional device token to detach from the account on logout."""
    model_config = ConfigDict(populate_by_name=True)

    push_token: Optional[str] = Field(default=None, alias="pushToken")


class UserResponse(BaseModel):
    """
    Own account details.

    Used by GET /auth/me and embedded in TokenResponse.
    """
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    username: str
    full_name: Optional[str] = None
    profile_photo_url: Optional[str] = None
    is_active: bool
    unread_notifications_count: int = 0
    followers_count: int = 0
    following_count: int = 0
    posts_count: int = 0
    created_at: datetime


class TokenResponse(BaseModel):
    """
    Schema for JWT token response.

    Returned by successful login/register operations.
    """
    access_token: str = Field(..., description="JWT access token")
    token_type: str = Field(default="bearer", description="Token type")
    user: UserResponse
