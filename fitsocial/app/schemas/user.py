"""
Public profile schemas.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class UserProfileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    username: str
    full_name: Optional[str] = None
    profile_photo_url: Optional[str] = None
    followers_count: int
    following_count: int
    posts_count: int
    is_following: Optional[bool] = Field(default=None, alias="isFollowing")


class FollowResponse(BaseModel):
    following: bool
    followers_count: int
