"""
Post, like and comment schemas.
"""

from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Optional, List

from fitsocial.app.schemas.notification import ActorSummary


class PostCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    workout_name: str = Field(..., min_length=1, max_length=255, alias="workoutName")
    caption: Optional[str] = Field(default=None, max_length=2000)
    image_urls: List[str] = Field(..., min_length=1, max_length=5, alias="imageUrls")


class PostResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    user_id: int
    workout_name: Optional[str] = None
    caption: Optional[str] = None
    image_urls: List[str] = []
    likes_count: int
    comments_count: int
    created_at: datetime
    user: Optional[ActorSummary] = None
    liked_by_me: Optional[bool] = Field(default=None, alias="likedByMe")


class CommentCreate(BaseModel):
    """``parentCommentId`` makes the comment a reply."""
    model_config = ConfigDict(populate_by_name=True)

    comment_text: str = Field(..., min_length=1, max_length=1000, alias="commentText")
    parent_comment_id: Optional[int] = Field(default=None, alias="parentCommentId")


class CommentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    post_id: int
    user_id: int
    parent_comment_id: Optional[int] = None
    comment_text: str
    replies_count: int
    created_at: datetime
