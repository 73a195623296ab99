"""
User database model.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.sql import func
from fitsocial.app.db.session import Base


class User(Base):
    """
    Account, public profile and denormalized social counters.

    ``unread_notifications_count`` is the badge counter. It is only changed
    in the same transaction as the notification rows it counts (see
    services/notification_service.py).
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    username = Column(String(100), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=True)
    profile_photo_url = Column(String(1024), nullable=True)
    hashed_password = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Denormalized counters
    unread_notifications_count = Column(Integer, default=0, server_default="0", nullable=False)
    followers_count = Column(Integer, default=0, server_default="0", nullable=False)
    following_count = Column(Integer, default=0, server_default="0", nullable=False)
    posts_count = Column(Integer, default=0, server_default="0", nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}', email='{self.email}')>"
