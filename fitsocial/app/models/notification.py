"""
Notification database model.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, JSON, Enum, Index
from sqlalchemy.orm import relationship
from fitsocial.app.db.session import Base
from fitsocial.app.models.enums import NotificationKind, NotificationCategory


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Notification(Base):
    """
    In-app notification for one recipient.

    Rows are only mutated to flip the read / push-sent flags; reversing the
    triggering action (unlike, unfollow) deletes them.
    """
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_category_created", "user_id", "notification_category", "created_at"),
        Index("ix_notifications_user_unread", "user_id", "is_read"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Recipient and (optional) actor
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    actor_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)

    type = Column(
        Enum(NotificationKind, values_callable=lambda kinds: [k.value for k in kinds], native_enum=False, length=40),
        nullable=False,
        index=True,
    )
    notification_category = Column(
        Enum(NotificationCategory, values_callable=lambda cats: [c.value for c in cats], native_enum=False, length=20),
        default=NotificationCategory.SOCIAL,
        nullable=False,
    )

    # Subject of the action
    post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=True, index=True)
    comment_id = Column(Integer, ForeignKey("post_comments.id", ondelete="CASCADE"), nullable=True)
    payload = Column("metadata", JSON, nullable=False, default=dict)  # 'metadata' is reserved on declarative classes

    # State
    is_read = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    push_sent = Column(Boolean, default=False, nullable=False)
    push_sent_at = Column(DateTime(timezone=True), nullable=True)

    # Python-side default keeps microseconds for created_at cursors on every backend
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)

    actor = relationship("User", foreign_keys=[actor_id], lazy="raise")
    post = relationship("Post", foreign_keys=[post_id], lazy="raise")

    def __repr__(self):
        return f"<Notification(id={self.id}, user={self.user_id}, type='{self.type}')>"
