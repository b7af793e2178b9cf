"""Notifications actually delivered to a user. Append-only; the only input to throttle decisions.

trigger_id is NULL for admin-initiated sends. throttle_key = '{category}_{YYYY-MM-DD}' (engine timezone).
"""
import uuid

from sqlalchemy import Column, DateTime, Index, String
from sqlalchemy.sql import func

from portal.db.base import Base


class UserNotificationHistory(Base):
    __tablename__ = "user_notification_history"
    __table_args__ = (
        Index("ix_user_notification_history_user_sent", "user_id", "sent_at"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), nullable=False)
    notification_id = Column(String(36), nullable=False)
    trigger_id = Column(String(36), nullable=True)
    category = Column(String(64), nullable=False, default="general")
    sent_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    throttle_key = Column(String(96), nullable=True, index=True)
