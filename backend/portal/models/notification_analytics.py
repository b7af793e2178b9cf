"""Per-notification delivery/engagement events (sent, delivered, opened, clicked, failed) with device counts."""
import uuid

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.sql import func

from portal.db.base import Base, JSONType


class NotificationAnalyticsEvent(Base):
    __tablename__ = "notification_analytics"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    notification_id = Column(String(36), nullable=False, index=True)
    event_type = Column(String(16), nullable=False)
    device_count = Column(Integer, nullable=False, default=1)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    payload = Column("metadata", JSONType, nullable=True)  # column name 'metadata' in DB
