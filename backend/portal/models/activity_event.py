"""Analytics event written by the app (App_Opened, Video_Progress, Practice_Session_Added, ...).

Append-only. user_id is NULL for anonymous events. event_data holds event properties
(watch_percentage, video_id, duration, ...); shape depends on event_name.
"""
import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, String
from sqlalchemy.sql import func

from portal.db.base import Base, JSONType


class ActivityEvent(Base):
    __tablename__ = "analytics_events"
    __table_args__ = (
        Index("ix_analytics_events_user_timestamp", "user_id", "timestamp"),
        Index("ix_analytics_events_name_timestamp", "event_name", "timestamp"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("app_users.id"), nullable=True)
    event_name = Column(String(64), nullable=False)
    event_data = Column(JSONType, nullable=True)
    device_info = Column(JSONType, nullable=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    @property
    def properties(self) -> dict:
        return self.event_data if isinstance(self.event_data, dict) else {}
