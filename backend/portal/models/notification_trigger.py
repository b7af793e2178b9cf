"""Admin-configured rule: behavioral condition -> notification template.

condition_config is validated against its typed variant (portal.services.triggers.conditions)
when written through the admin API. priority 1-10; higher runs first and may bypass throttling.
"""
import uuid

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, true
from sqlalchemy.sql import func

from portal.db.base import Base, JSONType


class NotificationTrigger(Base):
    __tablename__ = "notification_triggers"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    trigger_type = Column(String(32), nullable=False, index=True)
    condition_config = Column(JSONType, nullable=False)
    template_id = Column(String(36), nullable=True)
    title = Column(String(100), nullable=False)  # may contain {{firstName}} etc.
    body = Column(String(500), nullable=False)
    target_audience = Column(JSONType, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())
    priority = Column(Integer, nullable=False, default=5, server_default="5")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    created_by = Column(String(36), nullable=True)
