"""Process-wide throttle configuration. Single row (id=1); absent row means settings defaults."""
from sqlalchemy import Boolean, Column, DateTime, Integer
from sqlalchemy.sql import func

from portal.db.base import Base

THROTTLE_SETTINGS_ID = 1


class ThrottleSettings(Base):
    __tablename__ = "throttle_settings"

    id = Column(Integer, primary_key=True, default=THROTTLE_SETTINGS_ID)
    enabled = Column(Boolean, nullable=False, default=True)
    max_notifications_per_day = Column(Integer, nullable=False, default=3)
    cooldown_hours_between_campaigns = Column(Integer, nullable=False, default=24)
    priority_override_threshold = Column(Integer, nullable=False, default=8)
    respect_user_preferences = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
