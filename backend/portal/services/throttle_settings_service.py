"""
Throttle settings: single persisted row, read fresh for every gate evaluation.

An admin update is visible to the next ThrottleGate.can_send call and never
changes decisions that were already made.
"""
import logging
from dataclasses import asdict, dataclass

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from portal.config import settings
from portal.models.throttle_settings import THROTTLE_SETTINGS_ID, ThrottleSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ThrottleConfig:
    """Immutable snapshot passed into the throttle gate."""
    enabled: bool
    max_notifications_per_day: int
    cooldown_hours_between_campaigns: int
    priority_override_threshold: int
    respect_user_preferences: bool

    def to_dict(self) -> dict:
        return asdict(self)


class ThrottleSettingsUpdate(BaseModel):
    enabled: bool | None = None
    max_notifications_per_day: int | None = Field(None, ge=1, le=20)
    cooldown_hours_between_campaigns: int | None = Field(None, ge=1, le=168)
    priority_override_threshold: int | None = Field(None, ge=1, le=10)
    respect_user_preferences: bool | None = None


def default_throttle_config() -> ThrottleConfig:
    return ThrottleConfig(
        enabled=settings.throttle_enabled,
        max_notifications_per_day=settings.throttle_max_per_day,
        cooldown_hours_between_campaigns=settings.throttle_cooldown_hours,
        priority_override_threshold=settings.throttle_priority_override,
        respect_user_preferences=settings.throttle_respect_user_preferences,
    )


def _from_row(row: ThrottleSettings) -> ThrottleConfig:
    return ThrottleConfig(
        enabled=row.enabled,
        max_notifications_per_day=row.max_notifications_per_day,
        cooldown_hours_between_campaigns=row.cooldown_hours_between_campaigns,
        priority_override_threshold=row.priority_override_threshold,
        respect_user_preferences=row.respect_user_preferences,
    )


def load_throttle_config(db: Session) -> ThrottleConfig:
    row = db.get(ThrottleSettings, THROTTLE_SETTINGS_ID)
    if row is None:
        return default_throttle_config()
    return _from_row(row)


def update_throttle_settings(db: Session, update: ThrottleSettingsUpdate) -> ThrottleConfig:
    """Partial update; creates the row from defaults on first save."""
    row = db.get(ThrottleSettings, THROTTLE_SETTINGS_ID)
    if row is None:
        row = ThrottleSettings(id=THROTTLE_SETTINGS_ID, **default_throttle_config().to_dict())
        db.add(row)
    for key, value in update.model_dump(exclude_none=True).items():
        setattr(row, key, value)
    db.commit()
    db.refresh(row)
    config = _from_row(row)
    logger.info("Throttle settings updated: %s", config.to_dict())
    return config
