"""
Throttle gate: decides whether a user may receive another notification now.

Order of checks:
  1. throttling disabled -> allow
  2. sends since local midnight >= max_notifications_per_day -> deny "daily limit"
  3. now < last send (any category, any day) + cooldown -> deny "cooldown"
  4. allow
A trigger priority >= priority_override_threshold turns 2 and 3 into an allow with
overridden=True. Every call reads user_notification_history fresh; nothing is cached
across users or calls.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from portal.core.constants import REASON_COOLDOWN, REASON_DAILY_LIMIT
from portal.core.timeutil import ensure_utc, local_midnight, next_local_midnight, utcnow
from portal.models.app_user import AppUser
from portal.models.user_notification_history import UserNotificationHistory
from portal.services.throttle_settings_service import ThrottleConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ThrottleDecision:
    allowed: bool
    reason: str | None = None
    next_available_at: datetime | None = None
    overridden: bool = False  # allowed only because of priority

    def to_dict(self) -> dict:
        return {
            "can_send": self.allowed,
            "reason": self.reason,
            "next_available_at": self.next_available_at.isoformat() if self.next_available_at else None,
            "overridden": self.overridden,
        }


class ThrottleGate:
    def __init__(self, config: ThrottleConfig, *, tz_name: str | None = None):
        self.config = config
        self.tz_name = tz_name

    def lock_user(self, db: Session, user_id: str) -> None:
        """
        Row-lock the user until the caller commits, so overlapping runs serialize their
        read-history / send / write-history sequence per user. No-op on SQLite.
        """
        db.query(AppUser.id).filter(AppUser.id == user_id).with_for_update().first()

    def can_send(
        self,
        db: Session,
        user_id: str,
        priority: int,
        *,
        now: datetime | None = None,
        config: ThrottleConfig | None = None,
    ) -> ThrottleDecision:
        cfg = config or self.config
        now = ensure_utc(now) if now else utcnow()
        if not cfg.enabled:
            return ThrottleDecision(allowed=True)

        can_override = priority >= cfg.priority_override_threshold
        day_start = local_midnight(now, self.tz_name)
        daily_count = (
            db.query(func.count(UserNotificationHistory.id))
            .filter(UserNotificationHistory.user_id == user_id, UserNotificationHistory.sent_at >= day_start)
            .scalar()
        ) or 0
        if daily_count >= cfg.max_notifications_per_day:
            if can_override:
                logger.info(
                    "Priority %s overriding daily limit (%s/%s) for user %s",
                    priority, daily_count, cfg.max_notifications_per_day, user_id,
                )
                return ThrottleDecision(allowed=True, reason=REASON_DAILY_LIMIT, overridden=True)
            return ThrottleDecision(
                allowed=False,
                reason=REASON_DAILY_LIMIT,
                next_available_at=next_local_midnight(now, self.tz_name),
            )

        last_sent_at = (
            db.query(func.max(UserNotificationHistory.sent_at))
            .filter(UserNotificationHistory.user_id == user_id)
            .scalar()
        )
        if last_sent_at is not None:
            cooldown_end = ensure_utc(last_sent_at) + timedelta(hours=cfg.cooldown_hours_between_campaigns)
            if now < cooldown_end:
                if can_override:
                    logger.info("Priority %s overriding cooldown for user %s", priority, user_id)
                    return ThrottleDecision(allowed=True, reason=REASON_COOLDOWN, overridden=True)
                return ThrottleDecision(allowed=False, reason=REASON_COOLDOWN, next_available_at=cooldown_end)

        return ThrottleDecision(allowed=True)
