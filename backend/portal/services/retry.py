"""
Backoff after failed sends. There is no retry queue: a failed (trigger, user) is simply
re-evaluated on later runs, and this check keeps those runs from hammering a broken
address. With n consecutive failures since the last success, the next attempt waits
min(base * 2^(n-1), max) after the latest failure.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from portal.config import settings
from portal.core.timeutil import ensure_utc
from portal.models.trigger_execution import TriggerExecution

# Only the most recent attempts matter for the streak
_STREAK_SCAN_LIMIT = 16


@dataclass(frozen=True)
class BackoffPolicy:
    base: timedelta
    maximum: timedelta

    @classmethod
    def from_settings(cls) -> "BackoffPolicy":
        return cls(
            base=timedelta(minutes=settings.retry_backoff_base_minutes),
            maximum=timedelta(hours=settings.retry_backoff_max_hours),
        )

    def delay(self, streak: int) -> timedelta:
        if streak <= 0:
            return timedelta(0)
        return min(self.base * (2 ** (streak - 1)), self.maximum)


def failure_streak(db: Session, trigger_id: str, user_id: str) -> tuple[int, datetime | None]:
    """(consecutive failures since last success, time of latest failure)."""
    rows = (
        db.query(TriggerExecution.success, TriggerExecution.executed_at)
        .filter(TriggerExecution.trigger_id == trigger_id, TriggerExecution.user_id == user_id)
        .order_by(TriggerExecution.executed_at.desc())
        .limit(_STREAK_SCAN_LIMIT)
        .all()
    )
    streak = 0
    latest_failure = None
    for success, executed_at in rows:
        if success:
            break
        if latest_failure is None:
            latest_failure = ensure_utc(executed_at)
        streak += 1
    return streak, latest_failure


def retry_not_before(
    db: Session,
    trigger_id: str,
    user_id: str,
    policy: BackoffPolicy | None = None,
) -> datetime | None:
    """Earliest time the next attempt is allowed, or None when there is no failure streak."""
    streak, latest_failure = failure_streak(db, trigger_id, user_id)
    if streak == 0 or latest_failure is None:
        return None
    return latest_failure + (policy or BackoffPolicy.from_settings()).delay(streak)
