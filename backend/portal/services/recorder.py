"""
Execution / history recorder: plain inserts for the audit tables.

No business logic and no commits; callers commit together with the unit of work
the row describes.
"""
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from portal.core.timeutil import local_date, utcnow
from portal.models.notification_analytics import NotificationAnalyticsEvent
from portal.models.trigger_execution import TriggerExecution
from portal.models.user_notification_history import UserNotificationHistory


def throttle_key(category: str, at: datetime, tz_name: str | None = None) -> str:
    """'{category}_{YYYY-MM-DD}' in the engine timezone; groups a user's sends per category per day."""
    return f"{category}_{local_date(at, tz_name).isoformat()}"


def record_execution(
    db: Session,
    trigger_id: str,
    user_id: str,
    success: bool,
    notification_id: str | None = None,
    error: str | None = None,
    *,
    condition_values: dict[str, Any] | None = None,
    at: datetime | None = None,
) -> TriggerExecution:
    row = TriggerExecution(
        trigger_id=trigger_id,
        user_id=user_id,
        success=success,
        notification_id=notification_id,
        error_message=error,
        condition_values=condition_values,
        executed_at=at or utcnow(),
    )
    db.add(row)
    db.flush()
    return row


def record_history(
    db: Session,
    user_id: str,
    notification_id: str,
    trigger_id: str | None,
    category: str,
    throttle_key_value: str | None = None,
    *,
    at: datetime | None = None,
) -> UserNotificationHistory:
    sent_at = at or utcnow()
    row = UserNotificationHistory(
        user_id=user_id,
        notification_id=notification_id,
        trigger_id=trigger_id,
        category=category,
        sent_at=sent_at,
        throttle_key=throttle_key_value or throttle_key(category, sent_at),
    )
    db.add(row)
    db.flush()
    return row


def record_notification_event(
    db: Session,
    notification_id: str,
    event_type: str,
    device_count: int,
    *,
    metadata: dict[str, Any] | None = None,
    at: datetime | None = None,
) -> NotificationAnalyticsEvent:
    row = NotificationAnalyticsEvent(
        notification_id=notification_id,
        event_type=event_type,
        device_count=device_count,
        payload=metadata,
        timestamp=at or utcnow(),
    )
    db.add(row)
    db.flush()
    return row
