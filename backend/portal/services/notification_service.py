"""
Scheduled notifications and per-user history: admin create/list/cancel, history lookup.
Delivery itself lives in the dispatcher/runner.
"""
import logging
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from portal.core.constants import STATUS_CANCELLED, STATUS_PENDING
from portal.core.errors import NotFoundError
from portal.core.timeutil import ensure_utc, utcnow
from portal.models.scheduled_notification import ScheduledNotification
from portal.models.user_notification_history import UserNotificationHistory
from portal.services.audience import parse_audience

logger = logging.getLogger(__name__)


class ScheduledNotificationInput(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    body: str = Field(..., min_length=1, max_length=500)
    scheduled_for: datetime | None = None  # default: now
    target_audience: dict[str, Any] = Field(default_factory=lambda: {"type": "all"})
    data: dict[str, Any] | None = None

    @field_validator("target_audience")
    @classmethod
    def valid_audience(cls, v: dict[str, Any]) -> dict[str, Any]:
        if parse_audience(v) is None:
            raise ValueError("target_audience must be all, admins, segment{filter} or users{userIds}")
        return v


def notification_to_dict(n: ScheduledNotification) -> dict[str, Any]:
    return {
        "id": n.id,
        "title": n.title,
        "body": n.body,
        "status": n.status,
        "scheduled_for": n.scheduled_for.isoformat() if n.scheduled_for else None,
        "sent_at": n.sent_at.isoformat() if n.sent_at else None,
        "target_audience": n.target_audience,
        "data": n.data,
        "error_message": n.error_message,
        "recipients_total": n.recipients_total,
        "recipients_delivered": n.recipients_delivered,
        "recipients_failed": n.recipients_failed,
        "delivery_report": n.delivery_report,
        "created_at": n.created_at.isoformat() if n.created_at else None,
    }


def create_notification(
    db: Session,
    body: ScheduledNotificationInput,
    created_by: str | None = None,
    now: datetime | None = None,
) -> ScheduledNotification:
    scheduled_for = ensure_utc(body.scheduled_for) if body.scheduled_for else (now or utcnow())
    row = ScheduledNotification(
        title=body.title,
        body=body.body,
        scheduled_for=scheduled_for,
        status=STATUS_PENDING,
        target_audience=body.target_audience,
        data=body.data,
        created_by=created_by,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("Scheduled notification %s for %s", row.id, scheduled_for.isoformat())
    return row


def list_notifications(db: Session, status: str | None = None, limit: int = 100) -> list[ScheduledNotification]:
    q = db.query(ScheduledNotification)
    if status:
        q = q.filter(ScheduledNotification.status == status)
    return q.order_by(ScheduledNotification.scheduled_for.desc()).limit(limit).all()


def get_notification(db: Session, notification_id: str) -> ScheduledNotification:
    row = db.get(ScheduledNotification, notification_id)
    if row is None:
        raise NotFoundError(f"Notification {notification_id} not found")
    return row


def cancel_notification(db: Session, notification_id: str) -> ScheduledNotification:
    """pending -> cancelled. Raises NotificationStateError when already terminal."""
    row = get_notification(db, notification_id)
    row.transition(STATUS_CANCELLED, at=utcnow())
    db.commit()
    db.refresh(row)
    return row


def user_history(
    db: Session, user_id: str, days: int = 30, now: datetime | None = None
) -> list[UserNotificationHistory]:
    since = (now or utcnow()) - timedelta(days=days)
    return (
        db.query(UserNotificationHistory)
        .filter(UserNotificationHistory.user_id == user_id, UserNotificationHistory.sent_at >= since)
        .order_by(UserNotificationHistory.sent_at.desc())
        .all()
    )


def history_to_dict(h: UserNotificationHistory) -> dict[str, Any]:
    return {
        "id": h.id,
        "user_id": h.user_id,
        "notification_id": h.notification_id,
        "trigger_id": h.trigger_id,
        "category": h.category,
        "sent_at": h.sent_at.isoformat() if h.sent_at else None,
        "throttle_key": h.throttle_key,
    }
