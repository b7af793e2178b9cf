"""
Trigger performance and health, read from the engine's audit tables.

Performance for one trigger over N days: executions, successes, failures, and device
counts from notification_analytics for the notifications those executions produced
(delivered = sent/delivered devices; open/click rates are percent of delivered, rounded).
"""
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from portal.core.constants import (
    ANALYTICS_CLICKED,
    ANALYTICS_DELIVERED,
    ANALYTICS_OPENED,
    ANALYTICS_SENT,
)
from portal.core.timeutil import utcnow
from portal.models.notification_analytics import NotificationAnalyticsEvent
from portal.models.notification_trigger import NotificationTrigger
from portal.models.trigger_execution import TriggerExecution


def _rate(part: int, whole: int) -> int:
    return round(part / whole * 100) if whole > 0 else 0


def trigger_performance(
    db: Session, trigger_id: str, days: int = 30, now: datetime | None = None
) -> dict[str, Any]:
    since = (now or utcnow()) - timedelta(days=days)
    executions = (
        db.query(TriggerExecution.success, TriggerExecution.notification_id)
        .filter(TriggerExecution.trigger_id == trigger_id, TriggerExecution.executed_at >= since)
        .all()
    )
    successful = [e for e in executions if e.success]
    notification_ids = [e.notification_id for e in successful if e.notification_id]
    out = {
        "trigger_id": trigger_id,
        "days": days,
        "executions": len(executions),
        "successful_executions": len(successful),
        "failed_executions": len(executions) - len(successful),
        "successful_deliveries": 0,
        "open_rate": 0,
        "click_rate": 0,
    }
    if not notification_ids:
        return out

    device_counts = dict(
        db.query(NotificationAnalyticsEvent.event_type, func.sum(NotificationAnalyticsEvent.device_count))
        .filter(NotificationAnalyticsEvent.notification_id.in_(notification_ids))
        .group_by(NotificationAnalyticsEvent.event_type)
        .all()
    )
    # Providers that report delivery receipts write "delivered"; otherwise accepted ("sent") stands in
    delivered = int(device_counts.get(ANALYTICS_DELIVERED) or device_counts.get(ANALYTICS_SENT) or 0)
    opened = int(device_counts.get(ANALYTICS_OPENED) or 0)
    clicked = int(device_counts.get(ANALYTICS_CLICKED) or 0)
    out.update(
        successful_deliveries=delivered,
        open_rate=_rate(opened, delivered),
        click_rate=_rate(clicked, delivered),
    )
    return out


def trigger_health(db: Session, days: int = 7, now: datetime | None = None) -> list[dict[str, Any]]:
    """Success/failure counts per trigger over the window, for every trigger."""
    since = (now or utcnow()) - timedelta(days=days)
    counts = {
        trigger_id: (int(ok or 0), int(total or 0))
        for trigger_id, ok, total in (
            db.query(
                TriggerExecution.trigger_id,
                func.sum(case((TriggerExecution.success.is_(True), 1), else_=0)),
                func.count(TriggerExecution.id),
            )
            .filter(TriggerExecution.executed_at >= since)
            .group_by(TriggerExecution.trigger_id)
            .all()
        )
    }
    out = []
    for t in db.query(NotificationTrigger).order_by(NotificationTrigger.priority.desc()).all():
        ok, total = counts.get(t.id, (0, 0))
        out.append({
            "trigger_id": t.id,
            "name": t.name,
            "is_active": t.is_active,
            "executions": total,
            "successes": ok,
            "failures": total - ok,
            "success_rate": _rate(ok, total),
        })
    return out
