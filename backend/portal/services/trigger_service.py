"""
Trigger definitions: admin CRUD. condition_config is validated against its typed variant
here, at write time, so the runner only sees well-formed configs (it still re-validates).
"""
import logging
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from portal.core.constants import TRIGGER_TYPES
from portal.core.errors import NotFoundError, TriggerConfigError
from portal.core.timeutil import utcnow
from portal.models.notification_trigger import NotificationTrigger
from portal.models.trigger_execution import TriggerExecution
from portal.services.audience import parse_audience
from portal.services.triggers.conditions import condition_snapshot, parse_condition

logger = logging.getLogger(__name__)


class TriggerInput(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    trigger_type: str
    condition_config: dict[str, Any]
    template_id: str | None = None
    title: str = Field(..., min_length=1, max_length=100)
    body: str = Field(..., min_length=1, max_length=500)
    target_audience: dict[str, Any] = Field(default_factory=lambda: {"type": "all"})
    is_active: bool = True
    priority: int = Field(5, ge=1, le=10)


class TriggerUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    trigger_type: str | None = None
    condition_config: dict[str, Any] | None = None
    template_id: str | None = None
    title: str | None = Field(None, min_length=1, max_length=100)
    body: str | None = Field(None, min_length=1, max_length=500)
    target_audience: dict[str, Any] | None = None
    is_active: bool | None = None
    priority: int | None = Field(None, ge=1, le=10)


def _validated_condition(trigger_type: str, raw: dict[str, Any]) -> dict[str, Any]:
    if trigger_type not in TRIGGER_TYPES:
        raise TriggerConfigError(f"Unknown trigger type: {trigger_type}")
    return condition_snapshot(parse_condition(trigger_type, raw))


def _check_audience(raw: dict[str, Any] | None) -> None:
    if raw is not None and parse_audience(raw) is None:
        raise TriggerConfigError(f"Invalid target_audience: {raw}")


def trigger_to_dict(t: NotificationTrigger) -> dict[str, Any]:
    return {
        "id": t.id,
        "name": t.name,
        "description": t.description,
        "trigger_type": t.trigger_type,
        "condition_config": t.condition_config,
        "template_id": t.template_id,
        "title": t.title,
        "body": t.body,
        "target_audience": t.target_audience,
        "is_active": t.is_active,
        "priority": t.priority,
        "created_at": t.created_at.isoformat() if t.created_at else None,
        "updated_at": t.updated_at.isoformat() if t.updated_at else None,
    }


def list_triggers(db: Session) -> list[NotificationTrigger]:
    return db.query(NotificationTrigger).order_by(NotificationTrigger.created_at.desc()).all()


def get_trigger(db: Session, trigger_id: str) -> NotificationTrigger:
    row = db.get(NotificationTrigger, trigger_id)
    if row is None:
        raise NotFoundError(f"Trigger {trigger_id} not found")
    return row


def create_trigger(db: Session, body: TriggerInput, created_by: str | None = None) -> NotificationTrigger:
    _check_audience(body.target_audience)
    data = body.model_dump()
    data["condition_config"] = _validated_condition(body.trigger_type, body.condition_config)
    row = NotificationTrigger(**data, created_by=created_by)
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("Created trigger %s (%s, priority %s)", row.name, row.trigger_type, row.priority)
    return row


def update_trigger(db: Session, trigger_id: str, body: TriggerUpdate) -> NotificationTrigger:
    row = get_trigger(db, trigger_id)
    changes = body.model_dump(exclude_unset=True)
    if "target_audience" in changes:
        _check_audience(changes["target_audience"])
    if "trigger_type" in changes or "condition_config" in changes:
        trigger_type = changes.get("trigger_type") or row.trigger_type
        raw = changes.get("condition_config") or row.condition_config
        changes["condition_config"] = _validated_condition(trigger_type, raw)
    for key, value in changes.items():
        setattr(row, key, value)
    db.commit()
    db.refresh(row)
    return row


def set_trigger_active(db: Session, trigger_id: str, is_active: bool) -> NotificationTrigger:
    row = get_trigger(db, trigger_id)
    row.is_active = is_active
    db.commit()
    db.refresh(row)
    logger.info("Trigger %s %s", row.name, "activated" if is_active else "deactivated")
    return row


def delete_trigger(db: Session, trigger_id: str) -> None:
    """Delete the definition; its executions stay in the audit trail."""
    row = get_trigger(db, trigger_id)
    db.delete(row)
    db.commit()


def list_executions(
    db: Session,
    trigger_id: str | None = None,
    *,
    days: int | None = None,
    limit: int = 200,
    now: datetime | None = None,
) -> list[TriggerExecution]:
    q = db.query(TriggerExecution)
    if trigger_id:
        q = q.filter(TriggerExecution.trigger_id == trigger_id)
    if days:
        q = q.filter(TriggerExecution.executed_at >= (now or utcnow()) - timedelta(days=days))
    return q.order_by(TriggerExecution.executed_at.desc()).limit(limit).all()


def execution_to_dict(e: TriggerExecution) -> dict[str, Any]:
    return {
        "id": e.id,
        "trigger_id": e.trigger_id,
        "user_id": e.user_id,
        "executed_at": e.executed_at.isoformat() if e.executed_at else None,
        "notification_id": e.notification_id,
        "success": e.success,
        "error_message": e.error_message,
        "condition_values": e.condition_values,
    }
