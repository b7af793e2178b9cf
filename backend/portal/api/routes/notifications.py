"""
Scheduled notifications API: create, list, get, cancel, process now; per-user history.

POST /notifications/process without a notification_id behaves like the periodic job
(due notifications first, triggers otherwise).
"""
import logging
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from portal.api.deps import get_delivery_gateway
from portal.core.errors import EngineError, engine_error_to_http
from portal.db.session import get_db
from portal.services.notification_service import (
    ScheduledNotificationInput,
    cancel_notification,
    create_notification,
    get_notification,
    history_to_dict,
    list_notifications,
    notification_to_dict,
    user_history,
)
from portal.services.push.base import DeliveryGateway
from portal.services.triggers.runner import TriggerRunner

router = APIRouter()
logger = logging.getLogger(__name__)


class ProcessBody(BaseModel):
    notification_id: str | None = None


@router.get("/notifications")
def get_notifications(
    db: Session = Depends(get_db),
    status: str | None = Query(None, pattern="^(pending|sent|failed|cancelled)$"),
    limit: int = Query(100, ge=1, le=500),
) -> dict[str, Any]:
    return {"notifications": [notification_to_dict(n) for n in list_notifications(db, status, limit)]}


@router.post("/notifications", status_code=201)
def post_notification(body: ScheduledNotificationInput, db: Session = Depends(get_db)) -> dict[str, Any]:
    return notification_to_dict(create_notification(db, body))


@router.post("/notifications/process")
def process_notifications(
    body: ProcessBody | None = None,
    db: Session = Depends(get_db),
    gateway: DeliveryGateway = Depends(get_delivery_gateway),
) -> dict[str, Any]:
    runner = TriggerRunner(gateway)
    try:
        if body and body.notification_id:
            return runner.process_notification_by_id(db, body.notification_id).to_dict()
        return runner.run_periodic(db).to_dict()
    except EngineError as e:
        raise engine_error_to_http(e) from e


@router.get("/notifications/{notification_id}")
def get_one_notification(notification_id: str, db: Session = Depends(get_db)) -> dict[str, Any]:
    try:
        return notification_to_dict(get_notification(db, notification_id))
    except EngineError as e:
        raise engine_error_to_http(e) from e


@router.post("/notifications/{notification_id}/cancel")
def post_cancel(notification_id: str, db: Session = Depends(get_db)) -> dict[str, Any]:
    try:
        return notification_to_dict(cancel_notification(db, notification_id))
    except EngineError as e:
        db.rollback()
        raise engine_error_to_http(e) from e


@router.get("/users/{user_id}/notification-history")
def get_user_history(
    user_id: str,
    db: Session = Depends(get_db),
    days: int = Query(30, ge=1, le=365),
) -> dict[str, Any]:
    rows = user_history(db, user_id, days)
    return {"user_id": user_id, "days": days, "history": [history_to_dict(h) for h in rows]}
