"""
Trigger admin API: CRUD, activate/deactivate, execution audit, performance, run on demand.
condition_config is validated against its typed variant before anything is stored.
"""
import logging
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from portal.api.deps import get_delivery_gateway
from portal.core.errors import EngineError, engine_error_to_http
from portal.db.session import get_db
from portal.services.analytics import trigger_health, trigger_performance
from portal.services.push.base import DeliveryGateway
from portal.services.trigger_service import (
    TriggerInput,
    TriggerUpdate,
    create_trigger,
    delete_trigger,
    execution_to_dict,
    get_trigger,
    list_executions,
    list_triggers,
    set_trigger_active,
    trigger_to_dict,
    update_trigger,
)
from portal.services.triggers.runner import TriggerRunner

router = APIRouter()
logger = logging.getLogger(__name__)


class ToggleBody(BaseModel):
    is_active: bool


@router.get("/triggers")
def get_triggers(db: Session = Depends(get_db)) -> dict[str, Any]:
    return {"triggers": [trigger_to_dict(t) for t in list_triggers(db)]}


@router.post("/triggers", status_code=201)
def post_trigger(body: TriggerInput, db: Session = Depends(get_db)) -> dict[str, Any]:
    try:
        return trigger_to_dict(create_trigger(db, body))
    except EngineError as e:
        raise engine_error_to_http(e) from e


@router.post("/triggers/run")
def run_triggers_now(
    db: Session = Depends(get_db),
    gateway: DeliveryGateway = Depends(get_delivery_gateway),
) -> dict[str, Any]:
    """Evaluate every active trigger now, skipping pending scheduled notifications."""
    return TriggerRunner(gateway).run_triggers(db).to_dict()


@router.get("/triggers/health")
def get_trigger_health(
    db: Session = Depends(get_db),
    days: int = Query(7, ge=1, le=90),
) -> dict[str, Any]:
    return {"days": days, "triggers": trigger_health(db, days)}


@router.get("/triggers/executions")
def get_all_executions(
    db: Session = Depends(get_db),
    days: int | None = Query(None, ge=1, le=365),
    limit: int = Query(200, ge=1, le=1000),
) -> dict[str, Any]:
    return {"executions": [execution_to_dict(e) for e in list_executions(db, days=days, limit=limit)]}


@router.get("/triggers/{trigger_id}")
def get_one_trigger(trigger_id: str, db: Session = Depends(get_db)) -> dict[str, Any]:
    try:
        return trigger_to_dict(get_trigger(db, trigger_id))
    except EngineError as e:
        raise engine_error_to_http(e) from e


@router.patch("/triggers/{trigger_id}")
def patch_trigger(trigger_id: str, body: TriggerUpdate, db: Session = Depends(get_db)) -> dict[str, Any]:
    try:
        return trigger_to_dict(update_trigger(db, trigger_id, body))
    except EngineError as e:
        raise engine_error_to_http(e) from e


@router.post("/triggers/{trigger_id}/toggle")
def toggle_trigger(trigger_id: str, body: ToggleBody, db: Session = Depends(get_db)) -> dict[str, Any]:
    try:
        return trigger_to_dict(set_trigger_active(db, trigger_id, body.is_active))
    except EngineError as e:
        raise engine_error_to_http(e) from e


@router.delete("/triggers/{trigger_id}")
def remove_trigger(trigger_id: str, db: Session = Depends(get_db)) -> dict[str, Any]:
    try:
        delete_trigger(db, trigger_id)
    except EngineError as e:
        raise engine_error_to_http(e) from e
    return {"ok": True}


@router.get("/triggers/{trigger_id}/executions")
def get_trigger_executions(
    trigger_id: str,
    db: Session = Depends(get_db),
    days: int | None = Query(None, ge=1, le=365),
    limit: int = Query(200, ge=1, le=1000),
) -> dict[str, Any]:
    rows = list_executions(db, trigger_id, days=days, limit=limit)
    return {"trigger_id": trigger_id, "executions": [execution_to_dict(e) for e in rows]}


@router.get("/triggers/{trigger_id}/performance")
def get_trigger_performance(
    trigger_id: str,
    db: Session = Depends(get_db),
    days: int = Query(30, ge=1, le=365),
) -> dict[str, Any]:
    try:
        get_trigger(db, trigger_id)
    except EngineError as e:
        raise engine_error_to_http(e) from e
    return trigger_performance(db, trigger_id, days)
