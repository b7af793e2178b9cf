"""Throttle settings API and a dry-run frequency check for one user."""
import logging
from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from portal.core.errors import NotFoundError, engine_error_to_http
from portal.db.session import get_db
from portal.models.app_user import AppUser
from portal.services.throttle import ThrottleGate
from portal.services.throttle_settings_service import (
    ThrottleSettingsUpdate,
    load_throttle_config,
    update_throttle_settings,
)

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/throttle/settings")
def get_settings(db: Session = Depends(get_db)) -> dict[str, Any]:
    return load_throttle_config(db).to_dict()


@router.put("/throttle/settings")
def put_settings(body: ThrottleSettingsUpdate, db: Session = Depends(get_db)) -> dict[str, Any]:
    return update_throttle_settings(db, body).to_dict()


@router.get("/throttle/check/{user_id}")
def check_user(
    user_id: str,
    db: Session = Depends(get_db),
    priority: int = Query(5, ge=1, le=10),
) -> dict[str, Any]:
    """Would a notification at this priority go out to the user right now? Sends nothing."""
    if db.get(AppUser, user_id) is None:
        raise engine_error_to_http(NotFoundError(f"User {user_id} not found"))
    decision = ThrottleGate(load_throttle_config(db)).can_send(db, user_id, priority)
    return {"user_id": user_id, "priority": priority, **decision.to_dict()}
