"""Device registration: the app reports its push token and opt-in flag for a user."""
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from portal.core.errors import NotFoundError, engine_error_to_http
from portal.db.session import get_db
from portal.models.app_user import AppUser

router = APIRouter()
logger = logging.getLogger(__name__)


class RegisterPushBody(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=36)
    push_token: str | None = Field(None, max_length=256, description="Expo push token or APNs device token; null clears it")
    notifications_enabled: bool | None = None


@router.post("/push/register")
def register_push_token(body: RegisterPushBody, db: Session = Depends(get_db)):
    """
    Attach a device to a user (or clear it with push_token=null).
    Idempotent: registering the same token again only refreshes updated_at.
    """
    user = db.get(AppUser, body.user_id)
    if user is None:
        raise engine_error_to_http(NotFoundError(f"User {body.user_id} not found"))
    token = (body.push_token or "").strip() or None
    changed = user.push_token != token
    user.push_token = token
    if body.notifications_enabled is not None:
        user.notifications_enabled = body.notifications_enabled
    db.commit()
    if token is None:
        logger.info("Cleared push token for user %s", user.id)
        return {"ok": True, "message": "Token cleared"}
    if changed:
        logger.info("Registered push token for user %s", user.id)
        return {"ok": True, "message": "Token registered"}
    return {"ok": True, "message": "Token already registered"}
