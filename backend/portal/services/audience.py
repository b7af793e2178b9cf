"""
Target audience resolution for scheduled notifications.

Descriptor shapes (stored as JSON on scheduled_notifications / notification_triggers):
  {"type": "all"}
  {"type": "admins"}
  {"type": "segment", "filter": {"role": "user", "has_push_token": true, "created_after": "..."}}
  {"type": "users", "userIds": ["...", "..."]}
An invalid or missing descriptor falls back to "all users with notifications enabled".
"""
import logging
from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError
from sqlalchemy.orm import Query, Session

from portal.core.constants import ADMIN_ROLES
from portal.models.app_user import AppUser

logger = logging.getLogger(__name__)


class AllAudience(BaseModel):
    type: Literal["all"] = "all"


class AdminsAudience(BaseModel):
    type: Literal["admins"] = "admins"


class SegmentAudience(BaseModel):
    type: Literal["segment"] = "segment"
    filter: dict[str, Any] = Field(default_factory=dict)


class UsersAudience(BaseModel):
    type: Literal["users"] = "users"
    userIds: list[str] = Field(default_factory=list)


TargetAudience = Annotated[
    Union[AllAudience, AdminsAudience, SegmentAudience, UsersAudience],
    Field(discriminator="type"),
]

_audience_adapter: TypeAdapter[TargetAudience] = TypeAdapter(TargetAudience)


def parse_audience(raw: Any) -> TargetAudience | None:
    """Parse a stored descriptor; None when it is missing or malformed."""
    if not isinstance(raw, dict) or not raw.get("type"):
        return None
    try:
        return _audience_adapter.validate_python(raw)
    except ValidationError:
        return None


def single_user_audience(user_id: str) -> dict[str, Any]:
    return {"type": "users", "userIds": [user_id]}


def _apply_segment_filter(q: Query, seg_filter: dict[str, Any]) -> Query:
    role = seg_filter.get("role")
    if isinstance(role, str):
        q = q.filter(AppUser.role == role)
    elif isinstance(role, list):
        q = q.filter(AppUser.role.in_(role))
    if seg_filter.get("has_push_token") is True:
        q = q.filter(AppUser.push_token.isnot(None))
    for key, op in (("created_after", "ge"), ("created_before", "lt")):
        raw = seg_filter.get(key)
        if not raw:
            continue
        try:
            bound = datetime.fromisoformat(str(raw))
        except ValueError:
            logger.debug("Ignoring segment filter %s=%r (not ISO datetime)", key, raw)
            continue
        q = q.filter(AppUser.created_at >= bound if op == "ge" else AppUser.created_at < bound)
    return q


def resolve_audience(db: Session, raw_audience: Any) -> list[AppUser]:
    """
    Users addressed by the descriptor. Does not filter on push token or preferences;
    the dispatcher decides which of them are reachable.
    """
    audience = parse_audience(raw_audience)
    q = db.query(AppUser)
    if audience is None:
        logger.info("Invalid audience format, defaulting to all users with notifications enabled")
        return q.filter(AppUser.notifications_enabled.is_(True)).order_by(AppUser.id).all()
    if isinstance(audience, AllAudience):
        pass
    elif isinstance(audience, AdminsAudience):
        q = q.filter(AppUser.role.in_(ADMIN_ROLES))
    elif isinstance(audience, SegmentAudience):
        q = _apply_segment_filter(q, audience.filter)
    elif isinstance(audience, UsersAudience):
        if not audience.userIds:
            return []
        q = q.filter(AppUser.id.in_(audience.userIds))
    return q.order_by(AppUser.id).all()


def reachable(users: list[AppUser], *, respect_preferences: bool) -> list[AppUser]:
    """Users with a push address (and opt-in when preferences are respected)."""
    out = []
    for u in users:
        if not (u.push_token or "").strip():
            continue
        if respect_preferences and not u.notifications_enabled:
            continue
        out.append(u)
    return out
