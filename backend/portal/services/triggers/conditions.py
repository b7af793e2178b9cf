"""
Typed condition_config variants, keyed by "type".

The admin API validates condition_config with parse_condition before writing a trigger;
the runner parses again at read time and treats a failure as a per-trigger configuration error.
"""
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from portal.core.constants import TRIGGER_TYPES
from portal.core.errors import TriggerConfigError


class _Condition(BaseModel):
    # Older admin forms stored extra keys (require_push_token, exclude_completed); ignore them
    model_config = ConfigDict(extra="ignore", frozen=True)


class UserInactiveCondition(_Condition):
    type: Literal["user_inactive"] = "user_inactive"
    days_inactive: int = Field(..., ge=1, le=365)
    exclude_new_users: bool = True
    min_activity_threshold: int = Field(1, ge=1)


class SignupIncompleteCondition(_Condition):
    type: Literal["signup_incomplete"] = "signup_incomplete"
    hours_since_signup: int = Field(..., ge=1, le=168)


class VideoAbandonedCondition(_Condition):
    type: Literal["video_abandoned"] = "video_abandoned"
    watch_percentage_threshold: float = Field(25, ge=10, le=90)
    hours_since_abandonment: int = Field(..., ge=1, le=72)
    video_id: str | None = None
    series_id: str | None = None


class PracticeStreakBrokenCondition(_Condition):
    type: Literal["practice_streak_broken"] = "practice_streak_broken"
    min_streak_length: int = Field(3, ge=2)
    days_since_break: int = Field(2, ge=1, le=14)


class MilestoneReachedCondition(_Condition):
    type: Literal["milestone_reached"] = "milestone_reached"
    milestone_type: Literal["video_completed", "practice_hours", "streak_achieved"]
    threshold_value: float = Field(..., ge=1)
    celebration_window_hours: int = Field(24, ge=1, le=48)


TriggerCondition = Annotated[
    Union[
        UserInactiveCondition,
        SignupIncompleteCondition,
        VideoAbandonedCondition,
        PracticeStreakBrokenCondition,
        MilestoneReachedCondition,
    ],
    Field(discriminator="type"),
]

_condition_adapter: TypeAdapter[TriggerCondition] = TypeAdapter(TriggerCondition)


def parse_condition(trigger_type: str, raw: Any) -> TriggerCondition:
    """
    Validate a stored condition_config against trigger_type.
    A missing "type" key is filled from trigger_type; a different one is an error.
    """
    if trigger_type not in TRIGGER_TYPES:
        raise TriggerConfigError(f"Unknown trigger type: {trigger_type}")
    if not isinstance(raw, dict):
        raise TriggerConfigError(f"condition_config must be an object, got {type(raw).__name__}")
    payload = dict(raw)
    declared = payload.setdefault("type", trigger_type)
    if declared != trigger_type:
        raise TriggerConfigError(
            f"condition_config.type '{declared}' does not match trigger_type '{trigger_type}'"
        )
    try:
        return _condition_adapter.validate_python(payload)
    except ValidationError as e:
        raise TriggerConfigError(f"Invalid condition_config for {trigger_type}: {e.errors(include_url=False)}") from e


def condition_snapshot(condition: TriggerCondition) -> dict[str, Any]:
    return condition.model_dump(mode="json")
