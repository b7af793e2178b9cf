"""
Condition evaluators: one read-only query per trigger type returning the users currently
eligible. Every evaluator restricts to users with notifications enabled and a push token,
orders by user id and caps the result at `limit`.

Evaluators are safe to re-run: the same user comes back on every run while the condition
holds. Not re-sending is the throttle gate's job.
"""
import logging
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Callable, Iterable

from sqlalchemy import case, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session

from portal.config import settings
from portal.core.constants import (
    EVENT_PRACTICE_SESSION_ADDED,
    EVENT_VIDEO_COMPLETED,
    MILESTONE_PRACTICE_HOURS,
    MILESTONE_STREAK_ACHIEVED,
    MILESTONE_VIDEO_COMPLETED,
    MIN_ABANDON_WATCH_PERCENT,
    VIDEO_PROGRESS_EVENTS,
)
from portal.core.errors import EligibilityQueryError, TriggerConfigError
from portal.core.timeutil import ensure_utc, local_date
from portal.models.activity_event import ActivityEvent
from portal.models.app_user import AppUser
from portal.services.triggers.conditions import (
    MilestoneReachedCondition,
    PracticeStreakBrokenCondition,
    SignupIncompleteCondition,
    TriggerCondition,
    UserInactiveCondition,
    VideoAbandonedCondition,
)

logger = logging.getLogger(__name__)


def _reachable_users(db: Session) -> Query:
    return db.query(AppUser).filter(
        AppUser.notifications_enabled.is_(True),
        AppUser.push_token.isnot(None),
        AppUser.push_token != "",
    )


def _users_by_ids(db: Session, user_ids: Iterable[str], limit: int) -> list[AppUser]:
    ids = list(user_ids)
    if not ids:
        return []
    return _reachable_users(db).filter(AppUser.id.in_(ids)).order_by(AppUser.id).limit(limit).all()


# ---------------------------------------------------------------------------
# Event property helpers (the app has shipped both snake_case and camelCase keys)
# ---------------------------------------------------------------------------


def _prop(props: dict, *keys: str):
    for key in keys:
        if props.get(key) is not None:
            return props[key]
    return None


def _number(value) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return None


def watch_percentage(event: ActivityEvent) -> float | None:
    """Percent of the video watched for a progress event; Video_Completed counts as 100."""
    if event.event_name == EVENT_VIDEO_COMPLETED:
        return 100.0
    props = event.properties
    pct = _number(_prop(props, "watch_percentage", "watchPercentage", "percentage"))
    if pct is not None:
        return pct
    watched = _number(_prop(props, "watched_seconds", "watchTime"))
    duration = _number(_prop(props, "duration_seconds", "videoDuration"))
    if watched is not None and duration:
        return watched / duration * 100.0
    return None


def practice_day(event: ActivityEvent, tz_name: str | None = None) -> date:
    raw = _prop(event.properties, "practice_date", "practiceDate")
    if raw:
        try:
            return date.fromisoformat(str(raw)[:10])
        except ValueError:
            pass
    return local_date(event.timestamp, tz_name)


def practice_minutes(event: ActivityEvent) -> float:
    return _number(_prop(event.properties, "duration", "duration_minutes")) or 0.0


def streak_ending(days: set[date], end: date) -> int:
    """Length of the run of consecutive practice days ending on `end`."""
    n = 0
    d = end
    while d in days:
        n += 1
        d -= timedelta(days=1)
    return n


def longest_streak(days: set[date]) -> int:
    best = 0
    for d in days:
        if d - timedelta(days=1) not in days:
            best = max(best, _run_length(days, d))
    return best


def _run_length(days: set[date], start: date) -> int:
    n = 0
    d = start
    while d in days:
        n += 1
        d += timedelta(days=1)
    return n


# ---------------------------------------------------------------------------
# Evaluators
# ---------------------------------------------------------------------------


def evaluate_user_inactive(
    db: Session, condition: UserInactiveCondition, now: datetime, limit: int,
    tz_name: str | None = None,
) -> list[AppUser]:
    """No activity since now - days_inactive (users with fewer than min_activity_threshold events never count)."""
    cutoff = now - timedelta(days=condition.days_inactive)
    activity = (
        db.query(
            ActivityEvent.user_id.label("user_id"),
            func.max(ActivityEvent.timestamp).label("last_seen"),
            func.count(ActivityEvent.id).label("event_count"),
        )
        .filter(ActivityEvent.user_id.isnot(None))
        .group_by(ActivityEvent.user_id)
        .subquery()
    )
    q = (
        _reachable_users(db)
        .join(activity, activity.c.user_id == AppUser.id)
        .filter(activity.c.last_seen < cutoff, activity.c.event_count >= condition.min_activity_threshold)
    )
    if condition.exclude_new_users:
        q = q.filter(AppUser.created_at < cutoff)
    return q.order_by(AppUser.id).limit(limit).all()


def evaluate_signup_incomplete(
    db: Session, condition: SignupIncompleteCondition, now: datetime, limit: int,
    tz_name: str | None = None,
) -> list[AppUser]:
    """Signed up more than hours_since_signup ago with first or last name still missing."""
    cutoff = now - timedelta(hours=condition.hours_since_signup)
    return (
        _reachable_users(db)
        .filter(
            AppUser.created_at < cutoff,
            or_(
                AppUser.first_name.is_(None),
                AppUser.first_name == "",
                AppUser.last_name.is_(None),
                AppUser.last_name == "",
            ),
        )
        .order_by(AppUser.id)
        .limit(limit)
        .all()
    )


def evaluate_video_abandoned(
    db: Session, condition: VideoAbandonedCondition, now: datetime, limit: int,
    tz_name: str | None = None,
) -> list[AppUser]:
    """
    Latest video progress event (optionally for one video/series) sits between 10% and the
    threshold and is older than hours_since_abandonment, so the view is abandoned, not ongoing.
    """
    lookback = now - timedelta(days=settings.video_abandon_lookback_days)
    settled_before = now - timedelta(hours=condition.hours_since_abandonment)
    events = (
        db.query(ActivityEvent)
        .filter(
            ActivityEvent.user_id.isnot(None),
            ActivityEvent.event_name.in_(VIDEO_PROGRESS_EVENTS),
            ActivityEvent.timestamp >= lookback,
        )
        .order_by(ActivityEvent.user_id, ActivityEvent.timestamp.desc())
        .all()
    )
    latest: dict[str, ActivityEvent] = {}
    for ev in events:
        if ev.user_id in latest:
            continue
        props = ev.properties
        if condition.video_id and str(_prop(props, "video_id", "videoId")) != condition.video_id:
            continue
        if condition.series_id and str(_prop(props, "series_id", "seriesId")) != condition.series_id:
            continue
        latest[ev.user_id] = ev

    eligible = []
    for user_id, ev in latest.items():
        pct = watch_percentage(ev)
        if pct is None:
            continue
        if MIN_ABANDON_WATCH_PERCENT <= pct < condition.watch_percentage_threshold and ensure_utc(ev.timestamp) < settled_before:
            eligible.append(user_id)
    return _users_by_ids(db, eligible, limit)


def _practice_events(db: Session, since: datetime | None = None) -> list[ActivityEvent]:
    q = db.query(ActivityEvent).filter(
        ActivityEvent.user_id.isnot(None),
        ActivityEvent.event_name == EVENT_PRACTICE_SESSION_ADDED,
    )
    if since is not None:
        q = q.filter(ActivityEvent.timestamp >= since)
    return q.all()


def evaluate_practice_streak_broken(
    db: Session, condition: PracticeStreakBrokenCondition, now: datetime, limit: int,
    tz_name: str | None = None,
) -> list[AppUser]:
    """
    Most recent streak was at least min_streak_length days and the user has now missed at
    least days_since_break whole days since the last practice day (today does not count).
    """
    today = local_date(now, tz_name)
    days_by_user: dict[str, set[date]] = defaultdict(set)
    for ev in _practice_events(db, since=now - timedelta(days=settings.practice_lookback_days)):
        days_by_user[ev.user_id].add(practice_day(ev, tz_name))

    eligible = []
    for user_id, days in days_by_user.items():
        past = {d for d in days if d <= today}
        if not past:
            continue
        last = max(past)
        missed_days = (today - last).days - 1
        if missed_days < condition.days_since_break:
            continue
        if streak_ending(past, last) >= condition.min_streak_length:
            eligible.append(user_id)
    return _users_by_ids(db, eligible, limit)


def evaluate_milestone_reached(
    db: Session, condition: MilestoneReachedCondition, now: datetime, limit: int,
    tz_name: str | None = None,
) -> list[AppUser]:
    """Milestone value was below threshold_value at window start and is at/above it now."""
    window_start = now - timedelta(hours=condition.celebration_window_hours)
    threshold = condition.threshold_value
    eligible: list[str] = []

    if condition.milestone_type == MILESTONE_VIDEO_COMPLETED:
        rows = (
            db.query(
                ActivityEvent.user_id,
                func.sum(case((ActivityEvent.timestamp < window_start, 1), else_=0)),
                func.count(ActivityEvent.id),
            )
            .filter(
                ActivityEvent.user_id.isnot(None),
                ActivityEvent.event_name == EVENT_VIDEO_COMPLETED,
                ActivityEvent.timestamp <= now,
            )
            .group_by(ActivityEvent.user_id)
            .all()
        )
        eligible = [uid for uid, before, total in rows if (before or 0) < threshold <= total]

    elif condition.milestone_type == MILESTONE_PRACTICE_HOURS:
        before: dict[str, float] = defaultdict(float)
        total: dict[str, float] = defaultdict(float)
        for ev in _practice_events(db):
            ts = ensure_utc(ev.timestamp)
            if ts > now:
                continue
            hours = practice_minutes(ev) / 60.0
            total[ev.user_id] += hours
            if ts < window_start:
                before[ev.user_id] += hours
        eligible = [uid for uid, t in total.items() if before[uid] < threshold <= t]

    elif condition.milestone_type == MILESTONE_STREAK_ACHIEVED:
        days_before: dict[str, set[date]] = defaultdict(set)
        days_all: dict[str, set[date]] = defaultdict(set)
        for ev in _practice_events(db):
            ts = ensure_utc(ev.timestamp)
            if ts > now:
                continue
            day = practice_day(ev, tz_name)
            days_all[ev.user_id].add(day)
            if ts < window_start:
                days_before[ev.user_id].add(day)
        eligible = [
            uid
            for uid, days in days_all.items()
            if longest_streak(days_before[uid]) < threshold <= longest_streak(days)
        ]
    else:
        raise TriggerConfigError(f"Unknown milestone_type: {condition.milestone_type}")

    return _users_by_ids(db, eligible, limit)


EVALUATORS: dict[str, Callable[[Session, TriggerCondition, datetime, int, str | None], list[AppUser]]] = {
    "user_inactive": evaluate_user_inactive,
    "signup_incomplete": evaluate_signup_incomplete,
    "video_abandoned": evaluate_video_abandoned,
    "practice_streak_broken": evaluate_practice_streak_broken,
    "milestone_reached": evaluate_milestone_reached,
}


def find_eligible_users(
    db: Session,
    condition: TriggerCondition,
    now: datetime,
    limit: int | None = None,
    *,
    tz_name: str | None = None,
) -> list[AppUser]:
    """
    Run the evaluator for condition.type. tz_name picks the zone practice days are bucketed in
    (engine timezone when None). Store failures surface as EligibilityQueryError.
    """
    evaluator = EVALUATORS.get(condition.type)
    if evaluator is None:
        raise TriggerConfigError(f"No evaluator for trigger type: {condition.type}")
    try:
        return evaluator(db, condition, now, limit or settings.trigger_batch_limit, tz_name)
    except SQLAlchemyError as e:
        raise EligibilityQueryError(f"Eligibility query failed for {condition.type}: {e}") from e
