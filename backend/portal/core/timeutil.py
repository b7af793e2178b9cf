"""Time helpers: UTC now, tz normalization, local-day boundaries for the engine timezone."""
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from portal.config import settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def engine_tz(name: str | None = None) -> ZoneInfo:
    return ZoneInfo(name or settings.engine_timezone)


def local_date(dt: datetime, tz_name: str | None = None) -> date:
    """Calendar date of dt in the engine timezone."""
    return ensure_utc(dt).astimezone(engine_tz(tz_name)).date()


def local_midnight(now: datetime, tz_name: str | None = None) -> datetime:
    """Start of today (engine timezone) as a UTC datetime."""
    tz = engine_tz(tz_name)
    today = ensure_utc(now).astimezone(tz).date()
    return datetime.combine(today, time.min, tzinfo=tz).astimezone(timezone.utc)


def next_local_midnight(now: datetime, tz_name: str | None = None) -> datetime:
    tz = engine_tz(tz_name)
    tomorrow = ensure_utc(now).astimezone(tz).date() + timedelta(days=1)
    return datetime.combine(tomorrow, time.min, tzinfo=tz).astimezone(timezone.utc)
