from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from ..config import get_settings


def business_tz() -> ZoneInfo:
    return ZoneInfo(get_settings().business_timezone)


def to_utc_naive(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        raise ValueError("datetime must be timezone-aware")
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def utc_naive_to_local(dt: datetime, tz: ZoneInfo) -> datetime:
    return dt.replace(tzinfo=timezone.utc).astimezone(tz)


def local_to_utc_naive(day: date, wall_clock: time, tz: ZoneInfo) -> datetime:
    return to_utc_naive(datetime.combine(day, wall_clock, tzinfo=tz))


def local_day_bounds(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """UTC naive [start, end) covering the business-local calendar day."""
    start = local_to_utc_naive(day, time.min, tz)
    end = local_to_utc_naive(day + timedelta(days=1), time.min, tz)
    return start, end
