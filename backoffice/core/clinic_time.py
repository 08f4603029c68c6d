# backoffice/core/clinic_time.py
"""Civil-date <-> UTC instant conversions for the clinic calendar.

Every day/range query in the back-office filters on a half-open UTC window
``[start_utc, end_utc)`` derived from a civil date in a named IANA timezone.
"""
import re
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from typing import List, NamedTuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..exceptions import InvalidInputError

CIVIL_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")

CivilDate = Union[str, date]


class DayRange(NamedTuple):
    start_utc: datetime
    end_utc: datetime


@lru_cache(maxsize=64)
def get_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise InvalidInputError(f"Unknown timezone '{name}'", timezone=name)


def parse_civil_date(value: CivilDate, field: str = "date") -> date:
    """Parse a YYYY-MM-DD civil date. No clamping: bad input fails."""
    if isinstance(value, datetime):
        raise InvalidInputError(f"{field} must be a civil date, not an instant", field=field)
    if isinstance(value, date):
        return value
    match = CIVIL_DATE_RE.match(value or "")
    if not match:
        raise InvalidInputError(f"{field} must be in YYYY-MM-DD format", field=field, value=value)
    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        raise InvalidInputError(f"{field} is not a valid calendar date", field=field, value=value)


def format_civil_date(value: date) -> str:
    return value.isoformat()


def add_days(value: CivilDate, days: int) -> str:
    return format_civil_date(parse_civil_date(value) + timedelta(days=days))


def ensure_utc(instant: datetime) -> datetime:
    """Naive datetimes are taken to already be UTC."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def utc_offset_minutes(instant_utc: datetime, tz_name: str) -> int:
    """Offset of ``tz_name`` from UTC, in minutes, at the given instant."""
    local = ensure_utc(instant_utc).astimezone(get_zone(tz_name))
    return int(local.utcoffset().total_seconds() // 60)


def local_to_utc(civil: CivilDate, wall_time: time, tz_name: str) -> datetime:
    """Convert a local wall-clock time on ``civil`` to a UTC instant.

    The offset depends on the instant being computed, so it is evaluated at a
    candidate instant, the candidate is shifted, and the offset re-evaluated.
    Three rounds settle on both sides of a DST transition.
    """
    day = parse_civil_date(civil)
    target = datetime.combine(day, wall_time, tzinfo=timezone.utc)
    candidate = target
    for _ in range(3):
        offset = utc_offset_minutes(candidate, tz_name)
        candidate = target - timedelta(minutes=offset)
    return candidate


def day_range(civil: CivilDate, tz_name: str) -> DayRange:
    """UTC boundaries of one civil day: local midnight to next local midnight."""
    day = parse_civil_date(civil)
    start_utc = local_to_utc(day, time(0, 0, 0), tz_name)
    end_utc = local_to_utc(day + timedelta(days=1), time(0, 0, 0), tz_name)
    return DayRange(start_utc, end_utc)


def range_bounds(start: CivilDate, end: CivilDate, tz_name: str) -> DayRange:
    """Half-open UTC window covering the inclusive civil range [start, end]."""
    start_day = parse_civil_date(start, "start")
    end_day = parse_civil_date(end, "end")
    if end_day < start_day:
        raise InvalidInputError("end must not be before start", start=start_day.isoformat(), end=end_day.isoformat())
    return DayRange(day_range(start_day, tz_name).start_utc, day_range(end_day, tz_name).end_utc)


def civil_date_of(instant: datetime, tz_name: str) -> str:
    """The civil date (YYYY-MM-DD) an instant falls on in ``tz_name``."""
    return ensure_utc(instant).astimezone(get_zone(tz_name)).date().isoformat()


def enumerate_days(start: CivilDate, end: CivilDate) -> List[str]:
    """Inclusive ascending list of civil dates from start to end."""
    cursor = parse_civil_date(start, "start")
    last = parse_civil_date(end, "end")
    days = []
    while cursor <= last:
        days.append(cursor.isoformat())
        cursor += timedelta(days=1)
    return days


def at_noon_utc(civil: CivilDate, tz_name: str) -> datetime:
    """One unambiguous instant for a civil date: local noon, in UTC."""
    return local_to_utc(civil, time(12, 0, 0), tz_name)


def days_between(earlier: CivilDate, later: CivilDate) -> int:
    """Whole calendar days from ``earlier`` to ``later`` (negative if reversed)."""
    return (parse_civil_date(later) - parse_civil_date(earlier)).days


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
