"""Time helpers shared by the slot generator, conflict resolver and bookings.

Datetimes are stored as naive UTC and handled as tz-aware values everywhere
else. Day-of-week numbering follows 0 = Sunday ... 6 = Saturday.
"""
from datetime import date, datetime, time, timedelta
from typing import Iterator, Optional, Union

import pytz

from scheduling.errors import ValidationError


def utcnow() -> datetime:
    return datetime.now(pytz.UTC)


def get_timezone(name: str):
    """Return a pytz timezone, raising ValidationError for unknown names"""
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        raise ValidationError({'timezone': [f"'{name}' is not a valid timezone"]})


def ensure_aware(value: datetime, tz=pytz.UTC) -> datetime:
    """Attach ``tz`` to naive datetimes; aware values are returned unchanged"""
    if value.tzinfo is None:
        return tz.localize(value)
    return value


def to_db(value: datetime) -> datetime:
    """Convert to the naive-UTC representation used by the database"""
    return ensure_aware(value).astimezone(pytz.UTC).replace(tzinfo=None)


def from_db(value: datetime) -> datetime:
    if value is None:
        return None
    return ensure_aware(value)


def localize(target_date: date, time_of_day: time, tz) -> datetime:
    """Wall-clock ``time_of_day`` on ``target_date`` in ``tz`` as an aware datetime"""
    return tz.localize(datetime.combine(target_date, time_of_day))


def parse_datetime(value: Union[str, datetime], tz=pytz.UTC) -> datetime:
    if isinstance(value, datetime):
        return ensure_aware(value, tz)
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except (AttributeError, ValueError):
        raise ValidationError({'start_time': ['is not a valid ISO 8601 datetime']})
    return ensure_aware(parsed, tz)


def parse_date(value: Union[str, date], field: str = 'date') -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationError({field: ['is not a valid ISO 8601 date']})


def daterange(start_date: date, end_date: date) -> Iterator[date]:
    """Inclusive ascending range of calendar days"""
    current = start_date
    while current <= end_date:
        yield current
        current += timedelta(days=1)


def day_of_week(target_date: date) -> int:
    return (target_date.weekday() + 1) % 7


def intervals_overlap(a_start: datetime, a_end: datetime,
                      b_start: datetime, b_end: datetime) -> bool:
    """Half-open interval intersection; touching endpoints do not overlap"""
    return a_start < b_end and a_end > b_start


def parse_time(value: Union[str, time, None], field: str = 'time') -> Optional[time]:
    """Parse ``HH:MM`` or ``HH:MM:SS``; None passes through"""
    if value is None or isinstance(value, time):
        return value
    try:
        return time.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationError({field: ['is not a valid time (HH:MM)']})
