"""
Slot generation.

Turns one date's effective availability window into candidate slots of
exactly one event type's duration. Pure functions: no database access, the
current time is passed in, and buffers are not applied here (they only pad
the conflict test).
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterator, List, Optional, Sequence

from scheduling.utils.timeutils import day_of_week, localize


@dataclass(frozen=True)
class TimeWindow:
    start: time
    end: time


@dataclass(frozen=True)
class Slot:
    start: datetime
    end: datetime

    def to_dict(self):
        return {'start_time': self.start.isoformat(), 'end_time': self.end.isoformat()}


def weekly_windows_by_day(availabilities) -> Dict[int, List[TimeWindow]]:
    """Group WeeklyAvailability rows into windows per day of week, ordered by start"""
    windows = {}
    for availability in availabilities:
        windows.setdefault(availability.day_of_week, []).append(
            TimeWindow(availability.start_time, availability.end_time)
        )
    for day_windows in windows.values():
        day_windows.sort(key=lambda w: w.start)
    return windows


def resolve_effective_windows(target_date: date,
                              weekly: Dict[int, Sequence[TimeWindow]],
                              override=None) -> List[TimeWindow]:
    """Availability windows for one date.

    An override replaces the weekly rule outright: an unavailable override
    yields nothing, any other override yields exactly its own window.
    """
    if override is not None:
        if override.unavailable:
            return []
        return [TimeWindow(override.start_time, override.end_time)]
    return list(weekly.get(day_of_week(target_date), ()))


def generate_candidate_slots(target_date: date, window: Optional[TimeWindow], event_type,
                             tz, now: datetime) -> Iterator[Slot]:
    """Step through ``window`` on ``target_date`` in ``tz`` by the event duration.

    The window is clamped to the booking horizon before stepping: its start
    moves up to ``now + minimum notice`` and its end down to
    ``now + maximum days in future``. A slot starting exactly on the notice
    boundary is dropped.
    """
    if window is None:
        return

    duration = timedelta(minutes=event_type.duration_minutes)
    earliest = now + timedelta(hours=event_type.minimum_notice_hours)
    latest = now + timedelta(days=event_type.maximum_days_in_future)

    current = max(localize(target_date, window.start, tz), earliest).astimezone(tz)
    window_end = min(localize(target_date, window.end, tz), latest)

    while current + duration <= window_end:
        if current > earliest:
            yield Slot(tz.normalize(current), tz.normalize(current + duration))
        current += duration


def generate_slots_for_date(target_date: date, windows: Sequence[TimeWindow], event_type,
                            tz, now: datetime) -> List[Slot]:
    slots = []
    for window in windows:
        slots.extend(generate_candidate_slots(target_date, window, event_type, tz, now))
    slots.sort(key=lambda s: s.start)
    return slots
