from contextlib import contextmanager
from datetime import date, datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import selectinload

from config.config import SchedulingSettings, load_settings
from scheduling.database import get_db
from scheduling.errors import ScheduleConfigurationError, ValidationError
from scheduling.models import DateOverride, Schedule
from scheduling.services.conflict_resolver import ConflictResolver
from scheduling.services.slot_generator import (Slot, generate_slots_for_date,
                                                resolve_effective_windows, weekly_windows_by_day)
from scheduling.utils.logger import get_logger
from scheduling.utils.timeutils import daterange, get_timezone, utcnow

logger = get_logger(__name__)

OUTSIDE_SCHEDULE = "outside_schedule"
BOOKING_CONFLICT = "booking_conflict"


def find_default_schedule(db, member_id: int) -> Optional[Schedule]:
    """The member's default schedule.

    A lone schedule counts as the default. Several schedules with none
    flagged default is a configuration error rather than a guess.
    """
    schedules = (
        db.query(Schedule)
        .options(selectinload(Schedule.availabilities))
        .filter(Schedule.member_id == member_id)
        .all()
    )
    defaults = [s for s in schedules if s.is_default]
    if defaults:
        return defaults[0]
    if len(schedules) == 1:
        return schedules[0]
    if not schedules:
        return None
    raise ScheduleConfigurationError(
        f"Member {member_id} has {len(schedules)} schedules and none is marked default"
    )


class AvailabilityChecker:
    """Read-only availability for one member and event type"""

    def __init__(self, member, event_type, settings: SchedulingSettings = None, db=None):
        self.member = member
        self.event_type = event_type
        self.settings = settings or load_settings()
        self.db = db

    @contextmanager
    def _session(self):
        if self.db is not None:
            yield self.db
        else:
            with get_db() as db:
                yield db

    def resolve_timezone(self, schedule: Optional[Schedule], timezone: str = None):
        """Request timezone, else the schedule's, else the configured default"""
        if timezone:
            return get_timezone(timezone)
        if schedule is not None:
            return get_timezone(schedule.timezone)
        return get_timezone(self.settings.default_timezone)

    def timezone_name(self, timezone: str = None) -> str:
        with self._session() as db:
            schedule = find_default_schedule(db, self.member.id)
        return self.resolve_timezone(schedule, timezone).zone

    def resolver(self, db, schedule: Optional[Schedule], tz) -> ConflictResolver:
        weekly = weekly_windows_by_day(schedule.availabilities) if schedule else {}
        return ConflictResolver(db, self.member.id, self.event_type, weekly, tz, self.settings)

    def available_slots(self, start_date: date, end_date: date, timezone: str = None,
                        now: datetime = None) -> List[Slot]:
        """Bookable slots for every date in [start_date, end_date], in start order"""
        if end_date < start_date:
            raise ValidationError({'end_date': ['must not be before start_date']})

        now = now or utcnow()

        with self._session() as db:
            schedule = find_default_schedule(db, self.member.id)
            if schedule is None:
                logger.warning(f"Member {self.member.id} has no schedule; no slots available")
                return []

            tz = self.resolve_timezone(schedule, timezone)
            # Dates past the booking horizon cannot hold slots
            horizon = (now + timedelta(days=self.event_type.maximum_days_in_future)).astimezone(tz).date()
            end_date = min(end_date, horizon)
            if end_date < start_date:
                return []

            resolver = self.resolver(db, schedule, tz)
            overrides = db.query(DateOverride).filter(
                DateOverride.member_id == self.member.id,
                DateOverride.date >= start_date,
                DateOverride.date <= end_date,
            ).all()
            resolver.preload_overrides(overrides)
            by_date = {o.date: o for o in overrides}

            candidates = []
            for target_date in daterange(start_date, end_date):
                windows = resolve_effective_windows(target_date, resolver.weekly, by_date.get(target_date))
                candidates.extend(generate_slots_for_date(target_date, windows, self.event_type, tz, now))

            return resolver.filter_slots(candidates)

    def unavailability_reason(self, start: datetime, duration_minutes: int, timezone: str = None,
                              exclude_booking_id: int = None) -> Optional[str]:
        """None when the requested start can be booked, otherwise why it cannot.

        Returns ``OUTSIDE_SCHEDULE`` or ``BOOKING_CONFLICT``. External
        calendars are not consulted here.
        """
        end = start + timedelta(minutes=duration_minutes)
        with self._session() as db:
            schedule = find_default_schedule(db, self.member.id)
            if schedule is None:
                return OUTSIDE_SCHEDULE
            tz = self.resolve_timezone(schedule, timezone)
            resolver = self.resolver(db, schedule, tz)
            if not resolver.is_within_schedule(start):
                return OUTSIDE_SCHEDULE
            if resolver.has_buffered_conflict(start, end, exclude_booking_id):
                return BOOKING_CONFLICT
            return None

    def is_available_at(self, start: datetime, duration_minutes: int, timezone: str = None,
                        exclude_booking_id: int = None) -> bool:
        return self.unavailability_reason(start, duration_minutes, timezone, exclude_booking_id) is None
