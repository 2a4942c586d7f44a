from datetime import date
from typing import Dict, List, Optional

from sqlalchemy.orm import selectinload

from scheduling.database import get_db
from scheduling.errors import NotFoundError, ValidationError
from scheduling.models import DateOverride, Member, Schedule, WeeklyAvailability
from scheduling.services.availability_checker import find_default_schedule
from scheduling.utils.logger import get_logger
from scheduling.utils.timeutils import parse_date, parse_time
from scheduling.utils.validators import (validate_date_override, validate_day_of_week,
                                         validate_time_window, validate_timezone)

logger = get_logger(__name__)


class ScheduleService:
    """Schedules, weekly hours and date overrides for members"""

    def _get_member(self, db, member_id: int) -> Member:
        member = db.query(Member).filter_by(id=member_id).first()
        if not member:
            raise NotFoundError('Member not found')
        return member

    def _get_schedule(self, db, schedule_id: int) -> Schedule:
        schedule = (
            db.query(Schedule)
            .options(selectinload(Schedule.availabilities))
            .filter_by(id=schedule_id)
            .first()
        )
        if not schedule:
            raise NotFoundError('Schedule not found')
        return schedule

    def create_schedule(self, member_id: int, name: str, timezone: str,
                        is_default: bool = False, availabilities: List[Dict] = None) -> Schedule:
        """Create a schedule; a member's first schedule becomes the default"""
        errors = {}
        if not name or not name.strip():
            errors['name'] = ["can't be blank"]
        valid, error = validate_timezone(timezone)
        if not valid:
            errors['timezone'] = [error]
        windows = self._validate_windows(availabilities or [], errors)
        if errors:
            raise ValidationError(errors)

        with get_db() as db:
            self._get_member(db, member_id)
            existing = db.query(Schedule).filter_by(member_id=member_id).count()
            make_default = is_default or existing == 0
            if make_default:
                self._clear_default(db, member_id)

            schedule = Schedule(
                member_id=member_id,
                name=name.strip(),
                timezone=timezone,
                is_default=make_default,
                availabilities=[WeeklyAvailability(**window) for window in windows],
            )
            db.add(schedule)
            db.flush()

        logger.info(f"Created schedule {schedule.id} for member {member_id}")
        return schedule

    @staticmethod
    def _clear_default(db, member_id: int):
        db.query(Schedule).filter_by(member_id=member_id, is_default=True).update(
            {Schedule.is_default: False}, synchronize_session=False
        )

    def set_default_schedule(self, member_id: int, schedule_id: int) -> Schedule:
        with get_db() as db:
            schedule = self._get_schedule(db, schedule_id)
            if schedule.member_id != member_id:
                raise NotFoundError('Schedule not found')
            self._clear_default(db, member_id)
            schedule.is_default = True
            db.flush()

        logger.info(f"Schedule {schedule_id} is now the default for member {member_id}")
        return schedule

    def get_default_schedule(self, member_id: int) -> Optional[Schedule]:
        with get_db() as db:
            return find_default_schedule(db, member_id)

    def _validate_windows(self, windows: List[Dict], errors: Dict[str, List[str]]) -> List[Dict]:
        """Validate weekly windows; windows on the same day may not overlap"""
        cleaned = []
        for index, window in enumerate(windows):
            field = f"availabilities.{index}"
            try:
                start_time = parse_time(window.get('start_time'), 'start_time')
                end_time = parse_time(window.get('end_time'), 'end_time')
            except ValidationError as e:
                errors.setdefault(field, []).extend(
                    f"{key} {msg}" for key, msgs in e.errors.items() for msg in msgs
                )
                continue

            day = window.get('day_of_week')
            valid, error = validate_day_of_week(day)
            if not valid:
                errors.setdefault(field, []).append(error)
                continue
            valid, error = validate_time_window(start_time, end_time)
            if not valid:
                errors.setdefault(field, []).append(error)
                continue
            cleaned.append({'day_of_week': day, 'start_time': start_time, 'end_time': end_time})

        by_day = {}
        for window in cleaned:
            by_day.setdefault(window['day_of_week'], []).append(window)
        for day, day_windows in by_day.items():
            day_windows.sort(key=lambda w: w['start_time'])
            for previous, current in zip(day_windows, day_windows[1:]):
                if current['start_time'] < previous['end_time']:
                    errors.setdefault('availabilities', []).append(
                        f"windows overlap on day {day}"
                    )
        return cleaned

    def set_weekly_availability(self, schedule_id: int, windows: List[Dict]) -> Schedule:
        """Replace every weekly window of the schedule"""
        errors = {}
        cleaned = self._validate_windows(windows, errors)
        if errors:
            raise ValidationError(errors)

        with get_db() as db:
            schedule = self._get_schedule(db, schedule_id)
            schedule.availabilities = [WeeklyAvailability(**window) for window in cleaned]
            db.flush()

        logger.info(f"Set {len(cleaned)} weekly windows on schedule {schedule_id}")
        return schedule

    def set_date_override(self, member_id: int, override_date, start_time=None, end_time=None,
                          unavailable: bool = False, reason: str = None) -> DateOverride:
        """Create or replace the member's override for one date"""
        target_date = parse_date(override_date, 'date')
        start = parse_time(start_time, 'start_time')
        end = parse_time(end_time, 'end_time')

        valid, error = validate_date_override(start, end, unavailable)
        if not valid:
            raise ValidationError({'base': [error]})
        if unavailable:
            start = end = None

        with get_db() as db:
            self._get_member(db, member_id)
            override = db.query(DateOverride).filter_by(member_id=member_id, date=target_date).first()
            if override is None:
                override = DateOverride(member_id=member_id, date=target_date)
                db.add(override)
            override.start_time = start
            override.end_time = end
            override.unavailable = bool(unavailable)
            override.reason = reason
            db.flush()

        logger.info(f"Set date override for member {member_id} on {target_date.isoformat()}")
        return override

    def remove_date_override(self, member_id: int, override_date) -> bool:
        target_date = parse_date(override_date, 'date')
        with get_db() as db:
            deleted = db.query(DateOverride).filter_by(member_id=member_id, date=target_date).delete()
        return deleted > 0

    def list_date_overrides(self, member_id: int, start_date: date, end_date: date) -> List[DateOverride]:
        with get_db() as db:
            return db.query(DateOverride).filter(
                DateOverride.member_id == member_id,
                DateOverride.date >= start_date,
                DateOverride.date <= end_date,
            ).order_by(DateOverride.date).all()
