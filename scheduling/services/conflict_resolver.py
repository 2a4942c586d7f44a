"""
Conflict resolution for candidate and requested booking intervals.

Internal conflicts are tested against the member's confirmed bookings with a
half-open overlap test. External calendars are consulted through their
registered adapters and fail open: an error or timeout counts as free time.
"""
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from config.config import SchedulingSettings
from scheduling.integrations import get_calendar_adapter
from scheduling.models import Booking, CalendarConnection, DateOverride
from scheduling.models.booking import BookingStatus
from scheduling.services.slot_generator import Slot, TimeWindow, resolve_effective_windows
from scheduling.utils.logger import get_logger
from scheduling.utils.timeutils import from_db, intervals_overlap, to_db

logger = get_logger(__name__)

# Shared by every resolver; calls that outlive their timeout finish in the background
_calendar_pool = ThreadPoolExecutor(max_workers=8, thread_name_prefix='calendar-check')


class ConflictResolver:
    """Answers "is this interval free" for one member and one event type"""

    def __init__(self, db, member_id: int, event_type, weekly: Dict[int, Sequence[TimeWindow]],
                 tz, settings: SchedulingSettings):
        self.db = db
        self.member_id = member_id
        self.event_type = event_type
        self.weekly = weekly
        self.tz = tz
        self.settings = settings
        self._overrides = {}
        self._connections = None
        # Calendars that errored or timed out are not asked again by this resolver
        self._unresponsive = set()

    @property
    def buffer_before(self) -> timedelta:
        return timedelta(minutes=self.event_type.buffer_before_minutes or 0)

    @property
    def buffer_after(self) -> timedelta:
        return timedelta(minutes=self.event_type.buffer_after_minutes or 0)

    def _confirmed_bookings(self, start: datetime, end: datetime, exclude_booking_id: int = None):
        query = self.db.query(Booking).filter(
            Booking.member_id == self.member_id,
            Booking.status == BookingStatus.CONFIRMED,
            Booking.start_time < to_db(end),
            Booking.end_time > to_db(start),
        )
        if exclude_booking_id is not None:
            query = query.filter(Booking.id != exclude_booking_id)
        return query

    def has_conflict(self, start: datetime, end: datetime, exclude_booking_id: int = None) -> bool:
        """True if a confirmed booking overlaps [start, end)"""
        return self.db.query(
            self._confirmed_bookings(start, end, exclude_booking_id).exists()
        ).scalar()

    def has_buffered_conflict(self, start: datetime, end: datetime,
                              exclude_booking_id: int = None) -> bool:
        return self.has_conflict(start - self.buffer_before, end + self.buffer_after,
                                 exclude_booking_id)

    def override_for(self, target_date) -> Optional[DateOverride]:
        if target_date not in self._overrides:
            self._overrides[target_date] = self.db.query(DateOverride).filter_by(
                member_id=self.member_id, date=target_date
            ).first()
        return self._overrides[target_date]

    def preload_overrides(self, overrides):
        for override in overrides:
            self._overrides[override.date] = override

    def is_within_schedule(self, moment: datetime) -> bool:
        """True iff ``moment`` falls inside the effective window of its local date.

        The window start is inclusive and its end exclusive. Only the start
        is tested, so a booking may run past the window end.
        """
        local = moment.astimezone(self.tz)
        target_date = local.date()
        windows = resolve_effective_windows(target_date, self.weekly, self.override_for(target_date))
        time_of_day = local.time()

        return any(window.start <= time_of_day < window.end for window in windows)

    def _active_connections(self) -> List[CalendarConnection]:
        if self._connections is None:
            providers = self.settings.enabled_calendar_providers
            if not providers:
                self._connections = []
            else:
                self._connections = self.db.query(CalendarConnection).filter(
                    CalendarConnection.member_id == self.member_id,
                    CalendarConnection.active.is_(True),
                    CalendarConnection.check_for_conflicts.is_(True),
                    CalendarConnection.provider.in_(providers),
                ).all()
        return self._connections

    def has_external_conflicts(self, start: datetime, end: datetime) -> bool:
        """Ask every conflict-checking calendar about [start, end).

        Each call is bounded by the configured timeout. Errors and timeouts
        are logged and treated as no conflict, and that calendar is skipped
        for the rest of this resolver's life, so one hung calendar costs a
        single timeout per availability query.
        """
        timeout = self.settings.calendar_timeout_seconds
        for connection in self._active_connections():
            if connection.id in self._unresponsive:
                continue
            try:
                adapter = get_calendar_adapter(connection, timeout=timeout)
                future = _calendar_pool.submit(adapter.has_conflicts, start, end)
                if future.result(timeout=timeout):
                    return True
            except FutureTimeoutError:
                future.cancel()
                self._unresponsive.add(connection.id)
                logger.warning(
                    f"{connection.provider} calendar check timed out after {timeout}s "
                    f"for member {self.member_id}; treating as free"
                )
            except Exception as e:
                self._unresponsive.add(connection.id)
                logger.warning(
                    f"{connection.provider} calendar check failed for member "
                    f"{self.member_id}: {str(e)}; treating as free"
                )
        return False

    def _busy_intervals(self, slots: Sequence[Slot]) -> List[Tuple[datetime, datetime]]:
        range_start = min(s.start for s in slots) - self.buffer_before
        range_end = max(s.end for s in slots) + self.buffer_after
        return [
            (from_db(b.start_time), from_db(b.end_time))
            for b in self._confirmed_bookings(range_start, range_end)
        ]

    def filter_slots(self, slots: Sequence[Slot]) -> List[Slot]:
        """Keep slots free of buffered internal conflicts and external events"""
        if not slots:
            return []

        busy = self._busy_intervals(slots)
        available = []
        for slot in slots:
            padded_start = slot.start - self.buffer_before
            padded_end = slot.end + self.buffer_after
            if any(intervals_overlap(padded_start, padded_end, b_start, b_end) for b_start, b_end in busy):
                continue
            if self.has_external_conflicts(slot.start, slot.end):
                continue
            available.append(slot)
        return available
