from typing import List
from sqlalchemy.orm import joinedload
from config.config import SchedulingSettings, load_settings
from scheduling.database import get_db
from scheduling.errors import ExternalIntegrationError, NotFoundError
from scheduling.integrations import get_calendar_adapter
from scheduling.models import Booking, CalendarConnection
from scheduling.utils.logger import get_logger

logger = get_logger(__name__)

ACTIONS = ('create', 'delete', 'reschedule')


class CalendarSyncService:
    """Mirror bookings into the member's connected calendars.

    Event ids are stored per provider on the booking, so a retried sync
    skips calendars that already succeeded.
    """

    def __init__(self, settings: SchedulingSettings = None):
        self.settings = settings or load_settings()

    def _load_booking(self, db, booking_id: int) -> Booking:
        booking = (
            db.query(Booking)
            .options(joinedload(Booking.event_type), joinedload(Booking.client))
            .filter(Booking.id == booking_id)
            .first()
        )
        if not booking:
            raise NotFoundError(f"Booking {booking_id} not found")
        return booking

    def _connections(self, db, member_id: int) -> List[CalendarConnection]:
        providers = self.settings.enabled_calendar_providers
        if not providers:
            return []
        return db.query(CalendarConnection).filter(
            CalendarConnection.member_id == member_id,
            CalendarConnection.active.is_(True),
            CalendarConnection.add_bookings_to_calendar.is_(True),
            CalendarConnection.provider.in_(providers),
        ).all()

    def sync(self, booking_id: int, action: str, new_booking_id: int = None):
        if action not in ACTIONS:
            raise ValueError(f"Unknown calendar sync action: {action}")

        failed = []
        with get_db() as db:
            booking = self._load_booking(db, booking_id)
            new_booking = self._load_booking(db, new_booking_id) if new_booking_id else None

            for connection in self._connections(db, booking.member_id):
                adapter = get_calendar_adapter(connection, timeout=self.settings.calendar_timeout_seconds)
                provider = connection.provider

                if action in ('delete', 'reschedule'):
                    if not self._remove(adapter, booking, provider):
                        failed.append(provider)
                        continue
                if action == 'create':
                    if not self._add(adapter, booking, provider):
                        failed.append(provider)
                elif action == 'reschedule' and new_booking is not None:
                    if not self._add(adapter, new_booking, provider):
                        failed.append(provider)

        if failed:
            raise ExternalIntegrationError(
                f"Calendar sync '{action}' failed for booking {booking_id}: {', '.join(failed)}"
            )
        logger.info(f"Calendar sync '{action}' finished for booking {booking_id}")

    @staticmethod
    def _add(adapter, booking: Booking, provider: str) -> bool:
        events = dict(booking.external_calendar_events or {})
        if provider in events:
            return True
        event_id = adapter.add_event(booking)
        if not event_id:
            return False
        events[provider] = event_id
        booking.external_calendar_events = events
        return True

    @staticmethod
    def _remove(adapter, booking: Booking, provider: str) -> bool:
        events = dict(booking.external_calendar_events or {})
        event_id = events.get(provider)
        if not event_id:
            return True
        # The id stays on the booking until the delete succeeds
        if not adapter.delete_event(booking, event_id):
            return False
        del events[provider]
        booking.external_calendar_events = events
        return True
