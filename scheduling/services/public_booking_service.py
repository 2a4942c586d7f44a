"""
Public booking surface: what an unauthenticated client can see and do.

Members are addressed by booking slug and event types by their slug; single
bookings are addressed by uid or by one of their two tokens.
"""
from typing import Dict

from sqlalchemy.orm import selectinload

from config.config import SchedulingSettings, load_settings
from scheduling.database import get_db
from scheduling.errors import NotFoundError
from scheduling.models import EventType, Member
from scheduling.services.availability_checker import AvailabilityChecker
from scheduling.services.booking_service import BookingService
from scheduling.utils.logger import get_logger
from scheduling.utils.timeutils import parse_date, utcnow

logger = get_logger(__name__)


class PublicBookingService:

    def __init__(self, settings: SchedulingSettings = None, booking_service: BookingService = None):
        self.settings = settings or load_settings()
        self.bookings = booking_service or BookingService(self.settings)

    def _get_member(self, db, booking_slug: str) -> Member:
        member = db.query(Member).filter_by(booking_slug=booking_slug).first()
        if not member or not member.active or not member.accepts_bookings:
            raise NotFoundError('Provider not found')
        return member

    def _get_event_type(self, db, member: Member, event_slug: str) -> EventType:
        event_type = (
            db.query(EventType)
            .options(selectinload(EventType.booking_questions))
            .filter_by(member_id=member.id, slug=event_slug, active=True)
            .first()
        )
        if not event_type:
            raise NotFoundError('Event type not found')
        return event_type

    def list_event_types(self, booking_slug: str) -> Dict:
        with get_db() as db:
            member = self._get_member(db, booking_slug)
            event_types = (
                db.query(EventType)
                .options(selectinload(EventType.booking_questions))
                .filter_by(member_id=member.id, active=True)
                .order_by(EventType.title)
                .all()
            )
            return {
                'member': {'name': member.full_name, 'booking_slug': member.booking_slug},
                'event_types': [event_type.to_dict() for event_type in event_types],
            }

    def get_available_slots(self, booking_slug: str, event_slug: str, start_date, end_date=None,
                            timezone: str = None, now=None) -> Dict:
        start = parse_date(start_date, 'start_date')
        end = parse_date(end_date, 'end_date') if end_date else start

        with get_db() as db:
            member = self._get_member(db, booking_slug)
            event_type = self._get_event_type(db, member, event_slug)

        checker = AvailabilityChecker(member, event_type, self.settings)
        slots = checker.available_slots(start, end, timezone, now=now or utcnow())
        return {
            'event_type': event_type.slug,
            'duration_minutes': event_type.duration_minutes,
            'timezone': checker.timezone_name(timezone),
            'slots': [slot.to_dict() for slot in slots],
        }

    def create_booking(self, booking_slug: str, event_slug: str, data: Dict, now=None) -> Dict:
        """Book from a public request body.

        ``data`` carries ``start_time``, ``timezone``, ``client`` (email, names,
        phone), ``answers`` keyed by question id, ``notes`` and, when paying,
        ``payment_provider`` with ``payment_method_token``.
        """
        with get_db() as db:
            member = self._get_member(db, booking_slug)
            event_type = self._get_event_type(db, member, event_slug)

        booking = self.bookings.create_booking(
            event_type.id,
            data.get('start_time'),
            data.get('client') or {},
            timezone=data.get('timezone'),
            answers=data.get('answers'),
            notes=data.get('notes'),
            payment_provider=data.get('payment_provider'),
            payment_method_token=data.get('payment_method_token'),
            now=now,
        )
        return self._with_links(booking)

    def cancel_booking(self, token: str, reason: str = None, now=None) -> Dict:
        booking = self.bookings.cancel_booking(token, reason, now=now)
        return booking.to_dict()

    def reschedule_booking(self, token: str, new_start_time, reason: str = None, now=None) -> Dict:
        booking = self.bookings.reschedule_booking(token, new_start_time, reason, now=now)
        return self._with_links(booking)

    def get_booking(self, uid: str) -> Dict:
        return self.bookings.get_booking(uid).to_dict()

    def get_booking_for_token(self, token: str, action: str, now=None) -> Dict:
        """Booking behind a cancel or reschedule link, with whether the action is allowed"""
        booking = self.bookings.get_booking_by_token(token, action)
        data = booking.to_dict()
        violation = booking.policy_violation(action, now or utcnow())
        data['allowed'] = violation is None
        if violation:
            data['reason'], data['policy_hours'] = violation
        return data

    @staticmethod
    def _with_links(booking) -> Dict:
        data = booking.to_dict()
        data['cancellation_token'] = booking.cancellation_token
        data['reschedule_token'] = booking.reschedule_token
        return data
