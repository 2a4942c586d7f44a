import os

# Must be set before config.config is first imported
os.environ['DATABASE_URL'] = 'sqlite:///test_slotbook.db'
os.environ['SLOTBOOK_ENV'] = 'testing'

import pytest
import pytz
from datetime import date, datetime, time, timedelta
from unittest.mock import Mock

from config.config import SchedulingSettings
from scheduling.database import drop_db, init_db, get_db, DatabaseManager
from scheduling.models import (Member, Schedule, WeeklyAvailability, EventType, Client,
                               Booking, Payment)
from scheduling.models.booking import BookingStatus, BookingPaymentStatus
from scheduling.models.payment import PaymentStatus
from scheduling.utils.security import issue_booking_identifiers
from scheduling.utils.timeutils import to_db

# 2030-01-07 is a Monday
MONDAY = date(2030, 1, 7)
TUESDAY = MONDAY + timedelta(days=1)
SATURDAY = MONDAY + timedelta(days=5)


def at(day, hour, minute=0, tz=pytz.UTC):
    return tz.localize(datetime.combine(day, time(hour, minute)))


@pytest.fixture
def settings():
    return SchedulingSettings().override(
        default_timezone='UTC',
        calendar_timeout_seconds=0.5,
        side_effect_max_attempts=3,
        side_effect_retry_seconds=10,
    )


@pytest.fixture
def database():
    init_db()
    yield
    drop_db()


@pytest.fixture
def task_queue():
    return Mock()


def create_provider(timezone='UTC', start=time(9, 0), end=time(17, 0), **event_type_fields):
    """Member with a Monday to Friday schedule and one event type"""
    member = DatabaseManager(Member).create(
        first_name='Ana',
        last_name='Provider',
        email=f'ana-{timezone.lower().replace("/", "-")}@test.com',
        booking_slug=f'ana-{timezone.lower().replace("/", "-")}',
        active=True,
        accepts_bookings=True
    )

    with get_db() as db:
        schedule = Schedule(member_id=member.id, name='Work week', timezone=timezone, is_default=True)
        for day in range(1, 6):
            schedule.availabilities.append(
                WeeklyAvailability(day_of_week=day, start_time=start, end_time=end)
            )
        db.add(schedule)

    fields = {
        'title': 'Consultation',
        'slug': 'consultation',
        'duration_minutes': 30,
        'minimum_notice_hours': 2,
        'maximum_days_in_future': 60,
        'cancellation_policy_hours': 24,
        'rescheduling_policy_hours': 24,
    }
    fields.update(event_type_fields)
    event_type = DatabaseManager(EventType).create(member_id=member.id, **fields)
    member = DatabaseManager(Member).get(member.id)
    return member, event_type


@pytest.fixture
def provider(database):
    member, event_type = create_provider()
    return {'member': member, 'event_type': event_type}


def create_booking_row(member, event_type, start, end=None, status=BookingStatus.CONFIRMED,
                       email='existing@test.com', paid=False):
    """Insert a booking directly, bypassing validation"""
    end = end or start + timedelta(minutes=event_type.duration_minutes)
    with get_db() as db:
        client = db.query(Client).filter_by(email=email).first()
        if client is None:
            client = Client(email=email, first_name='Existing', last_name='Client')
            db.add(client)
            db.flush()

        booking = Booking(
            member_id=member.id,
            event_type_id=event_type.id,
            client_id=client.id,
            start_time=to_db(start),
            end_time=to_db(end),
            timezone='UTC',
            status=status,
            payment_status=BookingPaymentStatus.PAID if paid else BookingPaymentStatus.NOT_REQUIRED,
            external_calendar_events={},
            **issue_booking_identifiers()
        )
        if paid:
            booking.payment = Payment(
                amount_cents=event_type.price_cents or 5000,
                currency='PEN',
                status=PaymentStatus.COMPLETED,
                payment_provider='stripe',
                payment_method='card',
                external_transaction_id='pi_existing',
                paid_at=datetime.utcnow()
            )
        db.add(booking)
        db.flush()
    return booking


def client_data(email='client@test.com'):
    return {'email': email, 'first_name': 'Carla', 'last_name': 'Client', 'phone': '+51 999 888 777'}
