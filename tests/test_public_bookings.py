import pytest
import pytz
from datetime import date, datetime, time, timedelta
from unittest.mock import patch

from scheduling.database import get_db
from scheduling.main import create_app
from scheduling.models import Schedule
from scheduling.services.booking_service import BookingService
from scheduling.services.public_booking_service import PublicBookingService
from conftest import client_data


def next_tuesday():
    """A Tuesday between one and two weeks out, inside every booking window"""
    today = date.today()
    return today + timedelta(days=(1 - today.weekday()) % 7 + 7)


def iso(day, hour, minute=0):
    return pytz.UTC.localize(datetime.combine(day, time(hour, minute))).isoformat()


@pytest.fixture
def client(provider, settings, task_queue):
    app = create_app('testing')
    service = PublicBookingService(settings, BookingService(settings, task_queue=task_queue))
    with patch('scheduling.routes.public_bookings.public_service', service):
        with app.test_client() as test_client:
            yield test_client


def create(client, hour=10, email='client@test.com'):
    return client.post('/api/book/ana-utc/consultation/bookings', json={
        'start_time': iso(next_tuesday(), hour),
        'client': client_data(email),
    })


class TestBrowsing:

    def test_health(self, client):
        assert client.get('/health').status_code == 200

    def test_list_event_types(self, client):
        response = client.get('/api/book/ana-utc')

        assert response.status_code == 200
        data = response.get_json()
        assert data['member']['booking_slug'] == 'ana-utc'
        assert [e['slug'] for e in data['event_types']] == ['consultation']

    def test_unknown_provider(self, client):
        response = client.get('/api/book/nobody')
        assert response.status_code == 404
        assert response.get_json()['error'] == 'Provider not found'

    def test_slots(self, client):
        day = next_tuesday().isoformat()
        response = client.get(f'/api/book/ana-utc/consultation/slots?start_date={day}')

        assert response.status_code == 200
        slots = response.get_json()['slots']
        assert len(slots) == 16
        assert slots[0]['start_time'] == iso(next_tuesday(), 9)

    def test_empty_day_reports_schedule_timezone(self, client, provider):
        with get_db() as db:
            db.query(Schedule).filter_by(member_id=provider['member'].id).update(
                {'timezone': 'America/Lima'})
        saturday = (next_tuesday() + timedelta(days=4)).isoformat()

        response = client.get(f'/api/book/ana-utc/consultation/slots?start_date={saturday}')

        assert response.status_code == 200
        assert response.get_json()['slots'] == []
        assert response.get_json()['timezone'] == 'America/Lima'

    def test_slots_require_start_date(self, client):
        response = client.get('/api/book/ana-utc/consultation/slots')
        assert response.status_code == 400

    def test_slots_bad_date(self, client):
        response = client.get('/api/book/ana-utc/consultation/slots?start_date=tomorrow')

        assert response.status_code == 400
        assert 'start_date' in response.get_json()['errors']

    def test_unknown_event_type(self, client):
        day = next_tuesday().isoformat()
        response = client.get(f'/api/book/ana-utc/massage/slots?start_date={day}')
        assert response.status_code == 404


class TestBookingLifecycle:

    def test_create_and_fetch(self, client):
        response = create(client)

        assert response.status_code == 201
        booking = response.get_json()['booking']
        assert booking['status'] == 'confirmed'
        assert booking['cancellation_token']
        assert booking['reschedule_token']

        fetched = client.get(f"/api/book/bookings/{booking['uid']}")
        assert fetched.status_code == 200
        assert 'cancellation_token' not in fetched.get_json()

    def test_missing_fields(self, client):
        response = client.post('/api/book/ana-utc/consultation/bookings',
                               json={'client': client_data()})
        assert response.status_code == 400
        assert response.get_json()['error'] == 'start_time is required'

    def test_validation_errors(self, client):
        response = client.post('/api/book/ana-utc/consultation/bookings', json={
            'start_time': iso(next_tuesday(), 10),
            'client': {'email': 'broken'},
        })

        assert response.status_code == 400
        errors = response.get_json()['errors']
        assert 'client.email' in errors
        assert 'client.first_name' in errors

    def test_double_booking_conflicts(self, client):
        assert create(client).status_code == 201

        response = create(client, email='second@test.com')

        assert response.status_code == 409
        assert response.get_json()['error'] == 'The requested time is no longer available'

    def test_cancel_flow(self, client):
        booking = create(client).get_json()['booking']
        token = booking['cancellation_token']

        preview = client.get(f'/api/book/bookings/cancel/{token}').get_json()
        assert preview['allowed'] is True

        response = client.post(f'/api/book/bookings/cancel/{token}', json={'reason': 'Sick'})
        assert response.status_code == 200
        assert response.get_json()['booking']['status'] == 'cancelled'

        again = client.post(f'/api/book/bookings/cancel/{token}', json={})
        assert again.status_code == 400

        preview = client.get(f'/api/book/bookings/cancel/{token}').get_json()
        assert preview['allowed'] is False

    def test_unknown_token(self, client):
        assert client.get('/api/book/bookings/cancel/bogus').status_code == 404
        assert client.post('/api/book/bookings/reschedule/bogus',
                           json={'start_time': iso(next_tuesday(), 11)}).status_code == 404

    def test_reschedule_flow(self, client):
        booking = create(client).get_json()['booking']
        token = booking['reschedule_token']

        missing = client.post(f'/api/book/bookings/reschedule/{token}', json={})
        assert missing.status_code == 400

        response = client.post(f'/api/book/bookings/reschedule/{token}',
                               json={'start_time': iso(next_tuesday(), 14)})
        assert response.status_code == 200
        moved = response.get_json()['booking']
        assert moved['uid'] != booking['uid']
        assert moved['start_time'] == iso(next_tuesday(), 14)

        old = client.get(f"/api/book/bookings/{booking['uid']}").get_json()
        assert old['status'] == 'rescheduled'
