import json
import threading
import pytest
from datetime import timedelta
from unittest.mock import Mock, patch

from sqlalchemy.orm import joinedload, selectinload

from scheduling.database import DatabaseManager, get_db
from scheduling.errors import (ConflictError, NotFoundError, PaymentError, PolicyViolationError,
                               ValidationError)
from scheduling.integrations import ChargeResult
from scheduling.models import Booking, BookingQuestion, EventType, Member, Payment
from scheduling.models.booking import BookingPaymentStatus, BookingStatus, ChangeType, InitiatedBy
from scheduling.models.payment import PaymentStatus
from scheduling.services.availability_checker import AvailabilityChecker
from scheduling.services.booking_service import BookingService
from scheduling.utils.timeutils import to_db
from conftest import MONDAY, TUESDAY, at, client_data, create_booking_row

NOW = at(MONDAY, 8)


@pytest.fixture
def payments():
    payment_service = Mock()
    payment_service.charge_for_booking.return_value = ChargeResult(True, 'pi_123')
    return payment_service


@pytest.fixture
def service(settings, task_queue, payments):
    return BookingService(settings, task_queue=task_queue, payment_service=payments)


def queued(task_queue):
    return [c.args for c in task_queue.enqueue.call_args_list]


def reload(booking_id):
    with get_db() as db:
        return (
            db.query(Booking)
            .options(joinedload(Booking.payment), selectinload(Booking.answers),
                     selectinload(Booking.changes))
            .filter_by(id=booking_id)
            .first()
        )


def make_paid(event_type, gated=True):
    return DatabaseManager(EventType).update(
        event_type.id, requires_payment=True, payment_required_to_book=gated,
        price_cents=5000, price_currency='PEN'
    )


def add_question(event_type, label='Topic', question_type='text', required=True, options=None):
    return DatabaseManager(BookingQuestion).create(
        event_type_id=event_type.id,
        label=label,
        question_type=question_type,
        required=required,
        options=json.dumps(options) if options else None
    )


def book(service, event_type, start=None, email='client@test.com', **kwargs):
    return service.create_booking(event_type.id, start or at(TUESDAY, 10), client_data(email),
                                  now=kwargs.pop('now', NOW), **kwargs)


class TestCreateBooking:

    def test_creates_confirmed_booking(self, provider, service, task_queue):
        booking = book(service, provider['event_type'], notes='First visit')

        assert booking.status == BookingStatus.CONFIRMED
        assert booking.payment_status == BookingPaymentStatus.NOT_REQUIRED
        assert booking.end_time - booking.start_time == timedelta(minutes=30)
        assert booking.timezone == 'UTC'
        assert booking.uid
        assert booking.cancellation_token != booking.reschedule_token
        assert ('send_confirmation', booking.id) in queued(task_queue)
        assert ('calendar_sync', booking.id, 'create') in queued(task_queue)

    def test_accepts_iso_strings(self, provider, service):
        booking = service.create_booking(provider['event_type'].id, '2030-01-08T10:00:00Z',
                                         client_data(), now=NOW)
        assert booking.to_dict()['start_time'] == '2030-01-08T10:00:00+00:00'

    def test_reuses_client_by_email(self, provider, service):
        first = book(service, provider['event_type'], at(TUESDAY, 10))
        second = book(service, provider['event_type'], at(TUESDAY, 11))
        assert first.client_id == second.client_id

    def test_invalid_client(self, provider, service):
        with pytest.raises(ValidationError) as exc:
            service.create_booking(provider['event_type'].id, at(TUESDAY, 10),
                                   {'email': 'not-an-email', 'first_name': '', 'last_name': 'X',
                                    'phone': '12'}, now=NOW)

        assert set(exc.value.errors) == {'client.email', 'client.first_name', 'client.phone'}
        assert DatabaseManager(Booking).count() == 0

    def test_minimum_notice(self, provider, service):
        with pytest.raises(ValidationError) as exc:
            book(service, provider['event_type'], at(MONDAY, 10))
        assert 'start_time' in exc.value.errors

    def test_maximum_days_in_future(self, provider, service):
        with pytest.raises(ValidationError) as exc:
            book(service, provider['event_type'], at(TUESDAY + timedelta(days=63), 10))
        assert 'start_time' in exc.value.errors

    def test_outside_available_hours(self, provider, service):
        with pytest.raises(ValidationError) as exc:
            book(service, provider['event_type'], at(TUESDAY, 7))
        assert exc.value.errors['start_time'] == ['is not within available hours']

    def test_booking_may_run_past_window_end(self, provider, service):
        booking = book(service, provider['event_type'], at(TUESDAY, 16, 45))

        assert booking.status == BookingStatus.CONFIRMED
        assert booking.end_time - booking.start_time == timedelta(minutes=30)

    def test_required_and_choice_answers(self, provider, service):
        topic = add_question(provider['event_type'])
        language = add_question(provider['event_type'], 'Language', 'select', required=False,
                                options=['Spanish', 'English'])

        with pytest.raises(ValidationError) as exc:
            book(service, provider['event_type'], answers={str(language.id): 'French'})
        assert set(exc.value.errors) == {f'answers.{topic.id}', f'answers.{language.id}'}

        booking = book(service, provider['event_type'],
                       answers={str(topic.id): 'Taxes', str(language.id): 'English'})
        stored = {a.booking_question_id: a.answer for a in reload(booking.id).answers}
        assert stored == {topic.id: 'Taxes', language.id: 'English'}

    def test_inactive_event_type(self, provider, service):
        DatabaseManager(EventType).update(provider['event_type'].id, active=False)
        with pytest.raises(NotFoundError):
            book(service, provider['event_type'])

    def test_provider_not_accepting_bookings(self, provider, service):
        DatabaseManager(Member).update(provider['member'].id, accepts_bookings=False)
        with pytest.raises(ValidationError):
            book(service, provider['event_type'])

    def test_taken_slot_conflicts(self, provider, service, task_queue):
        create_booking_row(provider['member'], provider['event_type'], at(TUESDAY, 10))

        with pytest.raises(ConflictError):
            book(service, provider['event_type'], at(TUESDAY, 10, 15))
        task_queue.enqueue.assert_not_called()

    def test_touching_bookings_are_allowed(self, provider, service):
        create_booking_row(provider['member'], provider['event_type'], at(TUESDAY, 10))
        booking = book(service, provider['event_type'], at(TUESDAY, 10, 30))
        assert booking.status == BookingStatus.CONFIRMED

    def test_conflict_found_inside_transaction(self, provider, service):
        create_booking_row(provider['member'], provider['event_type'], at(TUESDAY, 10))

        with patch.object(AvailabilityChecker, 'unavailability_reason', return_value=None):
            with pytest.raises(ConflictError):
                book(service, provider['event_type'], at(TUESDAY, 10))

        assert DatabaseManager(Booking).count() == 1

    def test_concurrent_requests_for_one_slot(self, provider, service):
        barrier = threading.Barrier(2)
        outcomes = []

        def attempt(index):
            barrier.wait()
            try:
                book(service, provider['event_type'], at(TUESDAY, 10), email=f'racer{index}@test.com')
                outcomes.append('booked')
            except ConflictError:
                outcomes.append('conflict')

        threads = [threading.Thread(target=attempt, args=(i,)) for i in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(outcomes) == ['booked', 'conflict']
        assert DatabaseManager(Booking).count(status=BookingStatus.CONFIRMED) == 1


class TestBookingPayments:

    def test_gated_event_requires_payment_details(self, provider, service, payments):
        event_type = make_paid(provider['event_type'])

        with pytest.raises(ValidationError) as exc:
            book(service, event_type)

        assert 'payment' in exc.value.errors
        payments.charge_for_booking.assert_not_called()

    def test_paid_booking_records_payment(self, provider, service, payments):
        event_type = make_paid(provider['event_type'])

        booking = book(service, event_type, payment_provider='stripe', payment_method_token='pm_visa')

        stored = reload(booking.id)
        assert stored.payment_status == BookingPaymentStatus.PAID
        assert stored.payment.status == PaymentStatus.COMPLETED
        assert stored.payment.amount_cents == 5000
        assert stored.payment.external_transaction_id == 'pi_123'
        payments.charge_for_booking.assert_called_once()

    def test_declined_charge_creates_nothing(self, provider, service, payments, task_queue):
        event_type = make_paid(provider['event_type'])
        payments.charge_for_booking.side_effect = PaymentError('Your card was declined.')

        with pytest.raises(PaymentError):
            book(service, event_type, payment_provider='stripe', payment_method_token='pm_declined')

        assert DatabaseManager(Booking).count() == 0
        task_queue.enqueue.assert_not_called()

    def test_charge_refunded_when_transaction_fails(self, provider, service, task_queue):
        event_type = make_paid(provider['event_type'])
        create_booking_row(provider['member'], event_type, at(TUESDAY, 10))

        with patch.object(AvailabilityChecker, 'unavailability_reason', return_value=None):
            with pytest.raises(ConflictError):
                book(service, event_type, payment_provider='stripe', payment_method_token='pm_visa')

        assert queued(task_queue) == [('refund_charge', 'stripe', 'pi_123', 5000)]

    def test_optional_payment_left_pending(self, provider, service, payments):
        event_type = make_paid(provider['event_type'], gated=False)

        booking = book(service, event_type)

        assert booking.payment_status == BookingPaymentStatus.PENDING
        assert reload(booking.id).payment is None
        payments.charge_for_booking.assert_not_called()


class TestCancelBooking:

    def test_cancel_with_token(self, provider, service, task_queue):
        booking = book(service, provider['event_type'])
        task_queue.reset_mock()

        cancelled = service.cancel_booking(booking.cancellation_token, 'Travelling', now=NOW)

        stored = reload(booking.id)
        assert cancelled.status == BookingStatus.CANCELLED
        assert stored.cancellation_reason == 'Travelling'
        assert [c.change_type for c in stored.changes] == [ChangeType.CANCELLED]
        assert stored.changes[0].initiated_by == InitiatedBy.CLIENT
        assert queued(task_queue) == [('send_cancellation', booking.id),
                                      ('calendar_sync', booking.id, 'delete')]

    def test_cancelled_time_can_be_booked_again(self, provider, service):
        booking = book(service, provider['event_type'])
        service.cancel_booking(booking.cancellation_token, now=NOW)

        again = book(service, provider['event_type'], email='other@test.com')
        assert again.status == BookingStatus.CONFIRMED

    def test_paid_cancellation_queues_refund(self, provider, service, task_queue):
        booking = create_booking_row(provider['member'], provider['event_type'], at(TUESDAY, 10),
                                     paid=True)
        payment_id = reload(booking.id).payment.id

        service.cancel_booking(booking.cancellation_token, now=NOW)

        assert ('refund_payment', payment_id) in queued(task_queue)

    def test_inside_policy_window(self, provider, service):
        booking = book(service, provider['event_type'])

        with pytest.raises(PolicyViolationError) as exc:
            service.cancel_booking(booking.cancellation_token, now=at(MONDAY, 11))

        assert exc.value.policy_hours == 24
        assert reload(booking.id).status == BookingStatus.CONFIRMED

    def test_policy_is_read_at_cancel_time(self, provider, service):
        booking = book(service, provider['event_type'])
        DatabaseManager(EventType).update(provider['event_type'].id, cancellation_policy_hours=0)

        cancelled = service.cancel_booking(booking.cancellation_token, now=at(TUESDAY, 9, 59))
        assert cancelled.status == BookingStatus.CANCELLED

    def test_cancellation_disabled(self, provider, service):
        booking = book(service, provider['event_type'])
        DatabaseManager(EventType).update(provider['event_type'].id, allow_cancellation=False)

        with pytest.raises(PolicyViolationError):
            service.cancel_booking(booking.cancellation_token, now=NOW)

    def test_token_is_single_use(self, provider, service):
        booking = book(service, provider['event_type'])
        service.cancel_booking(booking.cancellation_token, now=NOW)

        with pytest.raises(ValidationError):
            service.cancel_booking(booking.cancellation_token, now=NOW)

    def test_unknown_token(self, provider, service):
        with pytest.raises(NotFoundError):
            service.cancel_booking('no-such-token', now=NOW)
        with pytest.raises(NotFoundError):
            service.cancel_booking('', now=NOW)

    def test_member_cancels_by_uid(self, provider, service):
        booking = book(service, provider['event_type'])

        service.cancel_booking_by_uid(booking.uid, 'Sick', now=NOW)

        assert reload(booking.id).changes[0].initiated_by == InitiatedBy.MEMBER


class TestRescheduleBooking:

    def test_reschedule_links_new_booking(self, provider, service, task_queue):
        topic = add_question(provider['event_type'])
        original = book(service, provider['event_type'], answers={str(topic.id): 'Budget'})
        task_queue.reset_mock()

        moved = service.reschedule_booking(original.reschedule_token, at(TUESDAY, 14),
                                           'Clashes with work', now=NOW)

        old = reload(original.id)
        new = reload(moved.id)
        assert old.status == BookingStatus.RESCHEDULED
        assert old.changes[-1].change_type == ChangeType.RESCHEDULED
        assert old.changes[-1].new_start_time == at(TUESDAY, 14).replace(tzinfo=None)
        assert new.status == BookingStatus.CONFIRMED
        assert new.rescheduled_from_id == old.id
        assert new.start_time == at(TUESDAY, 14).replace(tzinfo=None)
        assert new.uid != old.uid
        assert new.cancellation_token != old.cancellation_token
        assert new.reschedule_token != old.reschedule_token
        assert [(a.booking_question_id, a.answer) for a in new.answers] == [(topic.id, 'Budget')]
        assert queued(task_queue) == [('send_reschedule', old.id, new.id),
                                      ('calendar_sync', old.id, 'reschedule', new.id)]

    def test_completed_payment_carries_over(self, provider, service, payments):
        event_type = make_paid(provider['event_type'])
        original = book(service, event_type, payment_provider='stripe', payment_method_token='pm_visa')

        moved = service.reschedule_booking(original.reschedule_token, at(TUESDAY, 15), now=NOW)

        new = reload(moved.id)
        assert new.payment_status == BookingPaymentStatus.PAID
        assert new.payment.status == PaymentStatus.COMPLETED
        assert new.payment.external_transaction_id == 'pi_123'
        assert payments.charge_for_booking.call_count == 1
        assert DatabaseManager(Payment).count() == 2

    def test_may_overlap_its_own_old_time(self, provider, service):
        original = book(service, provider['event_type'], at(TUESDAY, 10))

        moved = service.reschedule_booking(original.reschedule_token, at(TUESDAY, 10, 15), now=NOW)

        assert reload(moved.id).status == BookingStatus.CONFIRMED

    def test_conflict_with_another_booking(self, provider, service):
        original = book(service, provider['event_type'], at(TUESDAY, 10))
        create_booking_row(provider['member'], provider['event_type'], at(TUESDAY, 14),
                           email='busy@test.com')

        with pytest.raises(ConflictError):
            service.reschedule_booking(original.reschedule_token, at(TUESDAY, 14), now=NOW)

        assert reload(original.id).status == BookingStatus.CONFIRMED

    def test_outside_policy_window(self, provider, service):
        original = book(service, provider['event_type'])

        with pytest.raises(PolicyViolationError) as exc:
            service.reschedule_booking(original.reschedule_token, at(TUESDAY, 14),
                                       now=at(MONDAY, 12))
        assert exc.value.policy_hours == 24

    def test_new_time_must_be_valid(self, provider, service):
        original = book(service, provider['event_type'])

        with pytest.raises(ValidationError) as exc:
            service.reschedule_booking(original.reschedule_token, at(TUESDAY, 19), now=NOW)
        assert 'start_time' in exc.value.errors

    def test_old_token_cannot_be_reused(self, provider, service):
        original = book(service, provider['event_type'])
        service.reschedule_booking(original.reschedule_token, at(TUESDAY, 14), now=NOW)

        with pytest.raises(PolicyViolationError):
            service.reschedule_booking(original.reschedule_token, at(TUESDAY, 15), now=NOW)


class TestCloseOut:

    def test_mark_completed(self, provider, service):
        booking = create_booking_row(provider['member'], provider['event_type'], at(TUESDAY, 10))

        with pytest.raises(ValidationError):
            service.mark_completed(booking.id, now=NOW)

        completed = service.mark_completed(booking.id, now=at(TUESDAY, 11))
        assert completed.status == BookingStatus.COMPLETED
        assert reload(booking.id).changes[-1].change_type == ChangeType.COMPLETED

    def test_mark_no_show(self, provider, service):
        booking = create_booking_row(provider['member'], provider['event_type'], at(TUESDAY, 10))

        service.mark_no_show(booking.id, 'Did not join', now=at(TUESDAY, 10, 20))

        stored = reload(booking.id)
        assert stored.status == BookingStatus.NO_SHOW
        assert stored.changes[-1].reason == 'Did not join'

    def test_terminal_bookings_stay_terminal(self, provider, service):
        booking = create_booking_row(provider['member'], provider['event_type'], at(TUESDAY, 10),
                                     status=BookingStatus.CANCELLED)
        with pytest.raises(ValidationError):
            service.mark_completed(booking.id, now=at(TUESDAY, 11))

    def test_complete_past_bookings(self, provider, service):
        past = create_booking_row(provider['member'], provider['event_type'], at(TUESDAY, 10))
        future = create_booking_row(provider['member'], provider['event_type'],
                                    at(TUESDAY + timedelta(days=1), 10))

        assert service.complete_past_bookings(now=at(TUESDAY, 12)) == 1
        assert reload(past.id).status == BookingStatus.COMPLETED
        assert reload(future.id).status == BookingStatus.CONFIRMED
        assert service.complete_past_bookings(now=at(TUESDAY, 12)) == 0

    def test_send_due_reminders(self, provider, service, task_queue):
        due = create_booking_row(provider['member'], provider['event_type'], at(TUESDAY, 10))
        create_booking_row(provider['member'], provider['event_type'],
                           at(TUESDAY + timedelta(days=2), 10))

        assert service.send_due_reminders(now=at(MONDAY, 12)) == 1
        assert queued(task_queue) == [('send_reminder', due.id)]
        # Only a delivered reminder is stamped
        assert reload(due.id).reminder_sent_at is None

        DatabaseManager(Booking).update(due.id, reminder_sent_at=to_db(at(MONDAY, 12)))
        assert service.send_due_reminders(now=at(MONDAY, 13)) == 0

    def test_run_due_reminders_in_calling_thread(self, provider, service, task_queue):
        first = create_booking_row(provider['member'], provider['event_type'], at(TUESDAY, 10))
        second = create_booking_row(provider['member'], provider['event_type'], at(TUESDAY, 11))
        task_queue.run_now.side_effect = [True, False]

        assert service.run_due_reminders(now=at(MONDAY, 12)) == 1
        assert [c.args for c in task_queue.run_now.call_args_list] == [
            ('send_reminder', first.id), ('send_reminder', second.id)
        ]
        task_queue.enqueue.assert_not_called()

    def test_reminders_disabled(self, provider, settings, task_queue):
        service = BookingService(settings.override(send_reminder_emails=False), task_queue=task_queue)
        create_booking_row(provider['member'], provider['event_type'], at(TUESDAY, 10))

        assert service.send_due_reminders(now=at(MONDAY, 12)) == 0
        task_queue.enqueue.assert_not_called()
