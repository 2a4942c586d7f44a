"""
Booking state machine: create, cancel, reschedule and close out bookings.

Every mutation runs in one transaction that starts by taking the member's
write lock, re-checks for overlapping confirmed bookings and then writes.
Side effects (email, calendar sync, refunds) are queued only after commit.
"""
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload, selectinload

from config.config import SchedulingSettings, load_settings
from scheduling.database import get_db, is_storage_conflict, lock_member
from scheduling.errors import (ConflictError, NotFoundError, PaymentError,
                               PolicyViolationError, ValidationError)
from scheduling.models import (Booking, BookingAnswer, BookingChange, Client, EventType,
                               Payment)
from scheduling.models.booking import (BookingPaymentStatus, BookingStatus, ChangeType,
                                       InitiatedBy)
from scheduling.models.event_type import CHOICE_TYPES, QuestionType
from scheduling.models.payment import PaymentStatus
from scheduling.services.availability_checker import (BOOKING_CONFLICT, OUTSIDE_SCHEDULE,
                                                      AvailabilityChecker, find_default_schedule)
from scheduling.services.conflict_resolver import ConflictResolver
from scheduling.services.payment_service import PaymentService
from scheduling.utils.logger import get_logger
from scheduling.utils.security import issue_booking_identifiers
from scheduling.utils.timeutils import from_db, get_timezone, parse_datetime, to_db, utcnow
from scheduling.utils.validators import validate_email, validate_phone

logger = get_logger(__name__)

CONFLICT_MESSAGE = "The requested time is no longer available"


class BookingService:
    """Transactional booking lifecycle for one settings value"""

    def __init__(self, settings: SchedulingSettings = None, task_queue=None,
                 payment_service: PaymentService = None):
        self.settings = settings or load_settings()
        self._task_queue = task_queue
        self.payments = payment_service or PaymentService(self.settings)

    @property
    def task_queue(self):
        if self._task_queue is None:
            from scheduling.services.task_queue import get_task_queue
            self._task_queue = get_task_queue(self.settings)
        return self._task_queue

    def _enqueue(self, name: str, *args):
        """Queue a side effect; a queue failure never undoes the booking"""
        try:
            self.task_queue.enqueue(name, *args)
        except Exception as e:
            logger.error(f"Failed to queue {name}{args}: {str(e)}")

    # Lookups

    def _load_event_type(self, db, event_type_id: int) -> EventType:
        event_type = (
            db.query(EventType)
            .options(joinedload(EventType.member), selectinload(EventType.booking_questions))
            .filter(EventType.id == event_type_id)
            .first()
        )
        if not event_type or not event_type.active:
            raise NotFoundError('Event type not found')
        member = event_type.member
        if not member.active or not member.accepts_bookings:
            raise ValidationError({'base': ['This provider is not accepting bookings']})
        return event_type

    def _load_booking(self, db, **criteria) -> Booking:
        booking = (
            db.query(Booking)
            .options(joinedload(Booking.event_type), joinedload(Booking.member),
                     joinedload(Booking.payment), selectinload(Booking.answers))
            .filter_by(**criteria)
            .first()
        )
        if not booking:
            raise NotFoundError()
        return booking

    def get_booking(self, uid: str) -> Booking:
        with get_db() as db:
            return self._load_booking(db, uid=uid)

    def get_booking_by_token(self, token: str, action: str = 'cancel') -> Booking:
        field = 'cancellation_token' if action == 'cancel' else 'reschedule_token'
        if not token:
            raise NotFoundError()
        with get_db() as db:
            return self._load_booking(db, **{field: token})

    # Validation

    @staticmethod
    def _add_error(errors: Dict[str, List[str]], field: str, message: str):
        errors.setdefault(field, []).append(message)

    def _validate_client(self, client: Dict, errors: Dict[str, List[str]]) -> Dict:
        client = client or {}
        cleaned = {
            'email': (client.get('email') or '').strip().lower(),
            'first_name': (client.get('first_name') or '').strip(),
            'last_name': (client.get('last_name') or '').strip(),
            'phone': None,
        }

        valid, error = validate_email(cleaned['email'])
        if not valid:
            self._add_error(errors, 'client.email', error)
        if not cleaned['first_name']:
            self._add_error(errors, 'client.first_name', "can't be blank")
        if not cleaned['last_name']:
            self._add_error(errors, 'client.last_name', "can't be blank")

        if client.get('phone'):
            valid, phone = validate_phone(client['phone'])
            if valid:
                cleaned['phone'] = phone
            else:
                self._add_error(errors, 'client.phone', phone)
        return cleaned

    def _validate_window(self, event_type: EventType, start: datetime, now: datetime,
                         errors: Dict[str, List[str]]):
        notice = event_type.minimum_notice_hours or 0
        if start <= now + timedelta(hours=notice):
            self._add_error(errors, 'start_time', f"must be at least {notice} hours from now")
        if start > now + timedelta(days=event_type.maximum_days_in_future):
            self._add_error(errors, 'start_time',
                            f"must be within {event_type.maximum_days_in_future} days from now")

    def _validate_answers(self, event_type: EventType, answers: Dict,
                          errors: Dict[str, List[str]]) -> Dict[int, str]:
        """Required questions answered and choice answers among the options"""
        given = {}
        for key, value in (answers or {}).items():
            try:
                given[int(key)] = '' if value is None else str(value).strip()
            except (TypeError, ValueError):
                self._add_error(errors, 'answers', f"'{key}' is not a question id")

        cleaned = {}
        for question in event_type.booking_questions:
            answer = given.get(question.id, '')
            if not answer:
                if question.required:
                    self._add_error(errors, f"answers.{question.id}", f"'{question.label}' is required")
                continue

            question_type = QuestionType(question.question_type)
            options = question.options_list
            if question_type in CHOICE_TYPES and options:
                picked = [a.strip() for a in answer.split(',')] if question_type == QuestionType.CHECKBOX else [answer]
                if any(choice not in options for choice in picked):
                    self._add_error(errors, f"answers.{question.id}", 'is not one of the available options')
                    continue
            elif question_type == QuestionType.EMAIL:
                valid, error = validate_email(answer)
                if not valid:
                    self._add_error(errors, f"answers.{question.id}", error)
                    continue
            cleaned[question.id] = answer
        return cleaned

    def _check_requested_time(self, member, event_type, start: datetime, timezone: str,
                              errors: Dict[str, List[str]], exclude_booking_id: int = None):
        """Schedule and internal-booking check; conflicts raise after field errors"""
        checker = AvailabilityChecker(member, event_type, self.settings)
        reason = checker.unavailability_reason(start, event_type.duration_minutes, timezone,
                                               exclude_booking_id)
        if reason == OUTSIDE_SCHEDULE:
            self._add_error(errors, 'start_time', 'is not within available hours')
        if errors:
            raise ValidationError(errors)
        if reason == BOOKING_CONFLICT:
            raise ConflictError(CONFLICT_MESSAGE)

    # Create

    def create_booking(self, event_type_id: int, start_time, client: Dict, timezone: str = None,
                       answers: Dict = None, notes: str = None, payment_provider: str = None,
                       payment_method_token: str = None, now: datetime = None) -> Booking:
        """Validate, optionally charge, then persist a confirmed booking.

        For event types that must be paid before booking, the charge happens
        before the atomic block and is refunded through the queue if the
        block fails.
        """
        now = now or utcnow()

        with get_db() as db:
            event_type = self._load_event_type(db, event_type_id)
            schedule = find_default_schedule(db, event_type.member_id)
        member = event_type.member

        tz_name = timezone or (schedule.timezone if schedule else self.settings.default_timezone)
        tz = get_timezone(tz_name)
        start = parse_datetime(start_time, tz)
        end = start + timedelta(minutes=event_type.duration_minutes)

        errors = {}
        client_data = self._validate_client(client, errors)
        self._validate_window(event_type, start, now, errors)
        cleaned_answers = self._validate_answers(event_type, answers, errors)
        if event_type.payment_gates_booking and not (payment_provider and payment_method_token):
            self._add_error(errors, 'payment', 'is required to book this event')
        self._check_requested_time(member, event_type, start, tz_name, errors)

        charge = None
        if event_type.requires_payment and payment_provider and payment_method_token:
            charge = self.payments.charge_for_booking(
                event_type, payment_provider, payment_method_token, client_data['email']
            )

        try:
            with get_db() as db:
                if not lock_member(db, member.id):
                    raise NotFoundError('Event type not found')

                resolver = ConflictResolver(db, member.id, event_type, {}, tz, self.settings)
                if resolver.has_buffered_conflict(start, end):
                    raise ConflictError(CONFLICT_MESSAGE)
                if event_type.payment_gates_booking and charge is None:
                    raise PaymentError('Payment must be completed before booking')

                booking = Booking(
                    member_id=member.id,
                    event_type_id=event_type.id,
                    client_id=self._find_or_create_client(db, client_data, tz_name).id,
                    start_time=to_db(start),
                    end_time=to_db(end),
                    timezone=tz_name,
                    status=BookingStatus.CONFIRMED,
                    payment_status=self._initial_payment_status(event_type, charge),
                    notes=notes,
                    external_calendar_events={},
                    answers=[
                        BookingAnswer(booking_question_id=question_id, answer=answer)
                        for question_id, answer in cleaned_answers.items()
                    ],
                    **issue_booking_identifiers()
                )
                if charge is not None:
                    booking.payment = Payment(
                        amount_cents=event_type.price_cents,
                        currency=event_type.price_currency,
                        status=PaymentStatus.COMPLETED,
                        payment_provider=payment_provider,
                        payment_method='manual' if payment_provider == 'manual' else 'card',
                        external_transaction_id=charge.transaction_id,
                        paid_at=datetime.utcnow(),
                    )
                db.add(booking)
                db.flush()
        except Exception as e:
            if charge is not None:
                logger.warning(f"Booking for charge {charge.transaction_id} failed; queueing refund")
                self._enqueue('refund_charge', payment_provider, charge.transaction_id,
                              event_type.price_cents)
            if isinstance(e, SQLAlchemyError) and is_storage_conflict(e):
                logger.warning(f"Storage conflict creating booking for member {member.id}: {str(e)}")
                raise ConflictError(CONFLICT_MESSAGE) from e
            raise

        logger.info(f"Created booking {booking.uid} for member {member.id} at {start.isoformat()}")
        self._enqueue('send_confirmation', booking.id)
        self._enqueue('calendar_sync', booking.id, 'create')
        return booking

    @staticmethod
    def _initial_payment_status(event_type: EventType, charge) -> BookingPaymentStatus:
        if charge is not None:
            return BookingPaymentStatus.PAID
        if event_type.payment_optional:
            return BookingPaymentStatus.PENDING
        return BookingPaymentStatus.NOT_REQUIRED

    @staticmethod
    def _find_or_create_client(db, data: Dict, timezone: str) -> Client:
        client = db.query(Client).filter_by(email=data['email']).first()
        if client is None:
            client = Client(
                email=data['email'],
                first_name=data['first_name'],
                last_name=data['last_name'],
                phone=data['phone'],
                timezone=timezone,
            )
            db.add(client)
            db.flush()
        elif data['phone'] and not client.phone:
            client.phone = data['phone']
        return client

    # Cancel

    def cancel_booking(self, token: str, reason: str = None,
                       initiated_by: InitiatedBy = InitiatedBy.CLIENT,
                       now: datetime = None) -> Booking:
        """Cancel through the booking's cancellation token"""
        booking = self.get_booking_by_token(token, 'cancel')
        return self._cancel(booking.id, booking.member_id, reason, initiated_by, now or utcnow())

    def cancel_booking_by_uid(self, uid: str, reason: str = None,
                              initiated_by: InitiatedBy = InitiatedBy.MEMBER,
                              now: datetime = None) -> Booking:
        booking = self.get_booking(uid)
        return self._cancel(booking.id, booking.member_id, reason, initiated_by, now or utcnow())

    def _cancel(self, booking_id: int, member_id: int, reason: Optional[str],
                initiated_by: InitiatedBy, now: datetime) -> Booking:
        refund_payment_id = None
        try:
            with get_db() as db:
                lock_member(db, member_id)
                booking = self._load_booking(db, id=booking_id)

                violation = booking.policy_violation('cancel', now)
                if violation:
                    message, hours = violation
                    raise PolicyViolationError(message, policy_hours=hours)

                booking.changes.append(BookingChange(
                    change_type=ChangeType.CANCELLED,
                    old_start_time=booking.start_time,
                    old_end_time=booking.end_time,
                    reason=reason,
                    initiated_by=initiated_by,
                ))
                booking.transition_to(BookingStatus.CANCELLED)
                booking.cancellation_reason = reason

                if booking.payment is not None and booking.payment.completed:
                    refund_payment_id = booking.payment.id
                db.flush()
        except SQLAlchemyError as e:
            if is_storage_conflict(e):
                raise ConflictError('The booking was changed by another request') from e
            raise

        logger.info(f"Cancelled booking {booking.uid} ({initiated_by.value})")
        if refund_payment_id is not None:
            self._enqueue('refund_payment', refund_payment_id)
        self._enqueue('send_cancellation', booking.id)
        self._enqueue('calendar_sync', booking.id, 'delete')
        return booking

    # Reschedule

    def reschedule_booking(self, token: str, new_start_time, reason: str = None,
                           initiated_by: InitiatedBy = InitiatedBy.CLIENT,
                           now: datetime = None) -> Booking:
        """Move a booking to a new start through its reschedule token.

        Returns the new confirmed booking; the original is marked rescheduled.
        """
        now = now or utcnow()
        original = self.get_booking_by_token(token, 'reschedule')

        violation = original.policy_violation('reschedule', now)
        if violation:
            message, hours = violation
            raise PolicyViolationError(message, policy_hours=hours)

        event_type = original.event_type
        tz = get_timezone(original.timezone)
        new_start = parse_datetime(new_start_time, tz)
        new_end = new_start + timedelta(minutes=event_type.duration_minutes)

        errors = {}
        self._validate_window(event_type, new_start, now, errors)
        self._check_requested_time(original.member, event_type, new_start, original.timezone,
                                   errors, exclude_booking_id=original.id)

        try:
            with get_db() as db:
                lock_member(db, original.member_id)
                booking = self._load_booking(db, id=original.id)

                violation = booking.policy_violation('reschedule', now)
                if violation:
                    message, hours = violation
                    raise PolicyViolationError(message, policy_hours=hours)

                resolver = ConflictResolver(db, booking.member_id, booking.event_type, {}, tz,
                                            self.settings)
                if resolver.has_buffered_conflict(new_start, new_end, exclude_booking_id=booking.id):
                    raise ConflictError(CONFLICT_MESSAGE)

                booking.changes.append(BookingChange(
                    change_type=ChangeType.RESCHEDULED,
                    old_start_time=booking.start_time,
                    old_end_time=booking.end_time,
                    new_start_time=to_db(new_start),
                    new_end_time=to_db(new_end),
                    reason=reason,
                    initiated_by=initiated_by,
                ))

                new_booking = booking.build_rescheduled(
                    start_time=to_db(new_start),
                    end_time=to_db(new_end),
                    **issue_booking_identifiers()
                )
                if booking.payment is not None and booking.payment.completed:
                    new_booking.payment = booking.payment.copy_completed()

                booking.transition_to(BookingStatus.RESCHEDULED)
                db.add(new_booking)
                db.flush()
        except SQLAlchemyError as e:
            if is_storage_conflict(e):
                raise ConflictError(CONFLICT_MESSAGE) from e
            raise

        logger.info(f"Rescheduled booking {booking.uid} to {new_booking.uid} at {new_start.isoformat()}")
        self._enqueue('send_reschedule', booking.id, new_booking.id)
        self._enqueue('calendar_sync', booking.id, 'reschedule', new_booking.id)
        return new_booking

    # Completion

    def _close_out(self, booking_id: int, status: BookingStatus, change_type: ChangeType,
                   reason: Optional[str], initiated_by: InitiatedBy, now: datetime) -> Booking:
        with get_db() as db:
            booking = self._load_booking(db, id=booking_id)
            lock_member(db, booking.member_id)
            db.refresh(booking)

            if from_db(booking.start_time) > now:
                raise ValidationError({'status': ['booking has not started yet']})

            booking.changes.append(BookingChange(
                change_type=change_type,
                old_start_time=booking.start_time,
                old_end_time=booking.end_time,
                reason=reason,
                initiated_by=initiated_by,
            ))
            booking.transition_to(status)
            db.flush()

        logger.info(f"Booking {booking.uid} marked {status.value}")
        return booking

    def mark_completed(self, booking_id: int, initiated_by: InitiatedBy = InitiatedBy.MEMBER,
                       now: datetime = None) -> Booking:
        return self._close_out(booking_id, BookingStatus.COMPLETED, ChangeType.COMPLETED,
                               None, initiated_by, now or utcnow())

    def mark_no_show(self, booking_id: int, reason: str = None,
                     initiated_by: InitiatedBy = InitiatedBy.MEMBER,
                     now: datetime = None) -> Booking:
        return self._close_out(booking_id, BookingStatus.NO_SHOW, ChangeType.NO_SHOW,
                               reason, initiated_by, now or utcnow())

    def complete_past_bookings(self, now: datetime = None) -> int:
        """Mark every confirmed booking that has ended as completed"""
        now = now or utcnow()
        with get_db() as db:
            ids = [
                row.id for row in db.query(Booking.id).filter(
                    Booking.status == BookingStatus.CONFIRMED,
                    Booking.end_time <= to_db(now),
                ).all()
            ]

        completed = 0
        for booking_id in ids:
            try:
                self._close_out(booking_id, BookingStatus.COMPLETED, ChangeType.COMPLETED,
                                None, InitiatedBy.SYSTEM, now)
                completed += 1
            except ValidationError as e:
                logger.warning(f"Skipped completing booking {booking_id}: {e.message}")

        logger.info(f"Completed {completed} past bookings")
        return completed

    def due_reminder_ids(self, now: datetime = None) -> List[int]:
        """Confirmed bookings inside the reminder window that have not been reminded.

        ``reminder_sent_at`` is only set once the reminder has gone out, so a
        failed reminder is picked up again on the next pass.
        """
        if not self.settings.send_reminder_emails:
            return []

        now = now or utcnow()
        horizon = now + timedelta(hours=self.settings.reminder_hours_before)
        with get_db() as db:
            rows = db.query(Booking.id).filter(
                Booking.status == BookingStatus.CONFIRMED,
                Booking.reminder_sent_at.is_(None),
                Booking.start_time > to_db(now),
                Booking.start_time <= to_db(horizon),
            ).order_by(Booking.start_time).all()
        return [row.id for row in rows]

    def send_due_reminders(self, now: datetime = None) -> int:
        """Queue reminders on the background queue"""
        ids = self.due_reminder_ids(now)
        for booking_id in ids:
            self._enqueue('send_reminder', booking_id)
        logger.info(f"Queued {len(ids)} booking reminders")
        return len(ids)

    def run_due_reminders(self, now: datetime = None) -> int:
        """Send due reminders in the calling thread, returning how many went out"""
        ids = self.due_reminder_ids(now)
        sent = sum(1 for booking_id in ids if self.task_queue.run_now('send_reminder', booking_id))
        if sent < len(ids):
            logger.warning(f"{len(ids) - sent} of {len(ids)} reminders failed; they will be retried")
        logger.info(f"Sent {sent} booking reminders")
        return sent
