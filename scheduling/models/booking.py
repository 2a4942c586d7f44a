from sqlalchemy import Column, String, Integer, ForeignKey, DateTime, Text, JSON, Enum
from sqlalchemy.orm import relationship
import enum
from datetime import timedelta
from typing import Optional, Tuple
from .base import BaseModel
from scheduling.errors import ValidationError
from scheduling.utils.timeutils import from_db, get_timezone


class BookingStatus(enum.Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


class BookingPaymentStatus(enum.Enum):
    NOT_REQUIRED = "not_required"
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class ChangeType(enum.Enum):
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


class InitiatedBy(enum.Enum):
    CLIENT = "client"
    MEMBER = "member"
    SYSTEM = "system"


# Every state other than confirmed is terminal for its booking
ALLOWED_TRANSITIONS = {
    BookingStatus.CONFIRMED: {
        BookingStatus.CANCELLED,
        BookingStatus.RESCHEDULED,
        BookingStatus.COMPLETED,
        BookingStatus.NO_SHOW,
    },
}


class Booking(BaseModel):
    __tablename__ = 'bookings'

    member_id = Column(Integer, ForeignKey('members.id'), nullable=False, index=True)
    event_type_id = Column(Integer, ForeignKey('event_types.id'), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey('clients.id'), nullable=False, index=True)

    # Time (naive UTC)
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)
    timezone = Column(String(64), nullable=False)

    # Status
    status = Column(Enum(BookingStatus), default=BookingStatus.CONFIRMED, nullable=False, index=True)
    payment_status = Column(Enum(BookingPaymentStatus), default=BookingPaymentStatus.NOT_REQUIRED,
                            nullable=False, index=True)
    cancellation_reason = Column(String(500))
    notes = Column(Text)

    # Public identifiers
    uid = Column(String(36), unique=True, nullable=False, index=True)
    cancellation_token = Column(String(64), unique=True, nullable=False)
    reschedule_token = Column(String(64), unique=True, nullable=False)
    rescheduled_from_id = Column(Integer, ForeignKey('bookings.id'), index=True)

    # External calendar event ids keyed by provider name
    external_calendar_events = Column(JSON, default=dict)
    reminder_sent_at = Column(DateTime)

    # Relationships
    member = relationship("Member", back_populates="bookings")
    event_type = relationship("EventType", back_populates="bookings")
    client = relationship("Client", back_populates="bookings")
    rescheduled_from = relationship("Booking", remote_side="Booking.id")
    answers = relationship("BookingAnswer", back_populates="booking", cascade='all, delete-orphan')
    changes = relationship("BookingChange", back_populates="booking", cascade='all, delete-orphan',
                           order_by="BookingChange.id")
    payment = relationship("Payment", back_populates="booking", uselist=False)

    @property
    def duration_minutes(self):
        return int((self.end_time - self.start_time).total_seconds() // 60)

    def can_transition_to(self, status: BookingStatus) -> bool:
        return status in ALLOWED_TRANSITIONS.get(self.status, set())

    def transition_to(self, status: BookingStatus):
        if not self.can_transition_to(status):
            raise ValidationError(
                {'status': [f"cannot change from {self.status.value} to {status.value}"]}
            )
        self.status = status

    def policy_violation(self, action: str, now) -> Optional[Tuple[str, Optional[int]]]:
        """Why the client may not cancel or reschedule right now, or None.

        ``action`` is ``'cancel'`` or ``'reschedule'``. Policy fields are read
        from the event type as it is now, not as it was at booking time.
        """
        event_type = self.event_type
        if action == 'cancel':
            allowed, hours, verb = event_type.allow_cancellation, event_type.cancellation_policy_hours, 'cancelled'
        else:
            allowed, hours, verb = event_type.allow_rescheduling, event_type.rescheduling_policy_hours, 'rescheduled'

        if self.status != BookingStatus.CONFIRMED:
            return f"This booking is {self.status.value} and can no longer be {verb}", None
        if not allowed:
            return f"Bookings for this event cannot be {verb}", None
        if hours and from_db(self.start_time) <= now + timedelta(hours=hours):
            return f"Bookings can only be {verb} more than {hours} hours before they start", hours
        return None

    def build_rescheduled(self, start_time, end_time, uid, cancellation_token, reschedule_token):
        """New confirmed booking carrying this one's fields to a new time.

        The original booking is left untouched; the caller retires it.
        """
        return Booking(
            member_id=self.member_id,
            event_type_id=self.event_type_id,
            client_id=self.client_id,
            start_time=start_time,
            end_time=end_time,
            timezone=self.timezone,
            status=BookingStatus.CONFIRMED,
            payment_status=self.payment_status,
            notes=self.notes,
            uid=uid,
            cancellation_token=cancellation_token,
            reschedule_token=reschedule_token,
            rescheduled_from_id=self.id,
            external_calendar_events={},
            answers=[
                BookingAnswer(booking_question_id=a.booking_question_id, answer=a.answer)
                for a in self.answers
            ],
        )

    def local_start(self):
        return from_db(self.start_time).astimezone(get_timezone(self.timezone))

    def local_end(self):
        return from_db(self.end_time).astimezone(get_timezone(self.timezone))

    def to_dict(self):
        return {
            'uid': self.uid,
            'status': self.status.value,
            'payment_status': self.payment_status.value,
            'start_time': self.local_start().isoformat(),
            'end_time': self.local_end().isoformat(),
            'timezone': self.timezone,
            'duration_minutes': self.duration_minutes,
            'event_type_id': self.event_type_id,
            'member_id': self.member_id,
            'rescheduled_from_id': self.rescheduled_from_id,
            'cancellation_reason': self.cancellation_reason,
        }


class BookingAnswer(BaseModel):
    __tablename__ = 'booking_answers'

    booking_id = Column(Integer, ForeignKey('bookings.id'), nullable=False, index=True)
    booking_question_id = Column(Integer, ForeignKey('booking_questions.id'), nullable=False, index=True)
    answer = Column(Text)

    booking = relationship("Booking", back_populates="answers")
    question = relationship("BookingQuestion")


class BookingChange(BaseModel):
    """Append-only audit record of a status change"""
    __tablename__ = 'booking_changes'

    booking_id = Column(Integer, ForeignKey('bookings.id'), nullable=False, index=True)
    change_type = Column(Enum(ChangeType), nullable=False)
    old_start_time = Column(DateTime)
    old_end_time = Column(DateTime)
    new_start_time = Column(DateTime)
    new_end_time = Column(DateTime)
    reason = Column(Text)
    initiated_by = Column(Enum(InitiatedBy), nullable=False)

    booking = relationship("Booking", back_populates="changes")
