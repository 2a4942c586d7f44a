from sqlalchemy import Column, String, Integer, Boolean, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import relationship
import enum
import json
from .base import BaseModel


class QuestionType(enum.Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    EMAIL = "email"
    PHONE = "phone"
    URL = "url"
    SELECT = "select"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    NUMBER = "number"
    DATE = "date"


CHOICE_TYPES = (QuestionType.SELECT, QuestionType.RADIO, QuestionType.CHECKBOX)


class EventType(BaseModel):
    """Booking template: duration, buffers, booking windows, payment and policy"""
    __tablename__ = 'event_types'
    __table_args__ = (
        UniqueConstraint('member_id', 'slug', name='uq_event_type_member_slug'),
    )

    member_id = Column(Integer, ForeignKey('members.id'), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    slug = Column(String(100), nullable=False)
    description = Column(Text)
    active = Column(Boolean, default=True, nullable=False, index=True)

    # Timing
    duration_minutes = Column(Integer, nullable=False)
    buffer_before_minutes = Column(Integer, default=0, nullable=False)
    buffer_after_minutes = Column(Integer, default=0, nullable=False)
    minimum_notice_hours = Column(Integer, default=0, nullable=False)
    maximum_days_in_future = Column(Integer, default=60, nullable=False)

    # Pricing
    price_cents = Column(Integer, default=0, nullable=False)
    price_currency = Column(String(3), default='PEN', nullable=False)
    requires_payment = Column(Boolean, default=False, nullable=False)
    payment_required_to_book = Column(Boolean, default=True, nullable=False)

    # Policy (read live at cancel/reschedule time)
    allow_cancellation = Column(Boolean, default=True, nullable=False)
    cancellation_policy_hours = Column(Integer, default=24, nullable=False)
    allow_rescheduling = Column(Boolean, default=True, nullable=False)
    rescheduling_policy_hours = Column(Integer, default=24, nullable=False)

    # Relationships
    member = relationship("Member", back_populates="event_types")
    booking_questions = relationship("BookingQuestion", back_populates="event_type",
                                     cascade='all, delete-orphan',
                                     order_by="BookingQuestion.position")
    bookings = relationship("Booking", back_populates="event_type", lazy='dynamic')

    @property
    def payment_gates_booking(self):
        return bool(self.requires_payment and self.payment_required_to_book)

    @property
    def payment_optional(self):
        return bool(self.requires_payment and not self.payment_required_to_book)

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'slug': self.slug,
            'description': self.description,
            'duration_minutes': self.duration_minutes,
            'price_cents': self.price_cents,
            'price_currency': self.price_currency,
            'requires_payment': self.requires_payment,
            'payment_required_to_book': self.payment_required_to_book,
            'minimum_notice_hours': self.minimum_notice_hours,
            'maximum_days_in_future': self.maximum_days_in_future,
            'allow_cancellation': self.allow_cancellation,
            'cancellation_policy_hours': self.cancellation_policy_hours,
            'allow_rescheduling': self.allow_rescheduling,
            'rescheduling_policy_hours': self.rescheduling_policy_hours,
            'questions': [q.to_dict() for q in self.booking_questions],
        }


class BookingQuestion(BaseModel):
    __tablename__ = 'booking_questions'

    event_type_id = Column(Integer, ForeignKey('event_types.id'), nullable=False, index=True)
    label = Column(String(255), nullable=False)
    question_type = Column(String(20), default=QuestionType.TEXT.value, nullable=False)
    required = Column(Boolean, default=False, nullable=False)
    position = Column(Integer, default=0, nullable=False)
    options = Column(Text)  # JSON list for choice types
    help_text = Column(Text)

    event_type = relationship("EventType", back_populates="booking_questions")

    @property
    def options_list(self):
        if not self.options:
            return []
        try:
            return json.loads(self.options)
        except ValueError:
            return []

    def to_dict(self):
        return {
            'id': self.id,
            'label': self.label,
            'question_type': self.question_type,
            'required': self.required,
            'options': self.options_list,
            'help_text': self.help_text,
        }
