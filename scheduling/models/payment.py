from sqlalchemy import Column, String, Integer, ForeignKey, DateTime, Enum
from sqlalchemy.orm import relationship
import enum
from .base import BaseModel


class PaymentStatus(enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class Payment(BaseModel):
    __tablename__ = 'payments'

    booking_id = Column(Integer, ForeignKey('bookings.id'), nullable=False, index=True)

    # Payment details
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False, index=True)
    payment_provider = Column(String(20))  # stripe, culqi, manual
    payment_method = Column(String(50))

    # Provider reference (payment intent / charge id)
    external_transaction_id = Column(String(255), index=True)

    # Processing details
    paid_at = Column(DateTime)
    refunded_at = Column(DateTime)
    failure_reason = Column(String(500))

    booking = relationship("Booking", back_populates="payment")

    @property
    def completed(self):
        return self.status == PaymentStatus.COMPLETED

    def copy_completed(self):
        """Completed payment record for a rescheduled booking; nothing is re-charged"""
        return Payment(
            amount_cents=self.amount_cents,
            currency=self.currency,
            status=PaymentStatus.COMPLETED,
            payment_provider=self.payment_provider,
            payment_method=self.payment_method,
            external_transaction_id=self.external_transaction_id,
            paid_at=self.paid_at,
        )
