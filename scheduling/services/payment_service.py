from datetime import datetime
from config.config import SchedulingSettings, load_settings
from scheduling.database import get_db
from scheduling.errors import ExternalIntegrationError, NotFoundError, PaymentError, ValidationError
from scheduling.integrations import ChargeResult, get_payment_adapter, registered_payment_providers
from scheduling.models import Payment
from scheduling.models.booking import BookingPaymentStatus
from scheduling.models.payment import PaymentStatus
from scheduling.utils.logger import get_logger

logger = get_logger(__name__)


class PaymentService:
    """Charges and refunds through the registered payment adapters"""

    def __init__(self, settings: SchedulingSettings = None):
        self.settings = settings or load_settings()

    def _adapter(self, provider: str):
        if provider not in registered_payment_providers():
            raise ValidationError({'payment_provider': [f"'{provider}' is not supported"]})
        return get_payment_adapter(provider)

    def charge_for_booking(self, event_type, provider: str, payment_method_token: str,
                           client_email: str) -> ChargeResult:
        """Charge the event type price; a decline raises PaymentError"""
        adapter = self._adapter(provider)
        result = adapter.charge(
            event_type.price_cents,
            event_type.price_currency,
            payment_method_token,
            {
                'description': f"Booking: {event_type.title}",
                'email': client_email,
                'event_type_id': event_type.id,
                'member_id': event_type.member_id,
            },
        )
        if not result.success:
            logger.warning(f"{provider} charge declined for event type {event_type.id}: {result.error}")
            raise PaymentError(result.error or 'Payment failed')

        logger.info(f"Charged {event_type.price_cents} {event_type.price_currency} via {provider} "
                    f"({result.transaction_id})")
        return result

    def refund_payment(self, payment_id: int):
        """Refund a completed payment and mark it and its booking refunded.

        Already refunded payments are left alone, so the task can be retried.
        """
        with get_db() as db:
            payment = db.query(Payment).filter_by(id=payment_id).first()
            if not payment:
                raise NotFoundError(f"Payment {payment_id} not found")
            if payment.status == PaymentStatus.REFUNDED:
                logger.info(f"Payment {payment_id} already refunded")
                return
            if payment.status != PaymentStatus.COMPLETED:
                logger.warning(f"Payment {payment_id} is {payment.status.value}; nothing to refund")
                return

            if payment.external_transaction_id:
                adapter = get_payment_adapter(payment.payment_provider or 'manual')
                if not adapter.refund(payment.external_transaction_id, payment.amount_cents):
                    raise ExternalIntegrationError(
                        f"{payment.payment_provider} refund failed for payment {payment_id}"
                    )

            payment.status = PaymentStatus.REFUNDED
            payment.refunded_at = datetime.utcnow()
            if payment.booking is not None:
                payment.booking.payment_status = BookingPaymentStatus.REFUNDED

        logger.info(f"Payment refunded successfully for payment {payment_id}")

    def refund_charge(self, provider: str, transaction_id: str, amount_cents: int = None):
        """Refund a charge that never got a booking attached"""
        adapter = get_payment_adapter(provider)
        if not adapter.refund(transaction_id, amount_cents):
            raise ExternalIntegrationError(f"{provider} refund failed for charge {transaction_id}")
        logger.info(f"Refunded orphaned {provider} charge {transaction_id}")
