import stripe
from typing import Dict
from config.config import Config
from scheduling.integrations.payment_base import ChargeResult, PaymentAdapter, register_payment_adapter
from scheduling.utils.logger import get_logger

logger = get_logger(__name__)

# Configure Stripe
stripe.api_key = Config.STRIPE_SECRET_KEY


@register_payment_adapter('stripe')
class StripeClient(PaymentAdapter):
    """Card payments through confirmed Stripe payment intents"""

    def __init__(self):
        self.api_key = Config.STRIPE_SECRET_KEY
        if not self.api_key:
            logger.warning("Stripe API key not configured")

    def charge(self, amount_cents: int, currency: str, payment_method_token: str,
               metadata: Dict = None) -> ChargeResult:
        """Create and confirm a payment intent in one call"""
        metadata = dict(metadata or {})
        description = metadata.pop('description', 'Booking')
        metadata.pop('email', None)
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=currency.lower(),
                payment_method=payment_method_token,
                confirm=True,
                description=description,
                metadata=metadata,
                automatic_payment_methods={"enabled": True, "allow_redirects": "never"}
            )
        except stripe.CardError as e:
            logger.warning(f"Stripe card declined: {str(e)}")
            return ChargeResult(success=False, error=e.user_message or str(e))
        except stripe.StripeError as e:
            logger.error(f"Error creating payment intent: {str(e)}")
            return ChargeResult(success=False, error='Payment processing error')

        if intent.status == 'succeeded':
            return ChargeResult(success=True, transaction_id=intent.id)
        return ChargeResult(success=False, transaction_id=intent.id, error='Payment failed')

    def refund(self, transaction_ref: str, amount_cents: int = None) -> bool:
        """Refund a payment intent, in full unless an amount is given"""
        try:
            refund_data = {"payment_intent": transaction_ref, "reason": "requested_by_customer"}
            if amount_cents:
                refund_data["amount"] = amount_cents

            stripe.Refund.create(**refund_data)
            return True
        except stripe.StripeError as e:
            logger.error(f"Error creating refund: {str(e)}")
            return False
