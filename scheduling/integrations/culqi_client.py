import requests
from typing import Dict, Optional
from config.config import Config
from scheduling.integrations.payment_base import ChargeResult, PaymentAdapter, register_payment_adapter
from scheduling.utils.logger import get_logger

logger = get_logger(__name__)

CULQI_API_BASE = "https://api.culqi.com/v2"
SUCCESSFUL_SALE = 'venta_exitosa'


@register_payment_adapter('culqi')
class CulqiClient(PaymentAdapter):
    """Card payments through the Culqi charges API"""

    def __init__(self, timeout: float = 10.0):
        self.secret_key = Config.CULQI_SECRET_KEY
        self.timeout = timeout
        if not self.secret_key:
            logger.warning("Culqi secret key not configured")

    def _post(self, endpoint: str, data: Dict) -> Optional[Dict]:
        response = requests.post(
            f"{CULQI_API_BASE}{endpoint}",
            json=data,
            headers={
                'Authorization': f"Bearer {self.secret_key}",
                'Content-Type': 'application/json',
            },
            timeout=self.timeout,
        )
        body = response.json() if response.content else {}
        if response.status_code >= 400:
            raise requests.exceptions.HTTPError(
                body.get('user_message') or body.get('merchant_message') or response.reason,
                response=response,
            )
        return body

    def charge(self, amount_cents: int, currency: str, payment_method_token: str,
               metadata: Dict = None) -> ChargeResult:
        metadata = dict(metadata or {})
        try:
            charge = self._post('/charges', {
                'amount': amount_cents,
                'currency_code': currency.upper(),
                'email': metadata.pop('email', None),
                'source_id': payment_method_token,
                'description': metadata.pop('description', 'Booking'),
                'metadata': {key: str(value) for key, value in metadata.items()},
            })
        except requests.exceptions.RequestException as e:
            logger.error(f"Error creating Culqi charge: {str(e)}")
            return ChargeResult(success=False, error=str(e))

        outcome = charge.get('outcome') or {}
        if outcome.get('type') == SUCCESSFUL_SALE:
            return ChargeResult(success=True, transaction_id=charge.get('id'))
        return ChargeResult(success=False, transaction_id=charge.get('id'),
                            error=outcome.get('merchant_message') or 'Payment failed')

    def refund(self, transaction_ref: str, amount_cents: int = None) -> bool:
        if amount_cents is None:
            logger.error(f"Culqi refund for {transaction_ref} needs an amount")
            return False
        try:
            self._post('/refunds', {
                'amount': amount_cents,
                'charge_id': transaction_ref,
                'reason': 'solicitud_comprador',
            })
            return True
        except requests.exceptions.RequestException as e:
            logger.error(f"Culqi refund failed: {str(e)}")
            return False
