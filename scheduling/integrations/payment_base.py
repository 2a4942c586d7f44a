"""
Payment adapter interface and provider registry.

Booking code asks the registry for the adapter named by the payment
provider and only ever calls ``charge`` and ``refund`` on it.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional, Type
from uuid import uuid4

from scheduling.utils.logger import get_logger

logger = get_logger(__name__)

_REGISTRY: Dict[str, Type['PaymentAdapter']] = {}


@dataclass(frozen=True)
class ChargeResult:
    success: bool
    transaction_id: Optional[str] = None
    error: Optional[str] = None


class PaymentAdapter(ABC):
    provider: str = None

    @abstractmethod
    def charge(self, amount_cents: int, currency: str, payment_method_token: str,
               metadata: Dict = None) -> ChargeResult:
        """Charge the payment method; declines come back as ``success=False``"""

    @abstractmethod
    def refund(self, transaction_ref: str, amount_cents: int = None) -> bool:
        """Refund a settled charge, True on success"""


def register_payment_adapter(provider: str):
    def decorator(cls):
        cls.provider = provider
        _REGISTRY[provider] = cls
        return cls
    return decorator


def get_payment_adapter(provider: str) -> PaymentAdapter:
    try:
        adapter_class = _REGISTRY[provider]
    except KeyError:
        raise ValueError(f"Unsupported payment provider: {provider}")
    return adapter_class()


def registered_payment_providers():
    return sorted(_REGISTRY)


@register_payment_adapter('manual')
class ManualPaymentClient(PaymentAdapter):
    """Payments settled outside the system (cash, bank transfer)"""

    def charge(self, amount_cents: int, currency: str, payment_method_token: str,
               metadata: Dict = None) -> ChargeResult:
        reference = payment_method_token or f"manual-{uuid4().hex[:12]}"
        logger.info(f"Recorded manual payment {reference} of {amount_cents} {currency}")
        return ChargeResult(success=True, transaction_id=reference)

    def refund(self, transaction_ref: str, amount_cents: int = None) -> bool:
        logger.info(f"Manual refund recorded for {transaction_ref}")
        return True
