from .calendar_base import CalendarAdapter, get_calendar_adapter, registered_calendar_providers
from .payment_base import (ChargeResult, PaymentAdapter, ManualPaymentClient, get_payment_adapter,
                           registered_payment_providers)
from .stripe_client import StripeClient
from .culqi_client import CulqiClient
from .google_calendar_client import GoogleCalendarClient
from .outlook_calendar_client import OutlookCalendarClient
from .twilio_client import TwilioClient
from .sendgrid_client import SendGridClient

__all__ = [
    'CalendarAdapter', 'get_calendar_adapter', 'registered_calendar_providers',
    'ChargeResult', 'PaymentAdapter', 'get_payment_adapter', 'registered_payment_providers',
    'ManualPaymentClient', 'StripeClient', 'CulqiClient', 'GoogleCalendarClient', 'OutlookCalendarClient',
    'TwilioClient', 'SendGridClient'
]
