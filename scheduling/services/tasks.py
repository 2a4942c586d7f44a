"""Side effect handlers run by the task queue after a booking commits.

Every handler raises on failure so the queue retries it, and every handler
is safe to run more than once for the same arguments.
"""
from typing import Callable, Dict

from config.config import SchedulingSettings, load_settings
from scheduling.services.calendar_sync_service import CalendarSyncService
from scheduling.services.notification_service import NotificationService
from scheduling.services.payment_service import PaymentService
from scheduling.utils.logger import get_logger

logger = get_logger(__name__)


class BookingTasks:

    def __init__(self, settings: SchedulingSettings = None):
        self.settings = settings or load_settings()
        self.notifications = NotificationService(self.settings)
        self.calendar = CalendarSyncService(self.settings)
        self.payments = PaymentService(self.settings)

    def handlers(self) -> Dict[str, Callable]:
        return {
            'send_confirmation': self.send_confirmation,
            'send_cancellation': self.send_cancellation,
            'send_reschedule': self.send_reschedule,
            'send_reminder': self.send_reminder,
            'calendar_sync': self.calendar_sync,
            'refund_payment': self.refund_payment,
            'refund_charge': self.refund_charge,
        }

    def exhausted_handlers(self) -> Dict[str, Callable]:
        """Called once a task has used up its retries"""
        return {
            'refund_payment': self.alert_refund_payment_failed,
            'refund_charge': self.alert_refund_charge_failed,
        }

    def send_confirmation(self, booking_id: int):
        self.notifications.send('confirmation', booking_id)

    def send_cancellation(self, booking_id: int):
        self.notifications.send('cancellation', booking_id)

    def send_reschedule(self, old_booking_id: int, new_booking_id: int):
        self.notifications.send('reschedule', old_booking_id, new_booking_id)

    def send_reminder(self, booking_id: int):
        self.notifications.send('reminder', booking_id)

    def calendar_sync(self, booking_id: int, action: str, new_booking_id: int = None):
        self.calendar.sync(booking_id, action, new_booking_id)

    def refund_payment(self, payment_id: int):
        self.payments.refund_payment(payment_id)

    def refund_charge(self, provider: str, transaction_id: str, amount_cents: int = None):
        self.payments.refund_charge(provider, transaction_id, amount_cents)

    def alert_refund_payment_failed(self, attempts: int, error: Exception, payment_id: int):
        self.notifications.notify_admin_refund_failure(
            f"Payment {payment_id} could not be refunded", attempts, str(error)
        )

    def alert_refund_charge_failed(self, attempts: int, error: Exception, provider: str,
                                   transaction_id: str, amount_cents: int = None):
        self.notifications.notify_admin_refund_failure(
            f"{provider} charge {transaction_id} ({amount_cents} cents) was taken for a booking "
            f"that was never created and could not be refunded",
            attempts, str(error)
        )
