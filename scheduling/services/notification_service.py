from typing import Dict
from sqlalchemy.orm import joinedload
from config.config import SchedulingSettings, load_settings
from scheduling.database import get_db
from scheduling.errors import ExternalIntegrationError, NotFoundError
from scheduling.models import Booking
from scheduling.models.booking import BookingStatus
from scheduling.integrations import TwilioClient, SendGridClient
from scheduling.utils.logger import get_logger
from scheduling.utils.timeutils import to_db, utcnow

logger = get_logger(__name__)

KINDS = ('confirmation', 'cancellation', 'reschedule', 'reminder')


class NotificationService:
    """Booking emails (SendGrid) and optional SMS (Twilio).

    Email failures raise ExternalIntegrationError so the task queue retries
    them; SMS is best effort and only logged.
    """

    def __init__(self, settings: SchedulingSettings = None):
        self.settings = settings or load_settings()
        self.twilio = TwilioClient()
        self.sendgrid = SendGridClient()

    def _load_booking(self, db, booking_id: int) -> Booking:
        booking = (
            db.query(Booking)
            .options(joinedload(Booking.event_type), joinedload(Booking.member),
                     joinedload(Booking.client))
            .filter(Booking.id == booking_id)
            .first()
        )
        if not booking:
            raise NotFoundError(f"Booking {booking_id} not found")
        return booking

    def booking_details(self, booking: Booking) -> Dict:
        local_start = booking.local_start()
        return {
            'uid': booking.uid,
            'event_title': booking.event_type.title,
            'member_name': booking.member.full_name,
            'when': local_start.strftime('%A, %B %d, %Y at %I:%M %p'),
            'timezone': booking.timezone,
            'duration_minutes': booking.duration_minutes,
            'cancel_url': f"{self.settings.app_url}/bookings/cancel/{booking.cancellation_token}",
            'reschedule_url': f"{self.settings.app_url}/bookings/reschedule/{booking.reschedule_token}",
        }

    def _enabled(self, kind: str) -> bool:
        if kind == 'reminder':
            return self.settings.send_reminder_emails
        return self.settings.send_confirmation_emails

    def send(self, kind: str, booking_id: int, related_booking_id: int = None):
        """Send one booking notification.

        ``related_booking_id`` is the new booking for ``reschedule``.
        """
        if kind not in KINDS:
            raise ValueError(f"Unknown notification kind: {kind}")
        if not self._enabled(kind):
            logger.info(f"Skipping {kind} notification for booking {booking_id}; disabled")
            return

        with get_db() as db:
            booking = self._load_booking(db, booking_id)
            if kind == 'reminder' and (booking.reminder_sent_at is not None
                                     or booking.status != BookingStatus.CONFIRMED):
                logger.info(f"Skipping reminder for booking {booking.uid}; already sent or not confirmed")
                return

            client = booking.client
            details = self.booking_details(booking)

            if kind == 'confirmation':
                result = self.sendgrid.send_booking_confirmation(client.email, client.full_name, details)
            elif kind == 'cancellation':
                result = self.sendgrid.send_booking_cancellation(
                    client.email, client.full_name, details, booking.cancellation_reason
                )
            elif kind == 'reschedule':
                new_booking = self._load_booking(db, related_booking_id)
                new_details = self.booking_details(new_booking)
                result = self.sendgrid.send_booking_rescheduled(
                    client.email, client.full_name, details, new_details
                )
                details = new_details
            else:
                result = self.sendgrid.send_booking_reminder(
                    client.email, client.full_name, details, self.settings.reminder_hours_before
                )

            if not result:
                raise ExternalIntegrationError(f"Failed to email {kind} for booking {booking.uid}")
            if kind == 'reminder':
                booking.reminder_sent_at = to_db(utcnow())

            if self.settings.enable_sms_notifications and client.phone:
                self._send_sms(kind, client.phone, details)

        logger.info(f"Sent {kind} notification for booking {booking_id}")

    def _send_sms(self, kind: str, phone: str, details: Dict):
        if kind == 'confirmation':
            sent = self.twilio.send_booking_confirmation(phone, details)
        elif kind == 'cancellation':
            sent = self.twilio.send_booking_cancellation(phone, details)
        elif kind == 'reschedule':
            sent = self.twilio.send_booking_rescheduled(phone, details)
        else:
            sent = self.twilio.send_booking_reminder(phone, details, self.settings.reminder_hours_before)

        if not sent:
            logger.warning(f"SMS {kind} notification to {phone} was not delivered")

    def notify_admin_refund_failure(self, description: str, attempts: int, error: str):
        """Alert an operator that a refund could not be completed"""
        subject = "URGENT: Refund failed"
        content = f"""
        Refund Failure Alert:

        {description}
        Attempts: {attempts}
        Last error: {error}

        The customer has not been refunded. Please complete the refund manually.
        """

        sent = self.sendgrid.send_admin_alert(self.settings.admin_email, subject, content)

        if self.settings.admin_phone:
            self.twilio.send_sms(
                self.settings.admin_phone,
                "URGENT: A booking refund failed. Check email for details."
            )

        if not sent:
            logger.error(f"Could not deliver refund failure alert: {description}")
        logger.warning(f"Notified admin of refund failure: {description}")
