from twilio.rest import Client
from twilio.base.exceptions import TwilioRestException
from typing import Optional, Dict
from config.config import Config
from scheduling.utils.logger import get_logger

logger = get_logger(__name__)


class TwilioClient:
    """Wrapper for Twilio SMS operations"""

    def __init__(self):
        self.account_sid = Config.TWILIO_ACCOUNT_SID
        self.auth_token = Config.TWILIO_AUTH_TOKEN
        self.phone_number = Config.TWILIO_PHONE_NUMBER

        if self.account_sid and self.auth_token:
            self.client = Client(self.account_sid, self.auth_token)
        else:
            self.client = None
            logger.warning("Twilio credentials not configured")

    def send_sms(self, to_number: str, message: str) -> Optional[Dict]:
        """Send SMS message"""
        if not self.client:
            logger.error("Twilio client not initialized")
            return None

        try:
            message = self.client.messages.create(
                body=message,
                from_=self.phone_number,
                to=to_number
            )

            return {
                'sid': message.sid,
                'status': message.status,
                'to': message.to,
            }
        except TwilioRestException as e:
            logger.error(f"Error sending SMS to {to_number}: {str(e)}")
            return None

    def send_booking_confirmation(self, to_number: str, details: Dict) -> Optional[Dict]:
        message = (
            f"Booking confirmed: {details['event_title']} with {details['member_name']}\n"
            f"When: {details['when']} ({details['timezone']})\n"
            f"Manage: {details['reschedule_url']}"
        )
        return self.send_sms(to_number, message)

    def send_booking_cancellation(self, to_number: str, details: Dict) -> Optional[Dict]:
        message = f"Your booking {details['event_title']} on {details['when']} was cancelled."
        return self.send_sms(to_number, message)

    def send_booking_rescheduled(self, to_number: str, details: Dict) -> Optional[Dict]:
        message = (
            f"Your booking {details['event_title']} moved to {details['when']} "
            f"({details['timezone']})."
        )
        return self.send_sms(to_number, message)

    def send_booking_reminder(self, to_number: str, details: Dict, hours_before: int) -> Optional[Dict]:
        message = (
            f"Reminder: {details['event_title']} with {details['member_name']} "
            f"in {hours_before} hours, {details['when']} ({details['timezone']})."
        )
        return self.send_sms(to_number, message)
