import sendgrid
from sendgrid.helpers.mail import Mail, Email, To, Content
from typing import Optional, Dict
from config.config import Config
from scheduling.utils.logger import get_logger

logger = get_logger(__name__)

BUTTON_STYLE = ("color: white; padding: 14px 28px; text-decoration: none; "
                "border-radius: 4px; display: inline-block;")


class SendGridClient:
    """Wrapper for SendGrid email operations"""

    def __init__(self):
        self.api_key = Config.SENDGRID_API_KEY
        self.from_email = Config.SENDGRID_FROM_EMAIL

        if self.api_key:
            self.client = sendgrid.SendGridAPIClient(api_key=self.api_key)
        else:
            self.client = None
            logger.warning("SendGrid API key not configured")

    def send_email(self, to_email: str, subject: str, html_content: str,
                   plain_content: str = None) -> Optional[Dict]:
        """Send email via SendGrid"""
        if not self.client:
            logger.error("SendGrid client not initialized")
            return None

        try:
            message = Mail(
                from_email=Email(self.from_email, "Slotbook"),
                to_emails=To(to_email),
                subject=subject,
                html_content=Content("text/html", html_content)
            )

            if plain_content:
                message.plain_text_content = Content("text/plain", plain_content)

            response = self.client.send(message)

            return {
                'status_code': response.status_code,
                'message_id': response.headers.get('X-Message-Id')
            }
        except Exception as e:
            logger.error(f"Error sending email to {to_email}: {str(e)}")
            return None

    @staticmethod
    def _details_block(details: Dict) -> str:
        return f"""
                <div style="background-color: #f5f5f5; padding: 20px; border-radius: 8px; margin: 20px 0;">
                    <p><strong>Appointment:</strong> {details['event_title']}</p>
                    <p><strong>With:</strong> {details['member_name']}</p>
                    <p><strong>Date & Time:</strong> {details['when']} ({details['timezone']})</p>
                    <p><strong>Duration:</strong> {details['duration_minutes']} minutes</p>
                </div>
        """

    def send_booking_confirmation(self, to_email: str, name: str, details: Dict) -> Optional[Dict]:
        """Send booking confirmation with cancel and reschedule links"""
        subject = f"Booking confirmed - {details['event_title']} on {details['when']}"
        html_content = f"""
        <html>
            <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
                <h2>Your booking is confirmed</h2>
                <p>Hi {name},</p>
                {self._details_block(details)}
                <p style="margin: 30px 0;">
                    <a href="{details['reschedule_url']}" style="background-color: #2196F3; {BUTTON_STYLE} margin-right: 10px;">
                        Reschedule
                    </a>
                    <a href="{details['cancel_url']}" style="background-color: #f44336; {BUTTON_STYLE}">
                        Cancel
                    </a>
                </p>
                <p style="color: #666; font-size: 12px; margin-top: 40px;">
                    Booking reference: {details['uid']}
                </p>
            </body>
        </html>
        """
        plain_content = f"""
        Hi {name},

        Your booking for {details['event_title']} with {details['member_name']} is confirmed
        for {details['when']} ({details['timezone']}).

        Reschedule: {details['reschedule_url']}
        Cancel: {details['cancel_url']}
        """

        return self.send_email(to_email, subject, html_content, plain_content)

    def send_booking_cancellation(self, to_email: str, name: str, details: Dict,
                                  reason: str = None) -> Optional[Dict]:
        """Send booking cancellation notice"""
        subject = f"Booking cancelled - {details['event_title']}"
        reason_html = f"<p><strong>Reason:</strong> {reason}</p>" if reason else ""
        html_content = f"""
        <html>
            <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
                <h2>Your booking was cancelled</h2>
                <p>Hi {name},</p>
                {self._details_block(details)}
                {reason_html}
                <p>If a payment was made it will be refunded to the original payment method.</p>
            </body>
        </html>
        """

        return self.send_email(to_email, subject, html_content)

    def send_booking_rescheduled(self, to_email: str, name: str, old_details: Dict,
                                 new_details: Dict) -> Optional[Dict]:
        """Send notice that a booking moved to a new time"""
        subject = f"Booking rescheduled - {new_details['event_title']} on {new_details['when']}"
        html_content = f"""
        <html>
            <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
                <h2>Your booking was rescheduled</h2>
                <p>Hi {name},</p>
                <p>Previously: <s>{old_details['when']} ({old_details['timezone']})</s></p>
                {self._details_block(new_details)}
                <p style="margin: 30px 0;">
                    <a href="{new_details['cancel_url']}" style="background-color: #f44336; {BUTTON_STYLE}">
                        Cancel
                    </a>
                </p>
            </body>
        </html>
        """

        return self.send_email(to_email, subject, html_content)

    def send_booking_reminder(self, to_email: str, name: str, details: Dict,
                              hours_before: int) -> Optional[Dict]:
        """Send upcoming booking reminder"""
        subject = f"Reminder: {details['event_title']} in {hours_before} hours"
        html_content = f"""
        <html>
            <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
                <h2>Upcoming appointment</h2>
                <p>Hi {name},</p>
                {self._details_block(details)}
                <p>Need another time? <a href="{details['reschedule_url']}">Reschedule</a></p>
            </body>
        </html>
        """

        return self.send_email(to_email, subject, html_content)

    def send_admin_alert(self, to_email: str, subject: str, message: str) -> Optional[Dict]:
        """Plain operator alert"""
        html_content = f"""
        <html>
            <body style="font-family: Arial, sans-serif;">
                <h3>{subject}</h3>
                <p>{message}</p>
            </body>
        </html>
        """
        return self.send_email(to_email, subject, html_content, message)
