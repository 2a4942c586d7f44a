from datetime import datetime, timedelta
from typing import Optional

import httplib2
from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from config.config import Config
from scheduling.database import DatabaseManager
from scheduling.integrations.calendar_base import CalendarAdapter, register_calendar_adapter
from scheduling.models import CalendarConnection
from scheduling.utils.logger import get_logger

logger = get_logger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]
TOKEN_URI = "https://oauth2.googleapis.com/token"


@register_calendar_adapter('google')
class GoogleCalendarClient(CalendarAdapter):
    """Google Calendar adapter backed by the v3 events API"""

    def __init__(self, connection, timeout: float = 5.0):
        super().__init__(connection, timeout)
        self.calendar_id = connection.external_calendar_id or 'primary'
        self._service = None

    def _credentials(self) -> Credentials:
        return Credentials(
            token=self.connection.access_token,
            refresh_token=self.connection.refresh_token,
            token_uri=TOKEN_URI,
            client_id=Config.GOOGLE_CLIENT_ID,
            client_secret=Config.GOOGLE_CLIENT_SECRET,
            scopes=SCOPES,
        )

    @property
    def service(self):
        if self._service is None:
            self.ensure_fresh_token()
            # Socket timeout applies to every API call
            http = AuthorizedHttp(self._credentials(), http=httplib2.Http(timeout=self.timeout))
            self._service = build("calendar", "v3", http=http, cache_discovery=False)
        return self._service

    def has_conflicts(self, start: datetime, end: datetime) -> bool:
        try:
            events = self.service.events().list(
                calendarId=self.calendar_id,
                timeMin=start.isoformat(),
                timeMax=end.isoformat(),
                singleEvents=True,
                maxResults=1,
            ).execute()
            return bool(events.get('items'))
        except HttpError as e:
            logger.error(f"Failed to check Google Calendar conflicts: {str(e)}")
            return False

    def _event_body(self, booking):
        local_start = booking.local_start()
        local_end = booking.local_end()
        return {
            'summary': f"{booking.event_type.title} - {booking.client.full_name}",
            'description': booking.notes or '',
            'start': {'dateTime': local_start.isoformat(), 'timeZone': booking.timezone},
            'end': {'dateTime': local_end.isoformat(), 'timeZone': booking.timezone},
            'attendees': [
                {'email': booking.client.email, 'displayName': booking.client.full_name}
            ],
            'reminders': {
                'useDefault': False,
                'overrides': [
                    {'method': 'email', 'minutes': 24 * 60},
                    {'method': 'popup', 'minutes': 30},
                ],
            },
        }

    def add_event(self, booking) -> Optional[str]:
        try:
            event = self.service.events().insert(
                calendarId=self.calendar_id, body=self._event_body(booking)
            ).execute()
            return event.get('id')
        except HttpError as e:
            logger.error(f"Failed to add booking {booking.uid} to Google Calendar: {str(e)}")
            return None

    def update_event(self, booking, event_id: str) -> None:
        try:
            self.service.events().patch(
                calendarId=self.calendar_id,
                eventId=event_id,
                body={
                    'start': {'dateTime': booking.local_start().isoformat(), 'timeZone': booking.timezone},
                    'end': {'dateTime': booking.local_end().isoformat(), 'timeZone': booking.timezone},
                },
            ).execute()
        except HttpError as e:
            logger.error(f"Failed to update Google Calendar event {event_id}: {str(e)}")

    def delete_event(self, booking, event_id: str) -> bool:
        try:
            self.service.events().delete(calendarId=self.calendar_id, eventId=event_id).execute()
            return True
        except HttpError as e:
            if e.resp.status in (404, 410):
                return True
            logger.error(f"Failed to delete Google Calendar event {event_id}: {str(e)}")
            return False

    def refresh_token(self) -> bool:
        credentials = self._credentials()
        try:
            credentials.refresh(Request())
        except RefreshError as e:
            logger.error(f"Failed to refresh Google Calendar token: {str(e)}")
            return False

        expires_at = credentials.expiry or datetime.utcnow() + timedelta(hours=1)
        self.connection.access_token = credentials.token
        self.connection.token_expires_at = expires_at
        DatabaseManager(CalendarConnection).update(
            self.connection.id,
            access_token=credentials.token,
            token_expires_at=expires_at,
        )
        return True
