from datetime import datetime, timedelta
from typing import Dict, Optional

import requests
import pytz

from config.config import Config
from scheduling.database import DatabaseManager
from scheduling.integrations.calendar_base import CalendarAdapter, register_calendar_adapter
from scheduling.models import CalendarConnection
from scheduling.utils.logger import get_logger

logger = get_logger(__name__)

GRAPH_API_BASE = "https://graph.microsoft.com/v1.0"
TOKEN_URL = "https://login.microsoftonline.com/common/oauth2/v2.0/token"


@register_calendar_adapter('outlook')
class OutlookCalendarClient(CalendarAdapter):
    """Outlook calendar adapter over the Microsoft Graph REST API"""

    def _make_request(self, method: str, endpoint: str, data: Dict = None,
                      params: Dict = None) -> Optional[Dict]:
        self.ensure_fresh_token()
        response = requests.request(
            method=method,
            url=f"{GRAPH_API_BASE}{endpoint}",
            headers={
                'Authorization': f"Bearer {self.connection.access_token}",
                'Content-Type': 'application/json',
            },
            json=data,
            params=params,
            timeout=self.timeout,
        )
        response.raise_for_status()
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    @staticmethod
    def _graph_time(value: datetime) -> str:
        return value.astimezone(pytz.UTC).strftime('%Y-%m-%dT%H:%M:%S')

    def has_conflicts(self, start: datetime, end: datetime) -> bool:
        try:
            result = self._make_request('get', '/me/calendarView', params={
                'startDateTime': self._graph_time(start),
                'endDateTime': self._graph_time(end),
                '$top': 1,
            })
            return bool(result and result.get('value'))
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to check Outlook Calendar conflicts: {str(e)}")
            return False

    def add_event(self, booking) -> Optional[str]:
        event_data = {
            'subject': f"{booking.event_type.title} - {booking.client.full_name}",
            'body': {'contentType': 'Text', 'content': booking.notes or ''},
            'start': {'dateTime': self._graph_time(booking.local_start()), 'timeZone': 'UTC'},
            'end': {'dateTime': self._graph_time(booking.local_end()), 'timeZone': 'UTC'},
            'attendees': [{
                'emailAddress': {
                    'address': booking.client.email,
                    'name': booking.client.full_name,
                },
                'type': 'required',
            }],
        }
        try:
            result = self._make_request('post', '/me/calendar/events', event_data)
            return result.get('id') if result else None
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to add booking {booking.uid} to Outlook Calendar: {str(e)}")
            return None

    def update_event(self, booking, event_id: str) -> None:
        try:
            self._make_request('patch', f"/me/events/{event_id}", {
                'start': {'dateTime': self._graph_time(booking.local_start()), 'timeZone': 'UTC'},
                'end': {'dateTime': self._graph_time(booking.local_end()), 'timeZone': 'UTC'},
            })
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to update Outlook Calendar event {event_id}: {str(e)}")

    def delete_event(self, booking, event_id: str) -> bool:
        try:
            self._make_request('delete', f"/me/events/{event_id}")
            return True
        except requests.exceptions.HTTPError as e:
            if e.response is not None and e.response.status_code == 404:
                return True
            logger.error(f"Failed to delete Outlook Calendar event {event_id}: {str(e)}")
            return False
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to delete Outlook Calendar event {event_id}: {str(e)}")
            return False

    def refresh_token(self) -> bool:
        try:
            response = requests.post(TOKEN_URL, data={
                'client_id': Config.MICROSOFT_CLIENT_ID,
                'client_secret': Config.MICROSOFT_CLIENT_SECRET,
                'refresh_token': self.connection.refresh_token,
                'grant_type': 'refresh_token',
                'scope': 'offline_access Calendars.ReadWrite',
            }, timeout=self.timeout)
            response.raise_for_status()
            token = response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to refresh Outlook Calendar token: {str(e)}")
            return False

        expires_at = datetime.utcnow() + timedelta(seconds=int(token.get('expires_in', 3600)))
        updates = {
            'access_token': token['access_token'],
            'token_expires_at': expires_at,
        }
        if token.get('refresh_token'):
            updates['refresh_token'] = token['refresh_token']

        for key, value in updates.items():
            setattr(self.connection, key, value)
        DatabaseManager(CalendarConnection).update(self.connection.id, **updates)
        return True
