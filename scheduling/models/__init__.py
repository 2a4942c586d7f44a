from .member import Member
from .schedule import Schedule, WeeklyAvailability, DateOverride
from .event_type import EventType, BookingQuestion
from .client import Client
from .booking import Booking, BookingAnswer, BookingChange
from .payment import Payment
from .calendar_connection import CalendarConnection

__all__ = [
    'Member', 'Schedule', 'WeeklyAvailability', 'DateOverride',
    'EventType', 'BookingQuestion', 'Client',
    'Booking', 'BookingAnswer', 'BookingChange',
    'Payment', 'CalendarConnection'
]
