import re
from datetime import time
from typing import Optional, Tuple

import pytz


def validate_email(email: str) -> Tuple[bool, Optional[str]]:
    """Validate email format"""
    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    if not email:
        return False, "Email is required"
    if not re.match(pattern, email):
        return False, "Invalid email format"
    return True, None


def validate_phone(phone: str) -> Tuple[bool, Optional[str]]:
    """Validate an international phone number, returning it in E.164 form"""
    digits = re.sub(r'\D', '', phone or '')

    if 8 <= len(digits) <= 15:
        return True, f"+{digits}"
    return False, "Invalid phone number. Please include the country code"


def validate_timezone(name: str) -> Tuple[bool, Optional[str]]:
    if not name:
        return False, "Timezone is required"
    if name not in pytz.all_timezones_set:
        return False, f"Unknown timezone '{name}'"
    return True, None


def validate_day_of_week(day: int) -> Tuple[bool, Optional[str]]:
    if not isinstance(day, int) or isinstance(day, bool) or not 0 <= day <= 6:
        return False, "day_of_week must be between 0 (Sunday) and 6 (Saturday)"
    return True, None


def validate_time_window(start_time: Optional[time], end_time: Optional[time]) -> Tuple[bool, Optional[str]]:
    """Validate a time-of-day window"""
    if start_time is None or end_time is None:
        return False, "start_time and end_time are required"
    if end_time <= start_time:
        return False, "end_time must be after start_time"
    return True, None


def validate_date_override(start_time: Optional[time], end_time: Optional[time],
                           unavailable: bool) -> Tuple[bool, Optional[str]]:
    """An override either blocks the whole day or carries a complete window"""
    if unavailable:
        return True, None
    if start_time is None or end_time is None:
        return False, "start_time and end_time required when not marking as unavailable"
    return validate_time_window(start_time, end_time)
