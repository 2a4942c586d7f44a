from .logger import setup_logger, get_logger
from .security import generate_secure_token, generate_uid, issue_booking_identifiers
from .validators import (validate_email, validate_phone, validate_timezone,
                         validate_time_window, validate_date_override)

__all__ = [
    'setup_logger', 'get_logger',
    'generate_secure_token', 'generate_uid', 'issue_booking_identifiers',
    'validate_email', 'validate_phone', 'validate_timezone',
    'validate_time_window', 'validate_date_override'
]
