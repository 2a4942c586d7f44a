import secrets
import uuid


def generate_secure_token() -> str:
    """Generate secure random token"""
    return secrets.token_urlsafe(32)


def generate_uid() -> str:
    """Opaque public identifier for a booking"""
    return str(uuid.uuid4())


def issue_booking_identifiers() -> dict:
    """Public id plus the single-use cancel and reschedule capabilities"""
    return {
        'uid': generate_uid(),
        'cancellation_token': generate_secure_token(),
        'reschedule_token': generate_secure_token(),
    }
