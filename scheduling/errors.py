from typing import Dict, List, Optional


class SchedulingError(Exception):
    """Base class for errors reported to the caller of the scheduling core"""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict:
        return {'error': self.message}


class ValidationError(SchedulingError):
    """Field-level validation failure. Nothing was persisted."""

    def __init__(self, errors: Dict[str, List[str]], message: str = None):
        self.errors = {field: list(messages) for field, messages in errors.items()}
        super().__init__(message or self._summary())

    def _summary(self) -> str:
        parts = []
        for field, messages in self.errors.items():
            for msg in messages:
                parts.append(msg if field == 'base' else f"{field} {msg}")
        return '; '.join(parts) or 'Invalid booking'

    def to_dict(self) -> Dict:
        return {'error': self.message, 'errors': self.errors}


class PolicyViolationError(ValidationError):
    """Cancellation or reschedule refused by the event type policy"""

    def __init__(self, message: str, policy_hours: Optional[int] = None):
        self.policy_hours = policy_hours
        super().__init__({'base': [message]}, message)

    def to_dict(self) -> Dict:
        data = super().to_dict()
        data['policy_hours'] = self.policy_hours
        return data


class ConflictError(SchedulingError):
    """The requested time is no longer free; re-query availability"""
    status_code = 409


class PaymentError(SchedulingError):
    """The payment adapter declined or could not process the charge"""
    status_code = 402


class ExternalIntegrationError(SchedulingError):
    """Calendar, email or refund failure. Never raised to booking callers."""
    status_code = 502


class NotFoundError(SchedulingError):
    status_code = 404

    def __init__(self, message: str = 'Booking not found'):
        super().__init__(message)


class ScheduleConfigurationError(SchedulingError):
    """The provider's schedule setup is ambiguous or incomplete"""
    status_code = 422
