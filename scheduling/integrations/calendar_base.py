"""
Calendar adapter interface and provider registry.

The conflict resolver and calendar sync only talk to ``CalendarAdapter``;
the concrete class is picked once from the registry by provider name.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Optional, Type

_REGISTRY: Dict[str, Type['CalendarAdapter']] = {}


class CalendarAdapter(ABC):
    provider: str = None

    def __init__(self, connection, timeout: float = 5.0):
        self.connection = connection
        self.timeout = timeout

    @abstractmethod
    def has_conflicts(self, start: datetime, end: datetime) -> bool:
        """True when the external calendar has an event inside [start, end)"""

    @abstractmethod
    def add_event(self, booking) -> Optional[str]:
        """Create an event for the booking, returning the external event id"""

    @abstractmethod
    def update_event(self, booking, event_id: str) -> None:
        pass

    @abstractmethod
    def delete_event(self, booking, event_id: str) -> bool:
        """Remove the event. An event that is already gone counts as removed"""

    @abstractmethod
    def refresh_token(self) -> bool:
        pass

    def ensure_fresh_token(self):
        if self.connection.token_expired:
            self.refresh_token()


def register_calendar_adapter(provider: str):
    def decorator(cls):
        cls.provider = provider
        _REGISTRY[provider] = cls
        return cls
    return decorator


def get_calendar_adapter(connection, timeout: float = 5.0) -> CalendarAdapter:
    """Instantiate the adapter registered for ``connection.provider``"""
    try:
        adapter_class = _REGISTRY[connection.provider]
    except KeyError:
        raise ValueError(f"Unsupported calendar provider: {connection.provider}")
    return adapter_class(connection, timeout=timeout)


def registered_calendar_providers():
    return sorted(_REGISTRY)
