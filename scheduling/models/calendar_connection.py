from datetime import datetime
from sqlalchemy import Column, String, Integer, Boolean, ForeignKey, DateTime, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from .base import BaseModel

PROVIDERS = ('google', 'outlook')


class CalendarConnection(BaseModel):
    __tablename__ = 'calendar_connections'
    __table_args__ = (
        UniqueConstraint('member_id', 'provider', name='uq_calendar_connection_member_provider'),
    )

    member_id = Column(Integer, ForeignKey('members.id'), nullable=False, index=True)
    provider = Column(String(20), nullable=False)

    # OAuth credentials
    access_token = Column(Text)
    refresh_token = Column(Text)
    token_expires_at = Column(DateTime)
    external_calendar_id = Column(String(255))

    # Behaviour
    check_for_conflicts = Column(Boolean, default=True, nullable=False)
    add_bookings_to_calendar = Column(Boolean, default=True, nullable=False)
    active = Column(Boolean, default=True, nullable=False)

    member = relationship("Member", back_populates="calendar_connections")

    @property
    def token_expired(self):
        return self.token_expires_at is not None and self.token_expires_at < datetime.utcnow()
