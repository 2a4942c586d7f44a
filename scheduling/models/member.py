from sqlalchemy import Column, String, Integer, Boolean
from sqlalchemy.orm import relationship
from .base import BaseModel


class Member(BaseModel):
    """A provider whose time can be booked"""
    __tablename__ = 'members'

    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    phone = Column(String(20))
    booking_slug = Column(String(100), unique=True, nullable=False, index=True)

    # Status
    active = Column(Boolean, default=True, nullable=False)
    accepts_bookings = Column(Boolean, default=True, nullable=False)

    # Incremented by every booking mutation; the UPDATE takes the row (or
    # database) write lock that serializes conflict checks per member.
    booking_lock_version = Column(Integer, default=0, nullable=False)

    # Relationships
    schedules = relationship("Schedule", back_populates="member", lazy='dynamic',
                             cascade='all, delete-orphan')
    date_overrides = relationship("DateOverride", back_populates="member", lazy='dynamic',
                                  cascade='all, delete-orphan')
    event_types = relationship("EventType", back_populates="member", lazy='dynamic',
                               cascade='all, delete-orphan')
    bookings = relationship("Booking", back_populates="member", lazy='dynamic')
    calendar_connections = relationship("CalendarConnection", back_populates="member", lazy='dynamic',
                                        cascade='all, delete-orphan')

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()
