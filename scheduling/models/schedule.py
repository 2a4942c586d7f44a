from sqlalchemy import (Column, String, Integer, Boolean, ForeignKey, Time, Date,
                        CheckConstraint, UniqueConstraint)
from sqlalchemy.orm import relationship
from .base import BaseModel


class Schedule(BaseModel):
    __tablename__ = 'schedules'

    member_id = Column(Integer, ForeignKey('members.id'), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    timezone = Column(String(64), nullable=False)
    is_default = Column(Boolean, default=False, nullable=False)

    # Relationships
    member = relationship("Member", back_populates="schedules")
    availabilities = relationship("WeeklyAvailability", back_populates="schedule",
                                  cascade='all, delete-orphan',
                                  order_by="WeeklyAvailability.day_of_week")


class WeeklyAvailability(BaseModel):
    """Recurring hours for one day of the week (0 = Sunday)"""
    __tablename__ = 'weekly_availabilities'
    __table_args__ = (
        CheckConstraint('day_of_week >= 0 AND day_of_week <= 6', name='ck_weekly_day_of_week'),
        CheckConstraint('end_time > start_time', name='ck_weekly_window'),
    )

    schedule_id = Column(Integer, ForeignKey('schedules.id'), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    schedule = relationship("Schedule", back_populates="availabilities")


class DateOverride(BaseModel):
    """Replaces the weekly rule for one date: narrower hours or a blocked day"""
    __tablename__ = 'date_overrides'
    __table_args__ = (
        UniqueConstraint('member_id', 'date', name='uq_date_override_member_date'),
        CheckConstraint('unavailable OR (start_time IS NOT NULL AND end_time IS NOT NULL '
                        'AND end_time > start_time)', name='ck_date_override_window'),
    )

    member_id = Column(Integer, ForeignKey('members.id'), nullable=False, index=True)
    date = Column(Date, nullable=False)
    start_time = Column(Time)
    end_time = Column(Time)
    unavailable = Column(Boolean, default=False, nullable=False)
    reason = Column(String(500))

    member = relationship("Member", back_populates="date_overrides")
