from sqlalchemy import Column, String
from sqlalchemy.orm import relationship
from .base import BaseModel


class Client(BaseModel):
    """Person booking a slot, found or created by email"""
    __tablename__ = 'clients'

    email = Column(String(255), unique=True, nullable=False, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    phone = Column(String(20))
    timezone = Column(String(64))

    bookings = relationship("Booking", back_populates="client", lazy='dynamic')

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()
