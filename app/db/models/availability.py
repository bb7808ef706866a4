# app/db/models/availability.py
from sqlalchemy import Column, Integer, Time, ForeignKey, Boolean, CheckConstraint, Index
from sqlalchemy.orm import relationship
from app.db.base import Base


class ProviderAvailability(Base):
    """
    Recurring weekly availability slot for a provider.
    weekday: 1 (Monday) .. 7 (Sunday), same numbering as date.isoweekday()
    start_time, end_time: times (HH:MM)

    A slot is a recurring commitment, not a date: whether it is booked on a
    given date is always derived from the appointments table.
    """
    __tablename__ = "provider_availabilities"
    __table_args__ = (
        CheckConstraint('weekday BETWEEN 1 AND 7'),
        CheckConstraint('start_time < end_time'),
        Index("ix_provider_availabilities_provider_weekday", "provider_id", "weekday"),
    )

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    weekday = Column(Integer, nullable=False)   # store 1–7
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    provider = relationship("User", back_populates="availabilities")
