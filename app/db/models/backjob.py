# app/db/models/backjob.py
import enum
from datetime import datetime

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime
from sqlalchemy.orm import relationship

from app.db.base import Base


class BackjobStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DISPUTED = "disputed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


OPEN_BACKJOB_STATUSES = (BackjobStatus.PENDING.value, BackjobStatus.APPROVED.value)


class Backjob(Base):
    """Warranty redo request raised by the customer against a finished appointment."""
    __tablename__ = "backjobs"

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    provider_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    reason = Column(String, nullable=False)
    provider_note = Column(String, nullable=True)
    status = Column(String, nullable=False, default=BackjobStatus.PENDING.value)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    appointment = relationship("Appointment", foreign_keys=[appointment_id])
