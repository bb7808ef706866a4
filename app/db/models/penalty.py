# app/db/models/penalty.py
from datetime import datetime

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime
from app.db.base import Base


class PenaltyViolation(Base):
    """
    A detected behaviour violation. Exactly one of user_id / provider_id is set,
    depending on which side of the appointment misbehaved.
    """
    __tablename__ = "penalty_violations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    provider_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    appointment_id = Column(Integer, nullable=True)

    violation_code = Column(String, nullable=False, index=True)
    details = Column(String, nullable=True)
    detected_by = Column(String, nullable=False, default="system")

    created_at = Column(DateTime, default=datetime.utcnow)
