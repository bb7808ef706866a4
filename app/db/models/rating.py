# app/db/models/rating.py
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, CheckConstraint, UniqueConstraint, func
from sqlalchemy.orm import relationship
from app.db.base import Base

# who wrote the rating; user_id is always the customer, provider_id the provider
RATED_BY_CUSTOMER = "customer"
RATED_BY_PROVIDER = "provider"


class Rating(Base):
    __tablename__ = "ratings"
    __table_args__ = (
        CheckConstraint('value BETWEEN 1 AND 5'),
        UniqueConstraint("appointment_id", "rated_by", name="uq_ratings_appointment_rater"),
    )

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    provider_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    rated_by = Column(String, nullable=False, default=RATED_BY_CUSTOMER)

    value = Column(Integer, nullable=False)   # 1..5
    comment = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    appointment = relationship("Appointment", foreign_keys=[appointment_id])
    user = relationship("User", foreign_keys=[user_id])
