# app/db/models/appointment.py
import enum
from datetime import datetime

from sqlalchemy import Column, Integer, String, ForeignKey, Date, Float, DateTime, Index
from sqlalchemy.orm import relationship

from app.db.base import Base


class AppointmentStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    APPROVED = "approved"
    CONFIRMED = "confirmed"
    SCHEDULED = "scheduled"
    ON_THE_WAY = "on_the_way"
    IN_PROGRESS = "in_progress"
    FINISHED = "finished"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    NO_SHOW = "no_show"
    PROVIDER_NO_SHOW = "provider_no_show"

    @classmethod
    def normalize(cls, raw) -> "AppointmentStatus":
        """
        Map the spellings seen at the edges ("Pending", "on the way",
        "in-progress", "canceled", ...) onto one canonical member.
        Raises ValueError for anything else.
        """
        if isinstance(raw, cls):
            return raw
        if raw is None:
            raise ValueError("status is required")
        key = str(raw).strip().lower().replace("-", "_").replace(" ", "_")
        key = STATUS_ALIASES.get(key, key)
        return cls(key)


STATUS_ALIASES = {
    "canceled": "cancelled",
    "user_no_show": "no_show",
    "ontheway": "on_the_way",
    "inprogress": "in_progress",
}

# an appointment in one of these holds its slot for its date
ACTIVE_STATUSES = frozenset({
    AppointmentStatus.PENDING,
    AppointmentStatus.ACCEPTED,
    AppointmentStatus.APPROVED,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.ON_THE_WAY,
    AppointmentStatus.IN_PROGRESS,
})

ACCEPTANCE_STATUSES = frozenset({
    AppointmentStatus.ACCEPTED,
    AppointmentStatus.APPROVED,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.SCHEDULED,
})

TERMINAL_STATUSES = frozenset({
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
    AppointmentStatus.REJECTED,
    AppointmentStatus.NO_SHOW,
    AppointmentStatus.PROVIDER_NO_SHOW,
})

CANCELLABLE_STATUSES = frozenset({AppointmentStatus.PENDING}) | ACCEPTANCE_STATUSES

ACTIVE_STATUS_VALUES = sorted(s.value for s in ACTIVE_STATUSES)


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)

    customer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    provider_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    # no foreign key: slots are hard-deleted and appointments keep the old id
    availability_slot_id = Column(Integer, nullable=True, index=True)

    scheduled_date = Column(DateTime, nullable=False)
    slot_date = Column(Date, nullable=False)

    status = Column(String, nullable=False, default=AppointmentStatus.PENDING.value)

    description = Column(String, nullable=True)
    final_price = Column(Float, nullable=True)
    cancellation_reason = Column(String, nullable=True)
    evidence_photo_url = Column(String, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # relationships
    customer = relationship("User", foreign_keys=[customer_id])
    provider = relationship("User", foreign_keys=[provider_id])
    service = relationship("Service", foreign_keys=[service_id])


# at most one active appointment per slot and calendar date
Index(
    "uq_appointments_active_slot_date",
    Appointment.availability_slot_id,
    Appointment.slot_date,
    unique=True,
    postgresql_where=Appointment.status.in_(ACTIVE_STATUS_VALUES),
    sqlite_where=Appointment.status.in_(ACTIVE_STATUS_VALUES),
)
