# app/services/slot_resolver.py
"""
Per-date availability of a provider's weekly slots.

Nothing about bookings is stored on the slot itself. Whether a slot is taken
on a date is answered by querying appointments for that slot within that
calendar day, so a booking on one Monday never leaks into the next Monday.
"""
import enum
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from app.core import clock, config
from app.db.models.appointment import ACTIVE_STATUS_VALUES, Appointment
from app.db.models.availability import ProviderAvailability


class SlotStatus(str, enum.Enum):
    AVAILABLE = "available"
    BOOKED = "booked"
    PAST = "past"
    CLOSED_FOR_TODAY = "closed_for_today"


@dataclass
class ResolvedSlot:
    slot: ProviderAvailability
    status: SlotStatus


def day_gate(target_date: date, now: datetime) -> Optional[SlotStatus]:
    """Date-level verdict that overrides per-slot state, or None."""
    today = now.date()
    if target_date < today:
        return SlotStatus.PAST
    if target_date == today and now.time() >= time(config.BOOKING_CUTOFF_HOUR, 0):
        return SlotStatus.CLOSED_FOR_TODAY
    return None


def is_slot_booked(db: Session, slot_id: int, target_date: date, exclude_appointment_id: Optional[int] = None) -> bool:
    day_start = datetime.combine(target_date, time.min)
    day_end = day_start + timedelta(days=1)
    q = db.query(Appointment.id).filter(
        Appointment.availability_slot_id == slot_id,
        Appointment.scheduled_date >= day_start,
        Appointment.scheduled_date < day_end,
        Appointment.status.in_(ACTIVE_STATUS_VALUES),
    )
    if exclude_appointment_id is not None:
        q = q.filter(Appointment.id != exclude_appointment_id)
    return q.first() is not None


def slot_status(db: Session, slot: ProviderAvailability, target_date: date, now: Optional[datetime] = None) -> SlotStatus:
    gate = day_gate(target_date, now or clock.local_now())
    if gate is not None:
        return gate
    return SlotStatus.BOOKED if is_slot_booked(db, slot.id, target_date) else SlotStatus.AVAILABLE


def resolve_availability(db: Session, provider_id: int, target_date: date) -> List[ResolvedSlot]:
    now = clock.local_now()
    slots = db.query(ProviderAvailability).filter(
        ProviderAvailability.provider_id == provider_id,
        ProviderAvailability.weekday == target_date.isoweekday(),
        ProviderAvailability.is_active == True,
    ).order_by(ProviderAvailability.start_time).all()

    return [ResolvedSlot(slot=s, status=slot_status(db, s, target_date, now)) for s in slots]


@dataclass
class SlotBookings:
    slot: ProviderAvailability
    appointments: List[Appointment]

    @property
    def status(self) -> str:
        if not self.slot.is_active:
            return "inactive"
        return "booked" if self.appointments else "available"


def booked_slots(db: Session, provider_id: int, target_date: date) -> List[SlotBookings]:
    """Every slot on the weekday of `target_date`, inactive ones included, with its active bookings that day."""
    day_start = datetime.combine(target_date, time.min)
    slots = db.query(ProviderAvailability).filter(
        ProviderAvailability.provider_id == provider_id,
        ProviderAvailability.weekday == target_date.isoweekday(),
    ).order_by(ProviderAvailability.start_time).all()
    if not slots:
        return []

    appointments = db.query(Appointment).filter(
        Appointment.availability_slot_id.in_([s.id for s in slots]),
        Appointment.scheduled_date >= day_start,
        Appointment.scheduled_date < day_start + timedelta(days=1),
        Appointment.status.in_(ACTIVE_STATUS_VALUES),
    ).order_by(Appointment.scheduled_date).all()

    by_slot = {s.id: [] for s in slots}
    for appointment in appointments:
        by_slot[appointment.availability_slot_id].append(appointment)
    return [SlotBookings(slot=s, appointments=by_slot[s.id]) for s in slots]


def weekly_schedule(db: Session, provider_id: int, start_date: Optional[date] = None, days: int = 7):
    """(date, resolved slots) for `days` consecutive dates starting at `start_date` (default today)."""
    first = start_date or clock.local_now().date()
    dates = [first + timedelta(days=offset) for offset in range(days)]
    return [(d, resolve_availability(db, provider_id, d)) for d in dates]
