# app/services/booking_service.py
"""
Booking engine: creates appointments against weekly slots and owns the
release of a slot (cancellation, rescheduling).

The slot check and the insert run in one transaction. The customer and slot
rows are locked, and the partial unique index on (availability_slot_id,
slot_date) for active statuses is the last line of defence against two
requests booking the same slot on the same date.
"""
import logging
from datetime import date, datetime, time
from typing import Optional, Tuple

from fastapi import BackgroundTasks
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core import clock, config
from app.core.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from app.core.side_effects import dispatch
from app.db.models.appointment import (
    CANCELLABLE_STATUSES,
    TERMINAL_STATUSES,
    Appointment,
    AppointmentStatus,
)
from app.db.models.availability import ProviderAvailability
from app.db.models.service import Service
from app.db.models.user import User
from app.db.transactions import run_in_transaction
from app.services import notification_service, penalty_service, slot_resolver
from app.services.availability_service import parse_date, parse_hhmm, weekday_name

logger = logging.getLogger(__name__)


# --------------------------
# helpers
# --------------------------
def _clean(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def is_same_person(customer: User, provider: User) -> bool:
    """Same natural person behind two accounts: same full name plus same email or phone."""
    if not _clean(customer.name) or _clean(customer.name) != _clean(provider.name):
        return False
    email_matches = bool(_clean(customer.email)) and _clean(customer.email) == _clean(provider.email)
    phone_matches = bool((customer.phone or "").strip()) and (customer.phone or "").strip() == (provider.phone or "").strip()
    return email_matches or phone_matches


def parse_status(raw) -> AppointmentStatus:
    try:
        return AppointmentStatus.normalize(raw)
    except ValueError:
        allowed = ", ".join(s.value for s in AppointmentStatus)
        raise ValidationError("invalid_status", f"Invalid status. Valid statuses are: {allowed}", {"status": raw})


def get_appointment(db: Session, appointment_id: int) -> Appointment:
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    if not appointment:
        raise NotFoundError("appointment_not_found", "Appointment not found")
    return appointment


def get_appointment_for_party(db: Session, appointment_id: int, user_id: int) -> Appointment:
    appointment = get_appointment(db, appointment_id)
    if user_id not in (appointment.customer_id, appointment.provider_id):
        raise AuthorizationError("Not your appointment")
    return appointment


def compare_and_set_status(db: Session, appointment: Appointment, new_status: AppointmentStatus, **values) -> None:
    """
    UPDATE ... WHERE status = <status we read>. If another request moved the
    appointment first nothing matches and the caller gets a conflict.
    """
    values["status"] = new_status.value
    values["updated_at"] = datetime.utcnow()
    updated = db.query(Appointment).filter(
        Appointment.id == appointment.id,
        Appointment.status == appointment.status,
    ).update(values, synchronize_session=False)
    if updated != 1:
        raise ConflictError(
            "conflict",
            "The appointment was changed by another request. Please refresh and try again.",
            {"appointment_id": appointment.id},
        )


def scheduled_count(db: Session, customer_id: int) -> int:
    # only "scheduled" counts; on-the-way, in-progress, finished etc. do not
    return db.query(func.count(Appointment.id)).filter(
        Appointment.customer_id == customer_id,
        Appointment.status == AppointmentStatus.SCHEDULED.value,
    ).scalar() or 0


def _enforce_booking_cap(db: Session, customer_id: int):
    count = scheduled_count(db, customer_id)
    if count >= config.MAX_SCHEDULED_APPOINTMENTS:
        raise ConflictError(
            "booking_limit_reached",
            f"Booking limit reached. You can only have {config.MAX_SCHEDULED_APPOINTMENTS} scheduled appointments at a time.",
            {"current_scheduled_count": count, "max_allowed": config.MAX_SCHEDULED_APPOINTMENTS},
        )


def _claim_slot(
    db: Session,
    provider_id: int,
    target_date: date,
    start_time: Optional[time] = None,
    slot_id: Optional[int] = None,
    exclude_appointment_id: Optional[int] = None,
) -> Tuple[ProviderAvailability, datetime]:
    """
    Find the provider's active slot for the date (by exact start time or by
    id), lock it, and check it can be booked on that date.
    """
    q = db.query(ProviderAvailability).filter(
        ProviderAvailability.provider_id == provider_id,
        ProviderAvailability.weekday == target_date.isoweekday(),
        ProviderAvailability.is_active == True,
    )
    if slot_id is not None:
        q = q.filter(ProviderAvailability.id == slot_id)
    else:
        q = q.filter(ProviderAvailability.start_time == start_time)
    slot = q.with_for_update().first()
    if not slot:
        raise NotFoundError(
            "slot_not_found",
            "Selected time slot is not available",
            {"day_of_week": weekday_name(target_date.isoweekday()),
             "time": start_time.strftime("%H:%M") if start_time else None},
        )

    if slot_resolver.is_slot_booked(db, slot.id, target_date, exclude_appointment_id=exclude_appointment_id):
        raise _already_booked(slot.id, target_date)

    now = clock.local_now()
    gate = slot_resolver.day_gate(target_date, now)
    if gate == slot_resolver.SlotStatus.CLOSED_FOR_TODAY:
        raise ConflictError(
            "booking_closed_for_today",
            f"Same-day bookings close at {config.BOOKING_CUTOFF_HOUR:02d}:00. Please choose another date.",
            {"booking_cutoff_time": f"{config.BOOKING_CUTOFF_HOUR:02d}:00"},
        )
    scheduled_at = datetime.combine(target_date, slot.start_time)
    if gate == slot_resolver.SlotStatus.PAST or scheduled_at <= now:
        raise ConflictError("past_date_time", "Appointment date and time must be in the future",
                            {"scheduled_date": scheduled_at.isoformat()})
    return slot, scheduled_at


def _already_booked(slot_id: int, target_date: date) -> ConflictError:
    return ConflictError("slot_already_booked", "This time slot is already booked",
                         {"availability_slot_id": slot_id, "date": target_date.isoformat()})


# --------------------------
# create
# --------------------------
def create_appointment(
    db: Session,
    customer_id: int,
    provider_id: int,
    service_id: int,
    scheduled_date,
    scheduled_time,
    description: Optional[str] = None,
    auto_accept: bool = False,
    background_tasks: Optional[BackgroundTasks] = None,
) -> Appointment:
    required = {
        "customer_id": customer_id,
        "provider_id": provider_id,
        "service_id": service_id,
        "scheduled_date": scheduled_date,
        "scheduled_time": scheduled_time,
    }
    missing = [name for name, value in required.items() if value is None or value == ""]
    if missing:
        raise ValidationError("missing_fields", "All required fields must be provided", {"missing_fields": missing})

    target_date = parse_date(scheduled_date)
    start_time = parse_hhmm(scheduled_time)
    initial_status = AppointmentStatus.ACCEPTED if auto_accept else AppointmentStatus.PENDING

    def work():
        # the customer row lock bounds the booking-cap race
        customer = db.query(User).filter(User.id == customer_id).with_for_update().first()
        if not customer:
            raise NotFoundError("customer_not_found", "Customer not found")
        provider = db.query(User).filter(User.id == provider_id, User.role == "provider").first()
        if not provider:
            raise NotFoundError("provider_not_found", "Provider not found")
        service = db.query(Service).filter(
            Service.id == service_id, Service.provider_id == provider_id, Service.is_active == True
        ).first()
        if not service:
            raise NotFoundError("service_not_found", "Service listing not found")

        if is_same_person(customer, provider):
            logger.info(f"Self-booking prevented: customer {customer_id} / provider {provider_id}")
            raise ConflictError(
                "self_booking_not_allowed",
                "You cannot book an appointment with yourself. Please select a different service provider.",
            )

        _enforce_booking_cap(db, customer_id)

        slot, scheduled_at = _claim_slot(db, provider_id, target_date, start_time=start_time)
        # a failed flush leaves the session unusable, so keep the id in a local
        claimed_slot_id = slot.id

        appointment = Appointment(
            customer_id=customer_id,
            provider_id=provider_id,
            service_id=service_id,
            availability_slot_id=claimed_slot_id,
            scheduled_date=scheduled_at,
            slot_date=target_date,
            status=initial_status.value,
            description=description or None,
        )
        db.add(appointment)
        try:
            db.flush()
        except IntegrityError:
            raise _already_booked(claimed_slot_id, target_date)
        return appointment

    appointment = run_in_transaction(db, work)
    db.refresh(appointment)
    logger.info(
        f"Appointment {appointment.id} booked: customer {customer_id}, provider {provider_id}, "
        f"slot {appointment.availability_slot_id} on {appointment.scheduled_date:%Y-%m-%d %H:%M} ({appointment.status})"
    )

    dispatch(background_tasks, notification_service.notify_booking_created, appointment.id)
    return appointment


# --------------------------
# cancel
# --------------------------
def cancel_appointment(
    db: Session,
    appointment_id: int,
    actor_id: int,
    reason: Optional[str] = None,
    background_tasks: Optional[BackgroundTasks] = None,
) -> Appointment:
    def work():
        appointment = get_appointment(db, appointment_id)
        if appointment.customer_id != actor_id:
            raise AuthorizationError("You can only cancel your own appointments")

        current = AppointmentStatus.normalize(appointment.status)
        if current in TERMINAL_STATUSES:
            raise ConflictError("already_terminal", f"Appointment is already {current.value}",
                                {"status": current.value})
        if current not in CANCELLABLE_STATUSES:
            raise ConflictError(
                "not_cancellable",
                f"Cannot cancel appointment. Current status: {current.value}. "
                "Only pending, approved, accepted, confirmed and scheduled appointments can be cancelled.",
                {"status": current.value},
            )

        compare_and_set_status(
            db,
            appointment,
            AppointmentStatus.CANCELLED,
            cancellation_reason=reason or "No reason provided",
            cancelled_at=clock.local_now(),
        )
        return appointment

    appointment = run_in_transaction(db, work)
    db.refresh(appointment)
    logger.info(f"Appointment {appointment.id} cancelled by customer {actor_id}")

    # the slot/date is free again as soon as the status left the active set
    dispatch(background_tasks, penalty_service.run_cancellation_checks, appointment.customer_id, appointment.id)
    dispatch(background_tasks, notification_service.notify_cancelled, appointment.id)
    return appointment


# --------------------------
# reschedule
# --------------------------
def move_appointment(
    db: Session,
    appointment: Appointment,
    target_date: date,
    start_time: Optional[time] = None,
    slot_id: Optional[int] = None,
    enforce_cap: bool = True,
) -> None:
    """Point `appointment` at another slot/date of its provider and mark it scheduled. Caller commits."""
    current = AppointmentStatus.normalize(appointment.status)
    if enforce_cap and current != AppointmentStatus.SCHEDULED:
        _enforce_booking_cap(db, appointment.customer_id)

    slot, scheduled_at = _claim_slot(
        db,
        appointment.provider_id,
        target_date,
        start_time=start_time,
        slot_id=slot_id,
        exclude_appointment_id=appointment.id,
    )
    claimed_slot_id = slot.id
    try:
        compare_and_set_status(
            db,
            appointment,
            AppointmentStatus.SCHEDULED,
            availability_slot_id=claimed_slot_id,
            scheduled_date=scheduled_at,
            slot_date=target_date,
        )
    except IntegrityError:
        raise _already_booked(claimed_slot_id, target_date)


def reschedule_appointment(
    db: Session,
    appointment_id: int,
    customer_id: int,
    new_date,
    new_time,
) -> Appointment:
    if not new_date or not new_time:
        raise ValidationError("missing_fields", "New date and time are required",
                              {"missing_fields": [n for n, v in (("new_date", new_date), ("new_time", new_time)) if not v]})
    target_date = parse_date(new_date)
    start_time = parse_hhmm(new_time)

    def work():
        # lock the customer row like create_appointment does for the booking cap
        db.query(User).filter(User.id == customer_id).with_for_update().first()
        appointment = get_appointment(db, appointment_id)
        if appointment.customer_id != customer_id:
            raise AuthorizationError("You can only reschedule your own appointments")
        current = AppointmentStatus.normalize(appointment.status)
        if current not in CANCELLABLE_STATUSES:
            raise ConflictError("not_reschedulable", f"Cannot reschedule an appointment that is {current.value}",
                                {"status": current.value})
        move_appointment(db, appointment, target_date, start_time=start_time)
        return appointment

    appointment = run_in_transaction(db, work)
    db.refresh(appointment)
    logger.info(f"Appointment {appointment.id} rescheduled to {appointment.scheduled_date:%Y-%m-%d %H:%M}")
    return appointment


# --------------------------
# reads
# --------------------------
def booking_capacity(db: Session, customer_id: int) -> dict:
    count = scheduled_count(db, customer_id)
    max_allowed = config.MAX_SCHEDULED_APPOINTMENTS
    available = max(0, max_allowed - count)
    return {
        "can_book": count < max_allowed,
        "scheduled_count": count,
        "max_allowed": max_allowed,
        "available_slots": available,
    }


def list_customer_appointments(db: Session, customer_id: int, status: Optional[str] = None):
    q = db.query(Appointment).filter(Appointment.customer_id == customer_id)
    if status:
        q = q.filter(Appointment.status == parse_status(status).value)
    return q.order_by(Appointment.scheduled_date.desc()).all()


def list_provider_appointments(db: Session, provider_id: int, status: Optional[str] = None):
    q = db.query(Appointment).filter(Appointment.provider_id == provider_id)
    if status:
        q = q.filter(Appointment.status == parse_status(status).value)
    return q.order_by(Appointment.scheduled_date.desc()).all()
