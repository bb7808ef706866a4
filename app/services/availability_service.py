# app/services/availability_service.py
"""
Provider's recurring weekly slots: validation, overlap checks and CRUD.
"""
import logging
import re
from datetime import date, datetime, time
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from app.core import clock
from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.db.models.appointment import ACTIVE_STATUS_VALUES, Appointment
from app.db.models.availability import ProviderAvailability
from app.db.models.user import User
from app.db.transactions import run_in_transaction

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
TIME_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")


def parse_weekday(value) -> int:
    """Accept "Monday", "mon" or 1..7 and return the ISO weekday number."""
    if isinstance(value, bool):
        value = None
    if isinstance(value, int):
        if 1 <= value <= 7:
            return value
    elif isinstance(value, str):
        key = value.strip().lower()
        for number, name in enumerate(WEEKDAY_NAMES, start=1):
            if key in (name.lower(), name[:3].lower()):
                return number
        if key.isdigit() and 1 <= int(key) <= 7:
            return int(key)
    raise ValidationError(
        "invalid_day",
        f"Invalid day of week. Must be one of: {', '.join(WEEKDAY_NAMES)}",
    )


def weekday_name(weekday: int) -> str:
    return WEEKDAY_NAMES[weekday - 1]


def parse_hhmm(value) -> time:
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    if not isinstance(value, str) or not TIME_PATTERN.match(value.strip()):
        raise ValidationError(
            "invalid_time_format",
            "Invalid time format. Use HH:MM format (e.g., 09:00, 14:30)",
            {"value": value},
        )
    hour, minute = value.strip().split(":")
    return time(int(hour), int(minute))


def validate_range(start: time, end: time):
    if start >= end:
        raise ValidationError("invalid_range", "End time must be after start time")


def ranges_conflict(start1: time, end1: time, start2: time, end2: time) -> bool:
    # touching boundaries count: 09:00-10:00 and 10:00-11:00 conflict
    return start1 <= end2 and start2 <= end1


def _find_conflict(candidates: Iterable[ProviderAvailability], start: time, end: time, exclude_id=None):
    for slot in candidates:
        if slot.id == exclude_id:
            continue
        if ranges_conflict(start, end, slot.start_time, slot.end_time):
            return slot
    return None


def _active_slots_for_day(db: Session, provider_id: int, weekday: int) -> List[ProviderAvailability]:
    return db.query(ProviderAvailability).filter(
        ProviderAvailability.provider_id == provider_id,
        ProviderAvailability.weekday == weekday,
        ProviderAvailability.is_active == True,
    ).all()


def _lock_provider(db: Session, provider_id: int):
    # serializes slot writes for one provider
    db.query(User).filter(User.id == provider_id).with_for_update().first()


def _overlap_error(weekday: int, start: time, end: time, existing: ProviderAvailability) -> ConflictError:
    return ConflictError(
        "overlap",
        f"{start:%H:%M}-{end:%H:%M} overlaps or touches existing slot "
        f"{existing.start_time:%H:%M}-{existing.end_time:%H:%M} on {weekday_name(weekday)}",
        {"conflicting_slot_id": existing.id},
    )


def get_owned_slot(db: Session, provider_id: int, slot_id: int) -> ProviderAvailability:
    slot = db.query(ProviderAvailability).filter(
        ProviderAvailability.id == slot_id,
        ProviderAvailability.provider_id == provider_id,
    ).first()
    if not slot:
        raise NotFoundError("slot_not_found", "Time slot not found or does not belong to you")
    return slot


def add_slot(db: Session, provider_id: int, day, start, end, is_active: bool = True) -> ProviderAvailability:
    weekday = parse_weekday(day)
    start_time = parse_hhmm(start)
    end_time = parse_hhmm(end)
    validate_range(start_time, end_time)

    def work():
        _lock_provider(db, provider_id)
        if is_active:
            clash = _find_conflict(_active_slots_for_day(db, provider_id, weekday), start_time, end_time)
            if clash:
                raise _overlap_error(weekday, start_time, end_time, clash)

        slot = ProviderAvailability(
            provider_id=provider_id,
            weekday=weekday,
            start_time=start_time,
            end_time=end_time,
            is_active=is_active,
        )
        db.add(slot)
        db.flush()
        return slot

    slot = run_in_transaction(db, work)
    db.refresh(slot)
    logger.info(f"Provider {provider_id} added slot {slot.id} ({weekday_name(weekday)} {start_time:%H:%M}-{end_time:%H:%M})")
    return slot


def update_slot(db: Session, provider_id: int, slot_id: int, changes: dict) -> ProviderAvailability:
    """
    Apply a partial update. Changed fields are re-validated for format and the
    resulting range must still be ordered.

    Overlap with sibling slots is NOT re-checked here, unlike add_slot; an
    update can therefore produce colliding active slots on the same day.
    """
    slot = get_owned_slot(db, provider_id, slot_id)

    weekday = parse_weekday(changes["day"]) if changes.get("day") is not None else slot.weekday
    start_time = parse_hhmm(changes["start_time"]) if changes.get("start_time") is not None else slot.start_time
    end_time = parse_hhmm(changes["end_time"]) if changes.get("end_time") is not None else slot.end_time
    validate_range(start_time, end_time)

    slot.weekday = weekday
    slot.start_time = start_time
    slot.end_time = end_time
    if changes.get("is_active") is not None:
        slot.is_active = bool(changes["is_active"])

    db.commit()
    db.refresh(slot)
    return slot


def delete_slot(db: Session, provider_id: int, slot_id: int) -> None:
    slot = get_owned_slot(db, provider_id, slot_id)
    # appointments keep their availability_slot_id for record-keeping
    db.delete(slot)
    db.commit()
    logger.info(f"Provider {provider_id} deleted slot {slot_id}")


def _upcoming_active_appointments(db: Session, slot_ids: List[int]) -> List[Appointment]:
    if not slot_ids:
        return []
    today = clock.local_now().date()
    return db.query(Appointment).filter(
        Appointment.availability_slot_id.in_(slot_ids),
        Appointment.slot_date >= today,
        Appointment.status.in_(ACTIVE_STATUS_VALUES),
    ).all()


def _refuse_if_booked(db: Session, slots: List[ProviderAvailability], label: str):
    booked = _upcoming_active_appointments(db, [s.id for s in slots])
    if booked:
        raise ConflictError(
            "slot_has_active_appointments",
            f"Cannot deactivate {label}. There are {len(booked)} active appointment(s) scheduled.",
            {"conflicting_appointments": [
                {"appointment_id": a.id, "scheduled_date": a.scheduled_date.isoformat(), "status": a.status}
                for a in booked
            ]},
        )


def set_slot_active(db: Session, provider_id: int, slot_id: int, is_active: bool) -> ProviderAvailability:
    def work():
        _lock_provider(db, provider_id)
        slot = get_owned_slot(db, provider_id, slot_id)
        if slot.is_active == is_active:
            return slot
        if is_active:
            clash = _find_conflict(
                _active_slots_for_day(db, provider_id, slot.weekday), slot.start_time, slot.end_time, exclude_id=slot.id
            )
            if clash:
                raise _overlap_error(slot.weekday, slot.start_time, slot.end_time, clash)
        else:
            _refuse_if_booked(db, [slot], "time slot")
        slot.is_active = is_active
        return slot

    slot = run_in_transaction(db, work)
    db.refresh(slot)
    return slot


def toggle_day(db: Session, provider_id: int, target_date: date) -> List[ProviderAvailability]:
    """
    Flip every slot on the weekday of `target_date`: deactivate them all if
    any is active, otherwise activate them all.
    """
    weekday = target_date.isoweekday()

    def work():
        _lock_provider(db, provider_id)
        slots = db.query(ProviderAvailability).filter(
            ProviderAvailability.provider_id == provider_id,
            ProviderAvailability.weekday == weekday,
        ).order_by(ProviderAvailability.start_time).all()
        if not slots:
            raise NotFoundError(
                "slot_not_found",
                f"No availability slots found for {weekday_name(weekday)}. Please add availability first.",
            )

        activate = not any(s.is_active for s in slots)
        if activate:
            ordered = sorted(slots, key=lambda s: s.start_time)
            for previous, current in zip(ordered, ordered[1:]):
                if ranges_conflict(previous.start_time, previous.end_time, current.start_time, current.end_time):
                    raise _overlap_error(weekday, current.start_time, current.end_time, previous)
        else:
            _refuse_if_booked(db, slots, weekday_name(weekday))

        for slot in slots:
            slot.is_active = activate
        return slots

    slots = run_in_transaction(db, work)
    logger.info(f"Provider {provider_id} toggled {weekday_name(weekday)}: {len(slots)} slot(s) now active={slots[0].is_active}")
    return slots


def list_slots(db: Session, provider_id: int, day=None, include_inactive: bool = True) -> List[ProviderAvailability]:
    q = db.query(ProviderAvailability).filter(ProviderAvailability.provider_id == provider_id)
    if day is not None:
        q = q.filter(ProviderAvailability.weekday == parse_weekday(day))
    if not include_inactive:
        q = q.filter(ProviderAvailability.is_active == True)
    return q.order_by(ProviderAvailability.weekday, ProviderAvailability.start_time).all()


def parse_date(value) -> date:
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value), "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError("invalid_date_format", "Invalid date format, use YYYY-MM-DD")
