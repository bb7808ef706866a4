# app/services/backjob_service.py
"""Warranty redo ("backjob") requests against finished appointments."""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from app.core.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from app.db.models.appointment import AppointmentStatus
from app.db.models.backjob import OPEN_BACKJOB_STATUSES, Backjob, BackjobStatus
from app.db.transactions import run_in_transaction
from app.services import booking_service
from app.services.availability_service import parse_date

logger = logging.getLogger(__name__)

RESOLVE_ACTIONS = {
    "approve": BackjobStatus.APPROVED,
    "dispute": BackjobStatus.DISPUTED,
}


def get_backjob(db: Session, backjob_id: int) -> Backjob:
    backjob = db.query(Backjob).filter(Backjob.id == backjob_id).first()
    if not backjob:
        raise NotFoundError("backjob_not_found", "Backjob not found")
    return backjob


def _set_backjob_status(db: Session, backjob: Backjob, expected: BackjobStatus, new_status: BackjobStatus, **values):
    values["status"] = new_status.value
    values["updated_at"] = datetime.utcnow()
    updated = db.query(Backjob).filter(
        Backjob.id == backjob.id,
        Backjob.status == expected.value,
    ).update(values, synchronize_session=False)
    if updated != 1:
        raise ConflictError("conflict", "The backjob was changed by another request", {"backjob_id": backjob.id})


def apply_backjob(db: Session, appointment_id: int, customer_id: int, reason: Optional[str]) -> Backjob:
    if not (reason or "").strip():
        raise ValidationError("missing_fields", "A reason is required", {"missing_fields": ["reason"]})

    def work():
        appointment = booking_service.get_appointment(db, appointment_id)
        if appointment.customer_id != customer_id:
            raise AuthorizationError("You can only request a backjob for your own appointments")

        current = AppointmentStatus.normalize(appointment.status)
        if current != AppointmentStatus.FINISHED:
            raise ConflictError(
                "invalid_transition",
                "Backjobs can only be requested for finished appointments",
                {"status": current.value},
            )

        existing = db.query(Backjob).filter(
            Backjob.appointment_id == appointment.id,
            Backjob.status.in_(OPEN_BACKJOB_STATUSES),
        ).first()
        if existing:
            raise ConflictError(
                "backjob_exists",
                "A backjob is already open for this appointment",
                {"backjob_id": existing.id, "status": existing.status},
            )

        backjob = Backjob(
            appointment_id=appointment.id,
            customer_id=customer_id,
            provider_id=appointment.provider_id,
            reason=reason.strip(),
            status=BackjobStatus.PENDING.value,
        )
        db.add(backjob)
        db.flush()
        return backjob

    backjob = run_in_transaction(db, work)
    db.refresh(backjob)
    logger.info(f"Backjob {backjob.id} requested for appointment {appointment_id}")
    return backjob


def resolve_backjob(db: Session, backjob_id: int, provider_id: int, action: str, note: Optional[str] = None) -> Backjob:
    new_status = RESOLVE_ACTIONS.get((action or "").strip().lower())
    if new_status is None:
        raise ValidationError("invalid_action", "Action must be 'approve' or 'dispute'", {"action": action})

    def work():
        backjob = get_backjob(db, backjob_id)
        if backjob.provider_id != provider_id:
            raise AuthorizationError("You can only resolve backjobs for your own appointments")
        if backjob.status != BackjobStatus.PENDING.value:
            raise ConflictError("invalid_transition", f"Backjob is already {backjob.status}", {"status": backjob.status})
        _set_backjob_status(db, backjob, BackjobStatus.PENDING, new_status, provider_note=note)
        return backjob

    backjob = run_in_transaction(db, work)
    db.refresh(backjob)
    logger.info(f"Backjob {backjob.id} {backjob.status} by provider {provider_id}")
    return backjob


def reschedule_from_backjob(db: Session, backjob_id: int, provider_id: int, new_date, slot_id: int):
    if new_date in (None, "") or slot_id is None:
        raise ValidationError("missing_fields", "New date and slot are required")
    target_date = parse_date(new_date)

    def work():
        backjob = get_backjob(db, backjob_id)
        if backjob.provider_id != provider_id:
            raise AuthorizationError("You can only reschedule backjobs for your own appointments")
        if backjob.status != BackjobStatus.APPROVED.value:
            raise ConflictError(
                "invalid_transition", "Only approved backjobs can be rescheduled", {"status": backjob.status}
            )

        appointment = booking_service.get_appointment(db, backjob.appointment_id)
        current = AppointmentStatus.normalize(appointment.status)
        if current != AppointmentStatus.FINISHED:
            raise ConflictError(
                "invalid_transition",
                f"Cannot reschedule a redo for an appointment that is {current.value}",
                {"status": current.value},
            )
        # the redo is the provider's obligation, it does not count against the customer
        booking_service.move_appointment(db, appointment, target_date, slot_id=slot_id, enforce_cap=False)
        return appointment

    appointment = run_in_transaction(db, work)
    db.refresh(appointment)
    logger.info(f"Backjob {backjob_id}: appointment {appointment.id} rescheduled to {appointment.scheduled_date:%Y-%m-%d %H:%M}")
    return appointment


def cancel_backjob(db: Session, backjob_id: int, customer_id: int) -> Backjob:
    def work():
        backjob = get_backjob(db, backjob_id)
        if backjob.customer_id != customer_id:
            raise AuthorizationError("You can only cancel your own backjobs")
        if backjob.status != BackjobStatus.PENDING.value:
            raise ConflictError("invalid_transition", f"Backjob is already {backjob.status}", {"status": backjob.status})
        _set_backjob_status(db, backjob, BackjobStatus.PENDING, BackjobStatus.CANCELLED)
        return backjob

    backjob = run_in_transaction(db, work)
    db.refresh(backjob)
    return backjob


def list_backjobs(db: Session, user_id: int) -> List[Backjob]:
    return db.query(Backjob).filter(
        (Backjob.customer_id == user_id) | (Backjob.provider_id == user_id)
    ).order_by(Backjob.created_at.desc()).all()
