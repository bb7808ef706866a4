# app/services/lifecycle_service.py
"""
Appointment status machine.

    pending -> {accepted | approved | confirmed | scheduled} -> on_the_way
            -> in_progress -> finished -> completed

Side branches: cancelled (customer, through booking_service), rejected
(provider, from pending), no_show (provider reports the customer absent),
provider_no_show (customer report with evidence). All side branches and
`completed` are terminal.
"""
import logging
import math
from datetime import datetime
from numbers import Number
from typing import List, Optional

from fastapi import BackgroundTasks
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core import clock
from app.core.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from app.core.side_effects import dispatch
from app.db.models.appointment import ACCEPTANCE_STATUSES, Appointment, AppointmentStatus
from app.db.models.availability import ProviderAvailability
from app.db.models.backjob import Backjob, BackjobStatus
from app.db.models.rating import RATED_BY_CUSTOMER, RATED_BY_PROVIDER, Rating
from app.db.transactions import run_in_transaction
from app.services import booking_service, notification_service, penalty_service, storage_service

logger = logging.getLogger(__name__)

S = AppointmentStatus

# target -> statuses it may be reached from
ALLOWED_FROM = {
    S.ACCEPTED: {S.PENDING},
    S.APPROVED: {S.PENDING},
    S.CONFIRMED: {S.PENDING},
    S.SCHEDULED: {S.PENDING},
    S.REJECTED: {S.PENDING},
    S.ON_THE_WAY: set(ACCEPTANCE_STATUSES),
    S.IN_PROGRESS: {S.ON_THE_WAY},
    S.FINISHED: {S.IN_PROGRESS},
    S.COMPLETED: {S.FINISHED},
    S.NO_SHOW: set(ACCEPTANCE_STATUSES) | {S.ON_THE_WAY},
}

PROVIDER_TARGETS = set(ACCEPTANCE_STATUSES) | {S.REJECTED, S.ON_THE_WAY, S.IN_PROGRESS, S.FINISHED, S.NO_SHOW}
CUSTOMER_TARGETS = {S.CANCELLED}
EITHER_PARTY_TARGETS = {S.COMPLETED}
TRANSITION_TARGETS = PROVIDER_TARGETS | CUSTOMER_TARGETS | EITHER_PARTY_TARGETS

NOTIFY_CUSTOMER_ON = {S.ON_THE_WAY, S.IN_PROGRESS}


def _authorize(appointment: Appointment, actor_id: int, target: AppointmentStatus):
    if target in PROVIDER_TARGETS and actor_id != appointment.provider_id:
        raise AuthorizationError("You can only manage your own appointments")
    if target in CUSTOMER_TARGETS and actor_id != appointment.customer_id:
        raise AuthorizationError("Only the appointment customer can do this")
    if target in EITHER_PARTY_TARGETS and actor_id not in (appointment.customer_id, appointment.provider_id):
        raise AuthorizationError("Not your appointment")


def _validate_final_price(final_price) -> float:
    if isinstance(final_price, bool) or not isinstance(final_price, Number) or not final_price > 0:
        raise ValidationError("invalid_final_price", "Valid final price is required", {"final_price": final_price})
    return float(final_price)


def transition_status(
    db: Session,
    appointment_id: int,
    actor_id: int,
    new_status,
    final_price=None,
    reason: Optional[str] = None,
    background_tasks: Optional[BackgroundTasks] = None,
) -> Appointment:
    target = booking_service.parse_status(new_status)
    if target not in TRANSITION_TARGETS:
        allowed = ", ".join(sorted(s.value for s in TRANSITION_TARGETS))
        raise ValidationError("invalid_status", f"Invalid status. Valid statuses are: {allowed}", {"status": new_status})

    if target == S.CANCELLED:
        return booking_service.cancel_appointment(db, appointment_id, actor_id, reason, background_tasks)

    def work():
        appointment = booking_service.get_appointment(db, appointment_id)
        _authorize(appointment, actor_id, target)

        current = AppointmentStatus.normalize(appointment.status)
        if current not in ALLOWED_FROM[target]:
            raise ConflictError(
                "invalid_transition",
                f"Cannot change status from {current.value} to {target.value}",
                {"status": current.value, "requested_status": target.value},
            )

        values = {}
        if target == S.FINISHED:
            values["final_price"] = _validate_final_price(final_price)
        elif target == S.REJECTED:
            values["cancellation_reason"] = reason or "Rejected by provider"

        booking_service.compare_and_set_status(db, appointment, target, **values)

        if target == S.FINISHED:
            # a warranty redo is done once the redo appointment is finished
            redone = db.query(Backjob).filter(
                Backjob.appointment_id == appointment.id,
                Backjob.status == BackjobStatus.APPROVED.value,
            ).update(
                {"status": BackjobStatus.COMPLETED.value, "updated_at": datetime.utcnow()},
                synchronize_session=False,
            )
            if redone:
                logger.info(f"Backjob for appointment {appointment.id} completed")
        return appointment

    appointment = run_in_transaction(db, work)
    db.refresh(appointment)
    logger.info(f"Appointment {appointment.id} moved to {target.value} by user {actor_id}")

    if target in NOTIFY_CUSTOMER_ON:
        dispatch(background_tasks, notification_service.notify_status_change, appointment.id, target.value)
    if target == S.NO_SHOW:
        dispatch(background_tasks, penalty_service.run_user_no_show_check, appointment.id)
    return appointment


def finish_appointment(
    db: Session,
    appointment_id: int,
    provider_id: int,
    final_price,
    background_tasks: Optional[BackgroundTasks] = None,
) -> Appointment:
    return transition_status(
        db, appointment_id, provider_id, S.FINISHED, final_price=final_price, background_tasks=background_tasks
    )


# --------------------------
# provider no-show
# --------------------------
def report_provider_no_show(
    db: Session,
    appointment_id: int,
    customer_id: int,
    evidence_photo: Optional[bytes],
    filename: Optional[str],
    description: Optional[str],
    background_tasks: Optional[BackgroundTasks] = None,
) -> Appointment:
    if not evidence_photo or not (description or "").strip():
        raise ValidationError("missing_evidence", "Photo evidence and description are required to report a no-show")

    appointment = booking_service.get_appointment(db, appointment_id)
    if appointment.customer_id != customer_id:
        raise AuthorizationError("Appointment does not belong to you")

    current = AppointmentStatus.normalize(appointment.status)
    if current != S.SCHEDULED:
        raise ConflictError(
            "not_reportable",
            f'Cannot report no-show. Appointment must be in "scheduled" status. Current status: {current.value}',
            {"status": current.value},
        )

    slot = None
    if appointment.availability_slot_id is not None:
        slot = db.query(ProviderAvailability).filter(ProviderAvailability.id == appointment.availability_slot_id).first()
    if not slot:
        raise ConflictError("end_time_unknown", "Cannot determine appointment end time")

    ends_at = datetime.combine(appointment.scheduled_date.date(), slot.end_time)
    now = clock.local_now()
    if now <= ends_at:
        minutes_remaining = math.ceil((ends_at - now).total_seconds() / 60)
        raise ConflictError(
            "too_early",
            f"Cannot report no-show yet. The appointment time slot has not ended. "
            f"Appointment ends at {ends_at:%Y-%m-%d %H:%M} ({minutes_remaining} minute(s) remaining)",
            {
                "appointment_end_time": ends_at.isoformat(),
                "current_time": now.isoformat(),
                "minutes_remaining": minutes_remaining,
            },
        )

    photo_key = storage_service.save_evidence_photo(evidence_photo, filename)
    photo_url = storage_service.public_url(photo_key)

    def work():
        booking_service.compare_and_set_status(
            db,
            appointment,
            S.PROVIDER_NO_SHOW,
            cancellation_reason=f"Customer reported provider no-show: {description.strip()}",
            evidence_photo_url=photo_url,
        )
        return appointment

    try:
        run_in_transaction(db, work)
    except Exception:
        # nothing references the upload now
        storage_service.delete_evidence_photo(photo_key)
        raise
    db.refresh(appointment)
    logger.info(f"Provider no-show reported for appointment {appointment.id} by customer {customer_id}")

    dispatch(background_tasks, penalty_service.run_provider_no_show_check, appointment.id)
    return appointment


# --------------------------
# ratings
# --------------------------
# statuses in which each side may rate; providers may rate as soon as the job is finished
RATABLE_STATUSES = {
    RATED_BY_CUSTOMER: {S.COMPLETED},
    RATED_BY_PROVIDER: {S.FINISHED, S.COMPLETED},
}


def _already_rated(appointment_id: int) -> ConflictError:
    return ConflictError("already_rated", "This appointment has already been rated", {"appointment_id": appointment_id})


def _rater_side(appointment: Appointment, user_id: int) -> str:
    if appointment.customer_id == user_id:
        return RATED_BY_CUSTOMER
    if appointment.provider_id == user_id:
        return RATED_BY_PROVIDER
    raise AuthorizationError("Only the parties of an appointment can rate it")


def _rating_block(db: Session, appointment: Appointment, rated_by: str) -> Optional[ConflictError]:
    """The reason `rated_by` cannot rate `appointment` right now, or None."""
    current = AppointmentStatus.normalize(appointment.status)
    if current not in RATABLE_STATUSES[rated_by]:
        allowed = " or ".join(sorted(s.value for s in RATABLE_STATUSES[rated_by]))
        return ConflictError("not_ratable", f"Can only rate {allowed} appointments", {"status": current.value})
    exists = db.query(Rating.id).filter(
        Rating.appointment_id == appointment.id,
        Rating.rated_by == rated_by,
    ).first()
    if exists:
        return _already_rated(appointment.id)
    return None


def _rate(db: Session, appointment_id: int, user_id: int, rated_by: str, value, comment: Optional[str]) -> Rating:
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 5:
        raise ValidationError("invalid_rating", "Rating must be a whole number between 1 and 5", {"value": value})

    def work():
        appointment = db.query(Appointment).filter(Appointment.id == appointment_id).with_for_update().first()
        if not appointment:
            raise NotFoundError("appointment_not_found", "Appointment not found")
        if _rater_side(appointment, user_id) != rated_by:
            raise AuthorizationError(f"Only the appointment {rated_by} can submit this rating")

        blocked = _rating_block(db, appointment, rated_by)
        if blocked:
            raise blocked

        rating = Rating(
            appointment_id=appointment.id,
            user_id=appointment.customer_id,
            provider_id=appointment.provider_id,
            rated_by=rated_by,
            value=value,
            comment=comment,
        )
        db.add(rating)
        try:
            db.flush()
        except IntegrityError:
            raise _already_rated(appointment_id)
        return rating

    rating = run_in_transaction(db, work)
    db.refresh(rating)
    logger.info(f"Appointment {appointment_id} rated {value}/5 by {rated_by} {user_id}")
    return rating


def create_rating(db: Session, appointment_id: int, user_id: int, value, comment: Optional[str] = None) -> Rating:
    """Customer rates the provider once the appointment is completed."""
    return _rate(db, appointment_id, user_id, RATED_BY_CUSTOMER, value, comment)


def rate_customer(db: Session, appointment_id: int, provider_id: int, value, comment: Optional[str] = None) -> Rating:
    """Provider rates the customer once the job is finished."""
    return _rate(db, appointment_id, provider_id, RATED_BY_PROVIDER, value, comment)


def can_rate(db: Session, appointment_id: int, user_id: int) -> dict:
    appointment = booking_service.get_appointment(db, appointment_id)
    rated_by = _rater_side(appointment, user_id)
    blocked = _rating_block(db, appointment, rated_by)
    return {
        "appointment_id": appointment.id,
        "rated_by": rated_by,
        "can_rate": blocked is None,
        "reason": blocked.code if blocked else None,
    }


def _unrated(db: Session, rated_by: str):
    rated = select(Rating.appointment_id).where(Rating.rated_by == rated_by)
    statuses = [s.value for s in RATABLE_STATUSES[rated_by]]
    return db.query(Appointment).filter(
        Appointment.status.in_(statuses),
        ~Appointment.id.in_(rated),
    )


def list_rateable_appointments(db: Session, customer_id: int) -> List[Appointment]:
    return _unrated(db, RATED_BY_CUSTOMER).filter(
        Appointment.customer_id == customer_id
    ).order_by(Appointment.scheduled_date.desc()).all()


def list_provider_rateable_appointments(db: Session, provider_id: int) -> List[Appointment]:
    return _unrated(db, RATED_BY_PROVIDER).filter(
        Appointment.provider_id == provider_id
    ).order_by(Appointment.scheduled_date.desc()).all()


def list_provider_ratings(db: Session, provider_id: int) -> List[Rating]:
    """Ratings customers gave the provider, newest first."""
    return db.query(Rating).filter(
        Rating.provider_id == provider_id,
        Rating.rated_by == RATED_BY_CUSTOMER,
    ).order_by(Rating.created_at.desc()).all()


def list_customer_ratings(db: Session, customer_id: int) -> List[Rating]:
    """Ratings providers gave the customer, newest first."""
    return db.query(Rating).filter(
        Rating.user_id == customer_id,
        Rating.rated_by == RATED_BY_PROVIDER,
    ).order_by(Rating.created_at.desc()).all()
