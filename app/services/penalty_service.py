# app/services/penalty_service.py
"""
Penalty-pattern detection.

Detection is best-effort: the run_* entry points open their own session, are
dispatched after the triggering change has committed, and any failure is
logged by the dispatcher rather than surfaced.
"""
import logging
from datetime import datetime, time, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core import clock, config
from app.db import base
from app.db.models.appointment import Appointment, AppointmentStatus
from app.db.models.penalty import PenaltyViolation

logger = logging.getLogger(__name__)

USER_LATE_CANCEL = "USER_LATE_CANCEL"
USER_MULTIPLE_CANCELS_SAME_DAY = "USER_MULTIPLE_CANCELS_SAME_DAY"
USER_CONSECUTIVE_DAY_CANCELS = "USER_CONSECUTIVE_DAY_CANCELS"
USER_NO_SHOW = "USER_NO_SHOW"
PROVIDER_NO_SHOW = "PROVIDER_NO_SHOW"
USER_REPEATED_NO_SHOW = "USER_REPEATED_NO_SHOW"
PROVIDER_REPEATED_NO_SHOW = "PROVIDER_REPEATED_NO_SHOW"


def record_violation(
    db: Session,
    violation_code: str,
    user_id: Optional[int] = None,
    provider_id: Optional[int] = None,
    appointment_id: Optional[int] = None,
    details: Optional[str] = None,
) -> PenaltyViolation:
    violation = PenaltyViolation(
        user_id=user_id,
        provider_id=provider_id,
        appointment_id=appointment_id,
        violation_code=violation_code,
        details=details,
        created_at=clock.local_now(),
    )
    db.add(violation)
    db.commit()
    logger.info(f"Recorded {violation_code} (user={user_id}, provider={provider_id}, appointment={appointment_id})")
    return violation


def _violation_since(db: Session, code: str, since: datetime, user_id=None, provider_id=None) -> int:
    q = db.query(func.count(PenaltyViolation.id)).filter(
        PenaltyViolation.violation_code == code,
        PenaltyViolation.created_at >= since,
    )
    if user_id is not None:
        q = q.filter(PenaltyViolation.user_id == user_id)
    if provider_id is not None:
        q = q.filter(PenaltyViolation.provider_id == provider_id)
    return q.scalar() or 0


def _cancellations_between(db: Session, customer_id: int, start: datetime, end: datetime) -> int:
    return db.query(func.count(Appointment.id)).filter(
        Appointment.customer_id == customer_id,
        Appointment.status == AppointmentStatus.CANCELLED.value,
        Appointment.cancelled_at >= start,
        Appointment.cancelled_at < end,
    ).scalar() or 0


def detect_late_cancellation(db: Session, appointment_id: int) -> bool:
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    if not appointment or appointment.status != AppointmentStatus.CANCELLED.value:
        return False

    cancelled_at = appointment.cancelled_at or clock.local_now()
    hours_before = (appointment.scheduled_date - cancelled_at).total_seconds() / 3600
    if hours_before >= config.LATE_CANCELLATION_HOURS:
        return False

    record_violation(
        db,
        USER_LATE_CANCEL,
        user_id=appointment.customer_id,
        appointment_id=appointment.id,
        details=f"Appointment cancelled {hours_before:.1f} hours before scheduled time",
    )
    return True


def detect_multiple_cancellations_same_day(db: Session, customer_id: int) -> bool:
    today = datetime.combine(clock.local_now().date(), time.min)
    tomorrow = today + timedelta(days=1)

    cancellations_today = _cancellations_between(db, customer_id, today, tomorrow)
    logger.debug(f"Cancelled appointments today: {cancellations_today}/{config.SAME_DAY_CANCELLATION_LIMIT} for user {customer_id}")
    if cancellations_today < config.SAME_DAY_CANCELLATION_LIMIT:
        return False
    if _violation_since(db, USER_MULTIPLE_CANCELS_SAME_DAY, today, user_id=customer_id):
        return False

    record_violation(
        db,
        USER_MULTIPLE_CANCELS_SAME_DAY,
        user_id=customer_id,
        details=f"Cancelled {cancellations_today} appointments within a single day",
    )
    return True


def detect_consecutive_day_cancellations(db: Session, customer_id: int) -> bool:
    days = config.CONSECUTIVE_CANCELLATION_DAYS
    today = datetime.combine(clock.local_now().date(), time.min)

    streak = 0
    for offset in range(days):
        day_start = today - timedelta(days=offset)
        if _cancellations_between(db, customer_id, day_start, day_start + timedelta(days=1)) == 0:
            break
        streak += 1

    if streak < days:
        return False
    if _violation_since(db, USER_CONSECUTIVE_DAY_CANCELS, today - timedelta(days=days), user_id=customer_id):
        return False

    record_violation(
        db,
        USER_CONSECUTIVE_DAY_CANCELS,
        user_id=customer_id,
        details=f"Cancelled appointments on {streak} consecutive days",
    )
    return True


def detect_provider_no_show(db: Session, appointment_id: int) -> bool:
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    if not appointment or appointment.status != AppointmentStatus.PROVIDER_NO_SHOW.value:
        return False

    window_start = clock.local_now() - timedelta(days=config.PROVIDER_NO_SHOW_WINDOW_DAYS)
    previous = _violation_since(db, PROVIDER_NO_SHOW, window_start, provider_id=appointment.provider_id)
    if previous >= 2:
        record_violation(
            db,
            PROVIDER_REPEATED_NO_SHOW,
            provider_id=appointment.provider_id,
            appointment_id=appointment.id,
            details=f"Provider has {previous} no-shows in the past {config.PROVIDER_NO_SHOW_WINDOW_DAYS} days",
        )
    else:
        record_violation(db, PROVIDER_NO_SHOW, provider_id=appointment.provider_id, appointment_id=appointment.id)
    return True


def detect_user_no_show(db: Session, appointment_id: int) -> bool:
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    if not appointment or appointment.status != AppointmentStatus.NO_SHOW.value:
        return False
    record_violation(db, USER_NO_SHOW, user_id=appointment.customer_id, appointment_id=appointment.id)
    detect_repeated_no_shows(db, appointment.customer_id)
    return True


def detect_repeated_no_shows(db: Session, customer_id: int) -> bool:
    """Flag a customer once per window when their no-shows in it reach the limit."""
    window_start = clock.local_now() - timedelta(days=config.USER_NO_SHOW_WINDOW_DAYS)
    recent = _violation_since(db, USER_NO_SHOW, window_start, user_id=customer_id)
    if recent < config.USER_REPEATED_NO_SHOW_LIMIT:
        return False
    if _violation_since(db, USER_REPEATED_NO_SHOW, window_start, user_id=customer_id):
        return False

    record_violation(
        db,
        USER_REPEATED_NO_SHOW,
        user_id=customer_id,
        details=f"{recent} no-shows within {config.USER_NO_SHOW_WINDOW_DAYS} days",
    )
    return True


def run_cancellation_checks(customer_id: int, appointment_id: int) -> None:
    db = base.SessionLocal()
    try:
        detect_late_cancellation(db, appointment_id)
        detect_multiple_cancellations_same_day(db, customer_id)
        detect_consecutive_day_cancellations(db, customer_id)
    finally:
        db.close()


def run_provider_no_show_check(appointment_id: int) -> None:
    db = base.SessionLocal()
    try:
        detect_provider_no_show(db, appointment_id)
    finally:
        db.close()


def run_user_no_show_check(appointment_id: int) -> None:
    db = base.SessionLocal()
    try:
        detect_user_no_show(db, appointment_id)
    finally:
        db.close()
