# app/services/notification_service.py
"""
In-app notifications for booking events.

Every function opens its own session because it runs after the request's
transaction has committed (usually as a background task). Callers go through
app.core.side_effects.dispatch so a failure here never reaches the client.
"""
import logging
from typing import Optional

from app.db import base
from app.db.models.appointment import Appointment, AppointmentStatus
from app.db.models.notification import Notification

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    AppointmentStatus.ON_THE_WAY.value: ("Provider on the way", "Your service provider is on the way."),
    AppointmentStatus.IN_PROGRESS.value: ("Service started", "Your service provider has started the job."),
}


def notify(user_id: int, event: str, title: str, message: str, payload: Optional[dict] = None) -> None:
    db = base.SessionLocal()
    try:
        db.add(Notification(user_id=user_id, event=event, title=title, message=message, payload=payload or {}))
        db.commit()
        logger.info(f"Notification '{event}' queued for user {user_id}")
    finally:
        db.close()


def _load(appointment_id: int) -> Optional[Appointment]:
    db = base.SessionLocal()
    try:
        appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
        if appointment:
            db.expunge(appointment)
        return appointment
    finally:
        db.close()


def notify_booking_created(appointment_id: int) -> None:
    appointment = _load(appointment_id)
    if not appointment:
        logger.warning(f"Skipping booking_created notification: appointment {appointment_id} not found")
        return
    payload = {
        "appointment_id": appointment.id,
        "scheduled_date": appointment.scheduled_date.isoformat(),
        "status": appointment.status,
    }
    when = appointment.scheduled_date.strftime("%Y-%m-%d %H:%M")
    notify(appointment.customer_id, "booking_created", "Booking received", f"Your appointment on {when} was booked.", payload)
    notify(appointment.provider_id, "booking_created", "New booking", f"You have a new appointment on {when}.", payload)


def notify_status_change(appointment_id: int, status: str) -> None:
    appointment = _load(appointment_id)
    if not appointment or status not in STATUS_MESSAGES:
        return
    title, message = STATUS_MESSAGES[status]
    notify(appointment.customer_id, "appointment_status_changed", title, message,
           {"appointment_id": appointment.id, "status": status})


def notify_cancelled(appointment_id: int) -> None:
    appointment = _load(appointment_id)
    if not appointment:
        return
    when = appointment.scheduled_date.strftime("%Y-%m-%d %H:%M")
    notify(appointment.provider_id, "appointment_cancelled", "Appointment cancelled",
           f"The appointment on {when} was cancelled by the customer.",
           {"appointment_id": appointment.id, "reason": appointment.cancellation_reason})
