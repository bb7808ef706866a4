# app/api/routes/appointments.py
from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, UploadFile
from sqlalchemy.orm import Session
from typing import List, Optional

from app.db.base import get_db
from app.db.models.user import User
from app.schemas.booking import (
    AppointmentCreate,
    AppointmentResponse,
    BookingCapacityResponse,
    CancelRequest,
    FinishRequest,
    RescheduleRequest,
    StatusUpdate,
)
from app.schemas.rating import RatingEligibility
from app.core.rate_limit import booking_rate_limit
from app.core.security import get_current_user, require_role
from app.services import booking_service, lifecycle_service

router = APIRouter(prefix="/appointments", tags=["appointments"])


def _create(payload: AppointmentCreate, db: Session, current_user: User, background_tasks: BackgroundTasks, auto_accept: bool):
    require_role(current_user, "customer", "Only customers can create appointments")
    return booking_service.create_appointment(
        db,
        customer_id=current_user.id,
        provider_id=payload.provider_id,
        service_id=payload.service_id,
        scheduled_date=payload.scheduled_date,
        scheduled_time=payload.scheduled_time,
        description=payload.description,
        auto_accept=auto_accept,
        background_tasks=background_tasks,
    )

# Customer books a slot; the provider still has to accept

@router.post("", response_model=AppointmentResponse, status_code=201)
def create_appointment(
    payload: AppointmentCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(booking_rate_limit),
):
    return _create(payload, db, current_user, background_tasks, auto_accept=False)


@router.post("/instant", response_model=AppointmentResponse, status_code=201)
def create_instant_appointment(
    payload: AppointmentCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(booking_rate_limit),
):
    return _create(payload, db, current_user, background_tasks, auto_accept=True)


@router.get("/customer/me", response_model=List[AppointmentResponse])
def my_customer_appointments(
    status: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_role(current_user, "customer", "Only customers can view their bookings")
    return booking_service.list_customer_appointments(db, current_user.id, status=status)


@router.get("/provider/me", response_model=List[AppointmentResponse])
def my_provider_appointments(
    status: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_role(current_user, "provider", "Only providers can view their appointments")
    return booking_service.list_provider_appointments(db, current_user.id, status=status)


@router.get("/customer/capacity", response_model=BookingCapacityResponse)
def my_booking_capacity(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    require_role(current_user, "customer", "Only customers have a booking limit")
    return booking_service.booking_capacity(db, current_user.id)


@router.get("/{appointment_id}", response_model=AppointmentResponse)
def get_appointment(appointment_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return booking_service.get_appointment_for_party(db, appointment_id, current_user.id)


@router.get("/{appointment_id}/can-rate", response_model=RatingEligibility)
def can_rate(appointment_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return lifecycle_service.can_rate(db, appointment_id, current_user.id)


@router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    background_tasks: BackgroundTasks,
    payload: Optional[CancelRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    reason = payload.reason if payload else None
    return booking_service.cancel_appointment(db, appointment_id, current_user.id, reason, background_tasks)


@router.post("/{appointment_id}/status", response_model=AppointmentResponse)
def update_status(
    appointment_id: int,
    payload: StatusUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return lifecycle_service.transition_status(
        db,
        appointment_id,
        current_user.id,
        payload.status,
        final_price=payload.final_price,
        reason=payload.reason,
        background_tasks=background_tasks,
    )


@router.post("/{appointment_id}/finish", response_model=AppointmentResponse)
def finish_appointment(
    appointment_id: int,
    payload: FinishRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_role(current_user, "provider", "Only providers can finish appointments")
    return lifecycle_service.finish_appointment(db, appointment_id, current_user.id, payload.final_price, background_tasks)


@router.post("/{appointment_id}/reschedule", response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    payload: RescheduleRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_role(current_user, "customer", "Only customers can reschedule appointments")
    return booking_service.reschedule_appointment(db, appointment_id, current_user.id, payload.new_date, payload.new_time)


@router.post("/{appointment_id}/no-show", response_model=AppointmentResponse)
def report_provider_no_show(
    appointment_id: int,
    background_tasks: BackgroundTasks,
    description: Optional[str] = Form(None),
    evidence: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Customer reports that the provider never showed up. Needs a photo and a description."""
    require_role(current_user, "customer", "Only customers can report a provider no-show")
    content = evidence.file.read() if evidence is not None else None
    filename = evidence.filename if evidence is not None else None
    return lifecycle_service.report_provider_no_show(
        db, appointment_id, current_user.id, content, filename, description, background_tasks
    )
