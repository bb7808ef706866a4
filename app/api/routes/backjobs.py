# app/api/routes/backjobs.py
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List

from app.db.base import get_db
from app.db.models.user import User
from app.schemas.backjob import BackjobCreate, BackjobReschedule, BackjobResolve, BackjobResponse
from app.schemas.booking import AppointmentResponse
from app.core.security import get_current_user, require_role
from app.services import backjob_service

router = APIRouter(tags=["backjobs"])


@router.post("/appointments/{appointment_id}/backjobs", response_model=BackjobResponse, status_code=status.HTTP_201_CREATED)
def apply_backjob(
    appointment_id: int,
    payload: BackjobCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_role(current_user, "customer", "Only customers can request a backjob")
    return backjob_service.apply_backjob(db, appointment_id, current_user.id, payload.reason)


@router.get("/backjobs/me", response_model=List[BackjobResponse])
def my_backjobs(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return backjob_service.list_backjobs(db, current_user.id)


@router.post("/backjobs/{backjob_id}/resolve", response_model=BackjobResponse)
def resolve_backjob(
    backjob_id: int,
    payload: BackjobResolve,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_role(current_user, "provider", "Only providers can resolve backjobs")
    return backjob_service.resolve_backjob(db, backjob_id, current_user.id, payload.action, payload.note)


@router.post("/backjobs/{backjob_id}/reschedule", response_model=AppointmentResponse)
def reschedule_backjob(
    backjob_id: int,
    payload: BackjobReschedule,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_role(current_user, "provider", "Only providers can reschedule a backjob")
    return backjob_service.reschedule_from_backjob(db, backjob_id, current_user.id, payload.new_date, payload.slot_id)


@router.post("/backjobs/{backjob_id}/cancel", response_model=BackjobResponse)
def cancel_backjob(backjob_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    require_role(current_user, "customer", "Only customers can cancel a backjob")
    return backjob_service.cancel_backjob(db, backjob_id, current_user.id)
