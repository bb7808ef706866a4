# app/api/routes/availability.py
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from app.db.base import get_db
from app.db.models.user import User
from app.core.exceptions import NotFoundError
from app.schemas.availability import (
    BookedSlotResponse,
    BookedSlotsResponse,
    BookedSlotsSummary,
    DayAvailabilityResponse,
    ResolvedSlotResponse,
    ScheduleDay,
    SlotActiveUpdate,
    SlotAppointment,
    SlotCreate,
    SlotResponse,
    SlotUpdate,
    ToggleDayRequest,
    WeeklyScheduleResponse,
)
from app.core.security import get_current_user
from app.services import availability_service, slot_resolver

router = APIRouter(prefix="/availability", tags=["availability"])


def _require_provider(user: User, action: str):
    if user.role != "provider":
        raise HTTPException(status_code=403, detail=f"Only providers can {action}")


def _resolved_slot(resolved: slot_resolver.ResolvedSlot) -> ResolvedSlotResponse:
    return ResolvedSlotResponse(
        slot_id=resolved.slot.id,
        start_time=resolved.slot.start_time,
        end_time=resolved.slot.end_time,
        status=resolved.status.value,
    )



@router.post("/provider/slots", response_model=SlotResponse, status_code=201)
def add_slot(payload: SlotCreate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    _require_provider(current_user, "add availability")
    return availability_service.add_slot(
        db, current_user.id, payload.day_of_week, payload.start_time, payload.end_time, is_active=payload.is_active
    )


@router.get("/provider/slots", response_model=List[SlotResponse])
def list_slots(
    day: Optional[str] = Query(None, description="Limit to one weekday"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _require_provider(current_user, "view availability")
    return availability_service.list_slots(db, current_user.id, day=day)


@router.patch("/provider/slots/{slot_id}", response_model=SlotResponse)
def update_slot(
    slot_id: int,
    payload: SlotUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _require_provider(current_user, "update availability")
    changes = {
        "day": payload.day_of_week,
        "start_time": payload.start_time,
        "end_time": payload.end_time,
        "is_active": payload.is_active,
    }
    return availability_service.update_slot(db, current_user.id, slot_id, changes)


@router.delete("/provider/slots/{slot_id}")
def delete_slot(slot_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    _require_provider(current_user, "delete availability")
    availability_service.delete_slot(db, current_user.id, slot_id)
    return {"success": True, "message": "Time slot deleted"}


@router.put("/provider/slots/{slot_id}/active", response_model=SlotResponse)
def set_slot_active(
    slot_id: int,
    payload: SlotActiveUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _require_provider(current_user, "change availability")
    return availability_service.set_slot_active(db, current_user.id, slot_id, payload.is_active)


@router.post("/provider/toggle-day", response_model=List[SlotResponse])
def toggle_day(payload: ToggleDayRequest, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    _require_provider(current_user, "change availability")
    target_date = availability_service.parse_date(payload.date)
    return availability_service.toggle_day(db, current_user.id, target_date)



@router.get("/provider/{provider_id}/slots", response_model=DayAvailabilityResponse)
def get_slots_for_date(
    provider_id: int,
    date: str = Query(..., description="date in YYYY-MM-DD"),
    db: Session = Depends(get_db),
):
    """
    Slots of the provider on the weekday of `date`, each with its status for
    that exact date: available, booked, past or closed_for_today.
    """
    target_date = availability_service.parse_date(date)
    resolved = slot_resolver.resolve_availability(db, provider_id, target_date)
    return DayAvailabilityResponse(
        provider_id=provider_id,
        date=target_date,
        day_of_week=availability_service.weekday_name(target_date.isoweekday()),
        slots=[_resolved_slot(r) for r in resolved],
    )


@router.get("/provider/{provider_id}/booked-slots", response_model=BookedSlotsResponse)
def get_booked_slots(
    provider_id: int,
    date: str = Query(..., description="date in YYYY-MM-DD"),
    db: Session = Depends(get_db),
):
    target_date = availability_service.parse_date(date)
    entries = slot_resolver.booked_slots(db, provider_id, target_date)
    return BookedSlotsResponse(
        provider_id=provider_id,
        date=target_date,
        day_of_week=availability_service.weekday_name(target_date.isoweekday()),
        summary=BookedSlotsSummary(
            total_slots=len(entries),
            active_slots=sum(1 for e in entries if e.slot.is_active),
            booked_slots=sum(1 for e in entries if e.appointments),
            available_slots=sum(1 for e in entries if e.status == "available"),
        ),
        slots=[
            BookedSlotResponse(
                slot_id=e.slot.id,
                start_time=e.slot.start_time,
                end_time=e.slot.end_time,
                is_active=e.slot.is_active,
                is_booked=bool(e.appointments),
                status=e.status,
                appointments=[SlotAppointment.model_validate(a) for a in e.appointments],
            )
            for e in entries
        ],
    )


@router.get("/provider/{provider_id}/weekly-schedule", response_model=WeeklyScheduleResponse)
def get_weekly_schedule(
    provider_id: int,
    start_date: Optional[str] = Query(None, description="first day in YYYY-MM-DD, default today"),
    db: Session = Depends(get_db),
):
    """Seven consecutive dates, each resolved against that date's bookings."""
    if not db.query(User.id).filter(User.id == provider_id, User.role == "provider").first():
        raise NotFoundError("provider_not_found", "Provider not found")
    first = availability_service.parse_date(start_date) if start_date else None
    schedule = slot_resolver.weekly_schedule(db, provider_id, first)

    days = []
    for day, resolved in schedule:
        days.append(ScheduleDay(
            date=day,
            day_of_week=availability_service.weekday_name(day.isoweekday()),
            total_slots=len(resolved),
            available_slots=sum(1 for r in resolved if r.status == slot_resolver.SlotStatus.AVAILABLE),
            booked_slots=sum(1 for r in resolved if r.status == slot_resolver.SlotStatus.BOOKED),
            slots=[_resolved_slot(r) for r in resolved],
        ))
    return WeeklyScheduleResponse(
        provider_id=provider_id,
        start_date=schedule[0][0],
        end_date=schedule[-1][0],
        days=days,
    )
