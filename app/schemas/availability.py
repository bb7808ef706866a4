# app/schemas/availability.py
from pydantic import BaseModel, Field, computed_field
from typing import List, Optional
from datetime import date as Date, datetime, time

from app.services.availability_service import weekday_name


class SlotCreate(BaseModel):
    day_of_week: str = Field(..., description="Monday … Sunday")
    start_time: str = Field(..., description="HH:MM")
    end_time: str = Field(..., description="HH:MM")
    is_active: bool = True


class SlotUpdate(BaseModel):
    day_of_week: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    is_active: Optional[bool] = None


class SlotActiveUpdate(BaseModel):
    is_active: bool


class ToggleDayRequest(BaseModel):
    date: str = Field(..., description="YYYY-MM-DD; every slot on its weekday is flipped")


class SlotResponse(BaseModel):
    id: int
    provider_id: int
    weekday: int
    start_time: time
    end_time: time
    is_active: bool

    class Config:
        from_attributes = True

    @computed_field
    @property
    def day_of_week(self) -> str:
        return weekday_name(self.weekday)


class ResolvedSlotResponse(BaseModel):
    slot_id: int
    start_time: time
    end_time: time
    status: str


class DayAvailabilityResponse(BaseModel):
    provider_id: int
    date: Date
    day_of_week: str
    slots: List[ResolvedSlotResponse]


class SlotAppointment(BaseModel):
    id: int
    scheduled_date: datetime
    status: str

    class Config:
        from_attributes = True


class BookedSlotResponse(BaseModel):
    slot_id: int
    start_time: time
    end_time: time
    is_active: bool
    is_booked: bool
    status: str
    appointments: List[SlotAppointment]


class BookedSlotsSummary(BaseModel):
    total_slots: int
    active_slots: int
    booked_slots: int
    available_slots: int


class BookedSlotsResponse(BaseModel):
    provider_id: int
    date: Date
    day_of_week: str
    summary: BookedSlotsSummary
    slots: List[BookedSlotResponse]


class ScheduleDay(BaseModel):
    date: Date
    day_of_week: str
    total_slots: int
    available_slots: int
    booked_slots: int
    slots: List[ResolvedSlotResponse]


class WeeklyScheduleResponse(BaseModel):
    provider_id: int
    start_date: Date
    end_date: Date
    days: List[ScheduleDay]
