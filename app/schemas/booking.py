# app/schemas/booking.py
from pydantic import BaseModel, Field
from datetime import date, datetime
from typing import Optional


# --- CREATE ---
class AppointmentCreate(BaseModel):
    provider_id: int
    service_id: int
    scheduled_date: str = Field(..., description="YYYY-MM-DD")
    scheduled_time: str = Field(..., description="HH:MM, must match a slot start")
    description: Optional[str] = None


# --- UPDATE ---
class StatusUpdate(BaseModel):
    status: str = Field(..., description="Target status, e.g. accepted, on_the_way, in_progress, finished, completed")
    final_price: Optional[float] = None
    reason: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class FinishRequest(BaseModel):
    final_price: float


class RescheduleRequest(BaseModel):
    new_date: str = Field(..., description="YYYY-MM-DD")
    new_time: str = Field(..., description="HH:MM")


# --- RESPONSE ---
class AppointmentResponse(BaseModel):
    id: int
    customer_id: int
    provider_id: int
    service_id: int
    availability_slot_id: Optional[int]
    scheduled_date: datetime
    slot_date: date
    status: str
    description: Optional[str] = None
    final_price: Optional[float] = None
    cancellation_reason: Optional[str] = None
    evidence_photo_url: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BookingCapacityResponse(BaseModel):
    can_book: bool
    scheduled_count: int
    max_allowed: int
    available_slots: int
