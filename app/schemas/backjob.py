# app/schemas/backjob.py
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class BackjobCreate(BaseModel):
    reason: str


class BackjobResolve(BaseModel):
    action: str = Field(..., description="approve | dispute")
    note: Optional[str] = None


class BackjobReschedule(BaseModel):
    new_date: str = Field(..., description="YYYY-MM-DD")
    slot_id: int


class BackjobResponse(BaseModel):
    id: int
    appointment_id: int
    customer_id: int
    provider_id: int
    reason: str
    provider_note: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
