# app/schemas/rating.py
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

class RatingCreate(BaseModel):
    appointment_id: int
    value: int = Field(..., description="Rating 1-5")
    comment: Optional[str] = None

class RatingResponse(BaseModel):
    id: int
    appointment_id: int
    user_id: int
    provider_id: int
    rated_by: str
    value: int
    comment: Optional[str]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True

class RatingEligibility(BaseModel):
    appointment_id: int
    rated_by: str
    can_rate: bool
    reason: Optional[str] = None
