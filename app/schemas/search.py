# app/schemas/search.py
from pydantic import BaseModel
from typing import Optional


class SimpleProvider(BaseModel):
    id: int
    name: str
    email: Optional[str]

    class Config:
        from_attributes = True


class ServiceSearchItem(BaseModel):
    id: int
    name: str
    description: Optional[str]
    price: float
    duration_minutes: Optional[int] = None
    is_active: bool
    provider: Optional[SimpleProvider]
    distance_km: Optional[float] = None
    distance: Optional[str] = None
    distance_category: Optional[str] = None

    class Config:
        from_attributes = True


class SearchResponse(BaseModel):
    total: int
    page: int
    per_page: int
    items: list[ServiceSearchItem]
