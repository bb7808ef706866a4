# app/api/routes/ratings.py
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List

from app.db.base import get_db
from app.db.models.user import User
from app.schemas.booking import AppointmentResponse
from app.schemas.rating import RatingCreate, RatingResponse
from app.core.security import get_current_user, require_role
from app.services import lifecycle_service

router = APIRouter(prefix="/ratings", tags=["ratings"])

# Create rating (customer, once per completed appointment)
@router.post("", response_model=RatingResponse, status_code=status.HTTP_201_CREATED)
def create_rating(rating_in: RatingCreate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    require_role(current_user, "customer", "Only customers can rate appointments")
    return lifecycle_service.create_rating(
        db, rating_in.appointment_id, current_user.id, rating_in.value, rating_in.comment
    )


# Provider rates the customer (once per finished appointment)
@router.post("/customer", response_model=RatingResponse, status_code=status.HTTP_201_CREATED)
def rate_customer(rating_in: RatingCreate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    require_role(current_user, "provider", "Only providers can rate customers")
    return lifecycle_service.rate_customer(
        db, rating_in.appointment_id, current_user.id, rating_in.value, rating_in.comment
    )


@router.get("/rateable-appointments", response_model=List[AppointmentResponse])
def rateable_appointments(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    require_role(current_user, "customer", "Only customers can view this")
    return lifecycle_service.list_rateable_appointments(db, current_user.id)


# must stay above /provider/{provider_id}
@router.get("/provider/rateable-appointments", response_model=List[AppointmentResponse])
def provider_rateable_appointments(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    require_role(current_user, "provider", "Only providers can view this")
    return lifecycle_service.list_provider_rateable_appointments(db, current_user.id)


# Public list for a provider
@router.get("/provider/{provider_id}", response_model=List[RatingResponse])
def list_provider_ratings(provider_id: int, db: Session = Depends(get_db)):
    return lifecycle_service.list_provider_ratings(db, provider_id)


@router.get("/customer/{customer_id}", response_model=List[RatingResponse])
def list_customer_ratings(customer_id: int, db: Session = Depends(get_db)):
    return lifecycle_service.list_customer_ratings(db, customer_id)
