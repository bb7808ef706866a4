# app/api/routes/search.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from sqlalchemy import desc
from typing import Optional

from app.db.base import get_db
from app.db.models.service import Service
from app.db.models.user import User
from app.db.models.availability import ProviderAvailability
from app.schemas.search import SearchResponse, ServiceSearchItem, SimpleProvider
from app.core.security import get_optional_user
from app.services import availability_service, distance
from app.services.booking_service import is_same_person

router = APIRouter(prefix="/search", tags=["search"])


@router.get("/services", response_model=SearchResponse)
def search_services(
    q: Optional[str] = Query(None, description="Search keywords (name + description)"),
    provider_id: Optional[int] = Query(None),
    min_price: Optional[float] = Query(None, ge=0.0),
    max_price: Optional[float] = Query(None, ge=0.0),
    availability_date: Optional[str] = Query(None, description="YYYY-MM-DD, providers with an active slot that weekday"),
    near: Optional[str] = Query(None, description="lat,lng; defaults to the caller's saved location"),
    page: int = Query(1, ge=1),
    per_page: int = Query(12, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: Optional[User] = Depends(get_optional_user),
):
    """
    Active service listings, nearest provider first when an origin is known.
    A signed-in caller never sees their own listings.
    """
    base = (
        db.query(Service, User)
        .join(User, Service.provider_id == User.id)
        .filter(Service.is_active == True)
    )

    if q:
        q_like = f"%{q.strip()}%"
        base = base.filter((Service.name.ilike(q_like)) | (Service.description.ilike(q_like)))

    if provider_id:
        base = base.filter(Service.provider_id == provider_id)

    if min_price is not None:
        base = base.filter(Service.price >= min_price)

    if max_price is not None:
        base = base.filter(Service.price <= max_price)

    if availability_date:
        target_date = availability_service.parse_date(availability_date)
        subq = (
            db.query(ProviderAvailability.provider_id)
            .filter(ProviderAvailability.weekday == target_date.isoweekday(), ProviderAvailability.is_active == True)
            .distinct()
        ).subquery()
        base = base.filter(Service.provider_id.in_(subq))

    if current_user:
        base = base.filter(Service.provider_id != current_user.id)

    rows = base.order_by(desc(Service.created_at), desc(Service.id)).all()
    if current_user:
        rows = [(svc, prov) for svc, prov in rows if not is_same_person(current_user, prov)]

    origin = near or (current_user.exact_location if current_user else None)
    ranked = distance.rank_by_distance(rows, origin, lambda row: row[1].exact_location)

    total = len(ranked)
    offset = (page - 1) * per_page

    items = []
    for (svc, prov), km in ranked[offset:offset + per_page]:
        items.append(ServiceSearchItem(
            id=svc.id,
            name=svc.name,
            description=svc.description,
            price=float(svc.price),
            duration_minutes=svc.duration_minutes,
            is_active=svc.is_active,
            provider=SimpleProvider(id=prov.id, name=prov.name, email=prov.email),
            distance_km=km,
            distance=distance.format_distance(km) if km is not None else None,
            distance_category=distance.distance_category(km) if km is not None else None,
        ))

    return SearchResponse(total=total, page=page, per_page=per_page, items=items)
