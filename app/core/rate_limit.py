# app/core/rate_limit.py
"""
Fixed-window rate limiting backed by the shared database.

Counters live in `rate_limit_counters` rather than process memory so the
limit holds when the API runs as several instances.
"""
import logging
from datetime import timedelta

from fastapi import Depends
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core import clock, config
from app.core.exceptions import RateLimitExceeded
from app.core.security import get_current_user
from app.db.base import get_db
from app.db.models.rate_limit import RateLimitCounter
from app.db.models.user import User

logger = logging.getLogger(__name__)


def hit(db: Session, key: str, limit: int, window_seconds: int) -> int:
    """
    Count one request against `key`. Returns the count inside the current
    window, or raises RateLimitExceeded once `limit` is passed.
    """
    now = clock.local_now()
    counter = db.query(RateLimitCounter).filter(RateLimitCounter.key == key).with_for_update().first()

    if counter is None:
        counter = RateLimitCounter(key=key, count=0, expires_at=now + timedelta(seconds=window_seconds))
        db.add(counter)
        try:
            db.flush()
        except IntegrityError:
            # another instance created the row first
            db.rollback()
            counter = db.query(RateLimitCounter).filter(RateLimitCounter.key == key).with_for_update().one()
    elif counter.expires_at <= now:
        counter.count = 0
        counter.expires_at = now + timedelta(seconds=window_seconds)

    if counter.count >= limit:
        retry_after = max(1, int((counter.expires_at - now).total_seconds()))
        db.rollback()
        logger.info(f"Rate limit exceeded for {key}: {limit} requests per {window_seconds}s")
        raise RateLimitExceeded(
            f"Too many requests. Limit is {limit} per {window_seconds}s.",
            retry_after=retry_after,
        )

    counter.count += 1
    db.commit()
    return counter.count


def booking_rate_limit(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    hit(db, f"booking:{current_user.id}", config.BOOKING_RATE_LIMIT, config.BOOKING_RATE_WINDOW_SECONDS)
    return current_user
