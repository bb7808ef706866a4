# app/db/models/rate_limit.py
from sqlalchemy import Column, Integer, String, DateTime
from app.db.base import Base


class RateLimitCounter(Base):
    """Fixed-window counter shared by every app instance through the database."""
    __tablename__ = "rate_limit_counters"

    key = Column(String, primary_key=True)
    count = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime, nullable=False)
