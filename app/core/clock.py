# app/core/clock.py
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from app.core.config import APP_TIMEZONE


def local_now() -> datetime:
    """Naive wall-clock time in APP_TIMEZONE; appointments are stored naive in the same zone."""
    if APP_TIMEZONE.upper() == "UTC":
        return datetime.now(timezone.utc).replace(tzinfo=None)
    return datetime.now(ZoneInfo(APP_TIMEZONE)).replace(tzinfo=None)
