import os
import warnings
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./booking.db")

# Connection pool (ignored for SQLite)
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "20"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "30"))
DB_POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", "30"))
DB_POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "300"))
DB_SLOW_QUERY_THRESHOLD = float(os.getenv("DB_SLOW_QUERY_THRESHOLD", "1.0"))

# Auth tokens
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "1440"))

# Wall clock used for "past" and same-day cutoff gates
APP_TIMEZONE = os.getenv("APP_TIMEZONE", "UTC")

# Booking rules
BOOKING_CUTOFF_HOUR = int(os.getenv("BOOKING_CUTOFF_HOUR", "15"))
MAX_SCHEDULED_APPOINTMENTS = int(os.getenv("MAX_SCHEDULED_APPOINTMENTS", "3"))
TRANSACTION_RETRY_ATTEMPTS = int(os.getenv("TRANSACTION_RETRY_ATTEMPTS", "3"))

# Penalty pattern thresholds
LATE_CANCELLATION_HOURS = float(os.getenv("LATE_CANCELLATION_HOURS", "2"))
SAME_DAY_CANCELLATION_LIMIT = int(os.getenv("SAME_DAY_CANCELLATION_LIMIT", "3"))
CONSECUTIVE_CANCELLATION_DAYS = int(os.getenv("CONSECUTIVE_CANCELLATION_DAYS", "3"))
PROVIDER_NO_SHOW_WINDOW_DAYS = int(os.getenv("PROVIDER_NO_SHOW_WINDOW_DAYS", "7"))
USER_NO_SHOW_WINDOW_DAYS = int(os.getenv("USER_NO_SHOW_WINDOW_DAYS", "7"))
USER_REPEATED_NO_SHOW_LIMIT = int(os.getenv("USER_REPEATED_NO_SHOW_LIMIT", "3"))

# Booking attempts per customer per window (shared counter store)
BOOKING_RATE_LIMIT = int(os.getenv("BOOKING_RATE_LIMIT", "20"))
BOOKING_RATE_WINDOW_SECONDS = int(os.getenv("BOOKING_RATE_WINDOW_SECONDS", "60"))

# Evidence photo storage (Cloudflare R2, S3-compatible)
R2_ACCOUNT_ID = os.getenv("R2_ACCOUNT_ID")
R2_ACCESS_KEY_ID = os.getenv("R2_ACCESS_KEY_ID")
R2_SECRET_ACCESS_KEY = os.getenv("R2_SECRET_ACCESS_KEY")
R2_BUCKET_NAME = os.getenv("R2_BUCKET_NAME", "service-booking")
# public bucket domain; the stored evidence URL is <R2_PUBLIC_URL>/<key>
R2_PUBLIC_URL = os.getenv("R2_PUBLIC_URL", "")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
