# app/core/exceptions.py
"""
Domain errors raised by the booking engine.

Every error carries a machine-readable ``code`` and a human-readable
``message``; routers never build error payloads themselves, the handler
registered in ``app.main`` renders them.
"""
from typing import Any, Dict, Optional


class BookingError(Exception):
    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload = {"success": False, "reason": self.code, "message": self.message}
        payload.update(self.details)
        return payload


class ValidationError(BookingError):
    """Missing or malformed input. Never retried."""
    status_code = 400


class ConflictError(BookingError):
    """The request clashes with current state; the caller should re-select or re-fetch."""
    status_code = 409


class AuthorizationError(BookingError):
    status_code = 403

    def __init__(self, message: str = "You are not allowed to perform this action", details=None):
        super().__init__("forbidden", message, details)


class NotFoundError(BookingError):
    status_code = 404


class RateLimitExceeded(BookingError):
    status_code = 429

    def __init__(self, message: str, retry_after: int):
        super().__init__("rate_limited", message, {"retry_after": retry_after})
        self.retry_after = retry_after


class StorageError(BookingError):
    status_code = 502


class TransientStoreError(Exception):
    """Serialization failure or deadlock; retried by run_in_transaction."""
