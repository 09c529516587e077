"""
Typed booking errors.

Every conflict kind raised by the engine is a BookingError subclass carrying a
stable code from ErrorCodes. Database/driver failures are never wrapped: they
propagate as the original SQLAlchemy exceptions.
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from .core.responses import ErrorCodes


class BookingError(Exception):
    """Base class for expected, typed booking outcomes."""

    code = ErrorCodes.INTERNAL_ERROR
    status_code = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationFailed(BookingError):
    code = ErrorCodes.VALIDATION_FAILED
    status_code = 400

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(
            f"Appointment validation failed: {'; '.join(self.errors)}",
            {"errors": self.errors},
        )


class StaffNotQualified(BookingError):
    code = ErrorCodes.STAFF_NOT_QUALIFIED
    status_code = 400

    def __init__(self, staff_id: uuid.UUID, service_id: uuid.UUID):
        self.staff_id = staff_id
        self.service_id = service_id
        super().__init__(
            "Staff member is not qualified for this service category",
            {"staff_id": str(staff_id), "service_id": str(service_id)},
        )


class BookingConflict(BookingError):
    code = ErrorCodes.BOOKING_CONFLICT
    status_code = 409

    def __init__(self, reason: str, details: Optional[dict[str, Any]] = None, prefix: str = "Booking not available"):
        self.reason = reason
        super().__init__(f"{prefix}: {reason}", {"reason": reason, **(details or {})})


class BookingHoldExists(BookingError):
    """Another caller is mid-commit for the same staff and window."""

    code = ErrorCodes.BOOKING_HOLD_EXISTS
    status_code = 409

    def __init__(self, hold_id: Optional[uuid.UUID], expires_at: Optional[datetime]):
        self.hold_id = hold_id
        self.expires_at = expires_at
        if expires_at is not None:
            message = f"Time slot already held by another request. Hold expires at {expires_at.isoformat()}"
        else:
            message = "Time slot already held by another request"
        super().__init__(
            message,
            {
                "hold_id": str(hold_id) if hold_id else None,
                "expires_at": expires_at.isoformat() if expires_at else None,
            },
        )


class ResourceConflict(BookingError):
    code = ErrorCodes.RESOURCE_CONFLICT
    status_code = 409

    def __init__(self, reason: str, resource_type_id: Optional[uuid.UUID] = None):
        self.reason = reason
        self.resource_type_id = resource_type_id
        super().__init__(
            f"Resource unavailable: {reason}",
            {
                "reason": reason,
                "resource_type_id": str(resource_type_id) if resource_type_id else None,
            },
        )


class NotFound(BookingError):
    code = ErrorCodes.NOT_FOUND
    status_code = 404
