"""
Standardized API Response Module

RESPONSE FORMAT:
    Success:
        {
            "data": <response data>,
            "status": "success"
        }

    Error:
        {
            "error": {
                "code": "ERROR_CODE",
                "message": "Human-readable message",
                "details": {...}  # Optional extra context
            },
            "status": "error"
        }

ERROR CODES:
    - VALIDATION_FAILED: missing or malformed booking input
    - STAFF_NOT_QUALIFIED: staff allow-list does not include the service
    - BOOKING_CONFLICT: staff unavailable (overlap, time off, hours, break, hold)
    - BOOKING_HOLD_EXISTS: another request holds the same staff/window
    - RESOURCE_CONFLICT: equipment capacity exhausted for the window
    - NOT_FOUND: appointment, service item or tenant not found
    - INTERNAL_ERROR: server-side error
"""

from typing import Any, Optional


# ============================================================================
# ERROR CODES
# ============================================================================

class ErrorCodes:
    """Error codes surfaced by the booking engine."""

    # 400
    VALIDATION_FAILED = "VALIDATION_FAILED"
    STAFF_NOT_QUALIFIED = "STAFF_NOT_QUALIFIED"

    # 404
    NOT_FOUND = "NOT_FOUND"

    # 409
    BOOKING_CONFLICT = "BOOKING_CONFLICT"
    BOOKING_HOLD_EXISTS = "BOOKING_HOLD_EXISTS"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"

    # 500
    INTERNAL_ERROR = "INTERNAL_ERROR"


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def success_response(data: Any) -> dict:
    """Create a standardized success response dict."""
    return {"data": data, "status": "success"}


def error_response(
    code: str,
    message: str,
    details: Optional[dict] = None,
) -> dict:
    """Create a standardized error response dict."""
    response = {
        "error": {
            "code": code,
            "message": message,
        },
        "status": "error",
    }
    if details:
        response["error"]["details"] = details
    return response
