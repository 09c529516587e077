"""
Book against an ordered list of staff candidates.

Staff-level conflicts move on to the next candidate. Anything that would fail
the same way for every candidate (resource capacity, bad input, database
errors) stops the loop.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

from .booking import BookingService
from .errors import BookingConflict, BookingError, StaffNotQualified

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (BookingConflict, StaffNotQualified)


@dataclass
class CandidateAttempt:
    staff_id: str
    code: Optional[str] = None
    message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.code is None

    def to_dict(self) -> dict[str, Any]:
        return {"staff_id": self.staff_id, "code": self.code, "message": self.message}


@dataclass
class CandidateBookingResult:
    appointment: Any = None
    booked_staff_id: Optional[str] = None
    attempts: list[CandidateAttempt] = field(default_factory=list)
    error: Optional[BookingError] = None

    @property
    def booked(self) -> bool:
        return self.appointment is not None


async def create_appointment_for_candidates(
    service: BookingService,
    data: Mapping[str, Any],
    staff_ids: Sequence[Any],
) -> CandidateBookingResult:
    """Try each staff id in order until one booking commits.

    Returns a result carrying the appointment (or the last error) and every
    attempt made. Infrastructure errors propagate.
    """
    result = CandidateBookingResult()

    for staff_id in staff_ids:
        key = str(staff_id) if isinstance(staff_id, uuid.UUID) else staff_id
        try:
            appointment = await service.create_appointment({**data, "staff_id": key})
        except RETRYABLE_ERRORS as exc:
            logger.info("Candidate %s rejected: %s", key, exc.message)
            result.attempts.append(CandidateAttempt(staff_id=str(key), code=exc.code, message=exc.message))
            result.error = exc
            continue
        except BookingError as exc:
            result.attempts.append(CandidateAttempt(staff_id=str(key), code=exc.code, message=exc.message))
            result.error = exc
            return result

        result.attempts.append(CandidateAttempt(staff_id=str(key)))
        result.appointment = appointment
        result.booked_staff_id = str(key)
        result.error = None
        return result

    return result
