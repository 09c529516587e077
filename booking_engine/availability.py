"""
Staff availability checks.

Read-only: safe to call repeatedly and concurrently. A staff member is
bookable for [start, end) when there is no overlapping live appointment, no
overlapping time off, the window sits inside the day's working hours (personal
schedule first, tenant-wide hours as fallback) and neither end touches a break.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .core.config import get_settings
from .models import INACTIVE_APPOINTMENT_STATUSES, Appointment, TimeOff
from .tenancy.queries import get_staff_schedule, get_tenant, get_tenant_work_hours
from .timeutils import (
    crosses_local_midnight,
    ensure_utc,
    is_within_working_hours,
    local_hhmm,
    local_weekday,
    touches_break,
)

logger = logging.getLogger(__name__)

REASON_OVERLAP = "Overlapping appointment"
REASON_TIME_OFF = "Staff time off"
REASON_NO_SCHEDULE = "No schedule for this day"
REASON_OUTSIDE_HOURS = "Outside working hours"
REASON_BREAK = "Overlaps with break time"
REASON_TENANT_NOT_FOUND = "Tenant not found"


@dataclass
class AvailabilityResult:
    available: bool
    reason: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"available": self.available}
        if self.reason:
            data["reason"] = self.reason
        if self.details:
            data.update(self.details)
        return data


@dataclass
class ResolvedSchedule:
    start_time: str
    end_time: str
    break_windows: list
    source: str  # "staff" or "tenant"


async def find_overlapping_appointment(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    staff_id: uuid.UUID,
    start: datetime,
    end: datetime,
    exclude_appointment_id: Optional[uuid.UUID] = None,
) -> Optional[Appointment]:
    """First live appointment for the staff member overlapping [start, end)."""
    stmt = select(Appointment).where(
        Appointment.tenant_id == tenant_id,
        Appointment.staff_id == staff_id,
        Appointment.status.not_in(INACTIVE_APPOINTMENT_STATUSES),
        Appointment.start < end,
        Appointment.end > start,
    )
    if exclude_appointment_id is not None:
        stmt = stmt.where(Appointment.id != exclude_appointment_id)
    result = await session.execute(stmt.order_by(Appointment.start).limit(1))
    return result.scalar_one_or_none()


async def find_overlapping_time_off(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    staff_id: uuid.UUID,
    start: datetime,
    end: datetime,
) -> Optional[TimeOff]:
    result = await session.execute(
        select(TimeOff)
        .where(
            TimeOff.tenant_id == tenant_id,
            TimeOff.staff_id == staff_id,
            TimeOff.start < end,
            TimeOff.end > start,
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def resolve_schedule(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    staff_id: uuid.UUID,
    weekday: int,
    location_id: Optional[uuid.UUID] = None,
) -> Optional[ResolvedSchedule]:
    """Personal schedule for the weekday, falling back to tenant-wide work hours."""
    schedule = await get_staff_schedule(session, tenant_id, staff_id, weekday, location_id)
    if schedule is not None:
        return ResolvedSchedule(
            start_time=schedule.start_time,
            end_time=schedule.end_time,
            break_windows=list(schedule.break_windows or []),
            source="staff",
        )

    hours = await get_tenant_work_hours(session, tenant_id, weekday)
    if hours is not None:
        return ResolvedSchedule(
            start_time=hours.start_time,
            end_time=hours.end_time,
            break_windows=[],
            source="tenant",
        )
    return None


async def check_availability(
    session: AsyncSession,
    staff_id: Optional[uuid.UUID],
    start: datetime,
    end: datetime,
    tenant_id: uuid.UUID,
    exclude_appointment_id: Optional[uuid.UUID] = None,
    location_id: Optional[uuid.UUID] = None,
) -> AvailabilityResult:
    # Staff-less bookings are gated by resource capacity alone.
    if not staff_id:
        return AvailabilityResult(available=True)

    start = ensure_utc(start)
    end = ensure_utc(end)

    tenant = await get_tenant(session, tenant_id)
    if tenant is None:
        return AvailabilityResult(available=False, reason=REASON_TENANT_NOT_FOUND)

    existing = await find_overlapping_appointment(
        session, tenant_id, staff_id, start, end, exclude_appointment_id
    )
    if existing is not None:
        return AvailabilityResult(
            available=False,
            reason=REASON_OVERLAP,
            details={"conflicting_appointment_id": str(existing.id)},
        )

    time_off = await find_overlapping_time_off(session, tenant_id, staff_id, start, end)
    if time_off is not None:
        return AvailabilityResult(
            available=False,
            reason=REASON_TIME_OFF,
            details={"time_off_id": str(time_off.id)},
        )

    tz_name = tenant.timezone or get_settings().default_timezone
    weekday = local_weekday(start, tz_name)
    schedule = await resolve_schedule(session, tenant_id, staff_id, weekday, location_id)
    if schedule is None:
        logger.debug("No schedule for staff %s on weekday %s (tenant %s)", staff_id, weekday, tenant_id)
        return AvailabilityResult(available=False, reason=REASON_NO_SCHEDULE)

    local_start = local_hhmm(start, tz_name)
    local_end = local_hhmm(end, tz_name)

    # Overnight windows are not supported.
    if crosses_local_midnight(start, end, tz_name):
        return AvailabilityResult(available=False, reason=REASON_OUTSIDE_HOURS)

    if not is_within_working_hours(local_start, local_end, schedule.start_time, schedule.end_time):
        logger.debug(
            "Window %s-%s outside %s-%s (%s schedule) for staff %s",
            local_start,
            local_end,
            schedule.start_time,
            schedule.end_time,
            schedule.source,
            staff_id,
        )
        return AvailabilityResult(available=False, reason=REASON_OUTSIDE_HOURS)

    if touches_break(local_start, local_end, schedule.break_windows):
        return AvailabilityResult(available=False, reason=REASON_BREAK)

    return AvailabilityResult(available=True)
