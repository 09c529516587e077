"""
Resource capacity accounting.

Remaining capacity of a resource type for a window is the total capacity of its
active resources minus confirmed reservations and live (unexpired) resource
hold entries overlapping the window. The three figures are read in a single
statement so a concurrent commit that swaps a hold for a reservation cannot be
missed between two reads.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .core.db import utcnow
from .models import BookingHoldEntry, HoldEntryKind, Resource, ResourceReservation
from .timeutils import ensure_utc

REASON_NO_RESOURCES = "No resources of this type available"
REASON_INSUFFICIENT = "Insufficient resource capacity"


@dataclass
class CapacityResult:
    available: bool
    reason: Optional[str] = None
    total_capacity: int = 0
    reserved: int = 0
    held: int = 0

    @property
    def used(self) -> int:
        return self.reserved + self.held

    @property
    def remaining(self) -> int:
        return self.total_capacity - self.used

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "available": self.available,
            "total_capacity": self.total_capacity,
            "used": self.used,
        }
        if self.reason:
            data["reason"] = self.reason
        return data


async def check_resource_capacity(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    resource_type_id: uuid.UUID,
    required_quantity: int,
    start: datetime,
    end: datetime,
    *,
    now: Optional[datetime] = None,
    exclude_hold_id: Optional[uuid.UUID] = None,
    exclude_appointment_id: Optional[uuid.UUID] = None,
) -> CapacityResult:
    start = ensure_utc(start)
    end = ensure_utc(end)
    now = now or utcnow()

    total_q = (
        select(func.coalesce(func.sum(func.coalesce(Resource.capacity, 1)), 0))
        .where(
            Resource.tenant_id == tenant_id,
            Resource.resource_type_id == resource_type_id,
            Resource.active.is_(True),
        )
        .scalar_subquery()
    )

    reserved_q = select(func.count(ResourceReservation.id)).where(
        ResourceReservation.tenant_id == tenant_id,
        ResourceReservation.resource_type_id == resource_type_id,
        ResourceReservation.start < end,
        ResourceReservation.end > start,
    )
    if exclude_appointment_id is not None:
        reserved_q = reserved_q.where(ResourceReservation.appointment_id != exclude_appointment_id)

    held_q = select(func.count(BookingHoldEntry.id)).where(
        BookingHoldEntry.tenant_id == tenant_id,
        BookingHoldEntry.kind == HoldEntryKind.RESOURCE,
        BookingHoldEntry.resource_type_id == resource_type_id,
        BookingHoldEntry.start < end,
        BookingHoldEntry.end > start,
        BookingHoldEntry.expires_at > now,
    )
    if exclude_hold_id is not None:
        held_q = held_q.where(BookingHoldEntry.hold_id != exclude_hold_id)

    row = (
        await session.execute(
            select(
                total_q.label("total"),
                reserved_q.scalar_subquery().label("reserved"),
                held_q.scalar_subquery().label("held"),
            )
        )
    ).one()

    total = int(row.total or 0)
    reserved = int(row.reserved or 0)
    held = int(row.held or 0)

    if total <= 0:
        return CapacityResult(available=False, reason=REASON_NO_RESOURCES, total_capacity=total)

    result = CapacityResult(available=True, total_capacity=total, reserved=reserved, held=held)
    if result.remaining < required_quantity:
        result.available = False
        result.reason = REASON_INSUFFICIENT
    return result
