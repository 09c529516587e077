"""
Tenant-scoped query helpers.

ALL queries for tenant data MUST use these helpers or include an explicit
tenant_id filter. The engine never reads across tenants.

Usage:
    from booking_engine.tenancy.queries import scoped_select, require_owned

    stmt = scoped_select(Resource, tenant_id).where(Resource.active.is_(True))
    item = await require_owned(session, ServiceItem, service_item_id, tenant_id)
"""

import uuid
from typing import Optional, Sequence, Type, TypeVar

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import DeclarativeBase

from ..models import (
    StaffSchedule,
    StaffServiceQualification,
    Tenant,
    TenantWorkHours,
)

T = TypeVar("T", bound=DeclarativeBase)


# ────────────────────────────────────────────────────────────────
# Composable Query Helpers
# ────────────────────────────────────────────────────────────────

def scoped_select(model: Type[T], tenant_id: uuid.UUID) -> Select:
    """
    Create a SELECT statement pre-filtered by tenant_id.

    Usage:
        stmt = scoped_select(Resource, tenant_id).where(Resource.active.is_(True))
    """
    return select(model).where(model.tenant_id == tenant_id)


async def require_owned(
    session: AsyncSession,
    model: Type[T],
    entity_id,
    tenant_id: uuid.UUID,
) -> Optional[T]:
    """
    Fetch an entity by ID, validating tenant ownership.
    Returns None if not found or owned by another tenant.
    """
    result = await session.execute(
        select(model).where(
            model.id == entity_id,
            model.tenant_id == tenant_id,
        )
    )
    return result.scalar_one_or_none()


# ────────────────────────────────────────────────────────────────
# Schedule lookups
# ────────────────────────────────────────────────────────────────

async def get_tenant(session: AsyncSession, tenant_id: uuid.UUID) -> Optional[Tenant]:
    result = await session.execute(select(Tenant).where(Tenant.id == tenant_id))
    return result.scalar_one_or_none()


async def get_staff_schedule(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    staff_id: uuid.UUID,
    weekday: int,
    location_id: Optional[uuid.UUID] = None,
) -> Optional[StaffSchedule]:
    """Personal schedule for a weekday; any location when location_id is omitted."""
    stmt = scoped_select(StaffSchedule, tenant_id).where(
        StaffSchedule.staff_id == staff_id,
        StaffSchedule.weekday == weekday,
    )
    if location_id is not None:
        stmt = stmt.where(StaffSchedule.location_id == location_id)
    result = await session.execute(stmt.order_by(StaffSchedule.id).limit(1))
    return result.scalar_one_or_none()


async def get_tenant_work_hours(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    weekday: int,
) -> Optional[TenantWorkHours]:
    result = await session.execute(
        scoped_select(TenantWorkHours, tenant_id).where(TenantWorkHours.weekday == weekday)
    )
    return result.scalar_one_or_none()


async def get_staff_qualifications(
    session: AsyncSession,
    staff_id: uuid.UUID,
) -> Sequence[uuid.UUID]:
    """Service ids a staff member is restricted to. Empty means unrestricted."""
    result = await session.execute(
        select(StaffServiceQualification.service_id).where(
            StaffServiceQualification.staff_id == staff_id
        )
    )
    return result.scalars().all()
