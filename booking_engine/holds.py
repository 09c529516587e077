"""
Booking Hold Manager

Short-lived holds close the gap between "check availability" and "commit
appointment" for concurrent callers racing for the same staff member and
window (e.g. an assistant retrying across staff candidates within seconds).

Holds carry two kinds of tentative entries:
    - staff entries: exclusivity on a staff member for a window. Two live staff
      entries for the same staff member never overlap.
    - resource entries: one unit of a resource type in flight. They are not
      exclusive; the capacity accountant counts them against total capacity.

Staff acquisition is serialized per staff member: the hold transaction first
bumps staff_members.hold_seq, which takes that row's write lock (the database
write lock on SQLite). The overlap query and the insert then run while the
lock is held, so a second acquirer waits for the first to commit and sees its
hold. Only real overlap decides; adjacent windows never collide.

USAGE:
    hold_id = await holds.create_booking_hold(staff_id, start, end, tenant_id,
                                              location_id=..., customer_id=...)
    try:
        ...commit appointment...
    finally:
        await holds.release_booking_hold(hold_id)
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Sequence

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .core.config import Settings, get_settings
from .core.db import utcnow
from .errors import BookingHoldExists, NotFound
from .models import (
    BookingHold,
    BookingHoldEntry,
    HoldCreatedBy,
    HoldEntryKind,
    StaffMember,
)
from .timeutils import ensure_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HoldRequirement:
    """Units of a resource type to hold for the window."""

    resource_type_id: uuid.UUID
    quantity: int = 1


def hold_to_dict(hold: BookingHold) -> dict:
    return {
        "id": str(hold.id),
        "tenant_id": str(hold.tenant_id),
        "location_id": str(hold.location_id),
        "customer_id": str(hold.customer_id),
        "created_by": hold.created_by.value,
        "expires_at": hold.expires_at.isoformat(),
        "tentative": [
            {
                "kind": entry.kind.value,
                "staff_id": str(entry.staff_id) if entry.staff_id else None,
                "resource_type_id": str(entry.resource_type_id) if entry.resource_type_id else None,
                "start": entry.start.isoformat(),
                "end": entry.end.isoformat(),
            }
            for entry in hold.entries
        ],
    }


def _coerce_uuid(value) -> Optional[uuid.UUID]:
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class BookingHoldManager:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()

    @property
    def ttl(self) -> timedelta:
        return timedelta(seconds=self.settings.hold_ttl_seconds)

    async def find_conflicting_staff_hold(
        self,
        session: AsyncSession,
        tenant_id: uuid.UUID,
        staff_id: uuid.UUID,
        start: datetime,
        end: datetime,
        now: datetime,
        location_id: Optional[uuid.UUID] = None,
    ) -> Optional[BookingHold]:
        stmt = (
            select(BookingHold)
            .join(BookingHoldEntry, BookingHoldEntry.hold_id == BookingHold.id)
            .where(
                BookingHold.tenant_id == tenant_id,
                BookingHold.expires_at > now,
                BookingHoldEntry.kind == HoldEntryKind.STAFF,
                BookingHoldEntry.staff_id == staff_id,
                BookingHoldEntry.start < end,
                BookingHoldEntry.end > start,
            )
        )
        if location_id is not None:
            stmt = stmt.where(BookingHold.location_id == location_id)
        result = await session.execute(stmt.order_by(BookingHold.expires_at).limit(1))
        return result.scalars().first()

    async def _lock_staff(self, session: AsyncSession, tenant_id: uuid.UUID, staff_id: uuid.UUID) -> None:
        """Take the per-staff hold lock for the rest of the transaction."""
        result = await session.execute(
            update(StaffMember)
            .where(StaffMember.id == staff_id, StaffMember.tenant_id == tenant_id)
            .values(hold_seq=StaffMember.hold_seq + 1)
        )
        if not result.rowcount:
            raise NotFound("Staff member not found", {"staff_id": str(staff_id)})

    async def create_booking_hold(
        self,
        staff_id: Optional[uuid.UUID],
        start: datetime,
        end: datetime,
        tenant_id: uuid.UUID,
        *,
        location_id: uuid.UUID,
        customer_id: uuid.UUID,
        resource_type_id: Optional[uuid.UUID] = None,
        resources: Sequence[HoldRequirement] = (),
        created_by: HoldCreatedBy = HoldCreatedBy.WEB,
    ) -> uuid.UUID:
        """Create a hold expiring after the configured TTL (30s by default).

        Raises BookingHoldExists when a live hold already claims the staff
        member for an overlapping window, and NotFound when the staff member
        does not belong to the tenant. Store errors propagate unchanged.
        """
        if not location_id:
            raise ValueError("location_id is required for booking hold")
        if not customer_id:
            raise ValueError("customer_id is required for booking hold")

        requirements = list(resources)
        if resource_type_id is not None:
            requirements.append(HoldRequirement(resource_type_id=resource_type_id))
        if not staff_id and not requirements:
            raise ValueError("booking hold must claim a staff member or at least one resource")

        start = ensure_utc(start)
        end = ensure_utc(end)
        if end <= start:
            raise ValueError("hold end must be after start")

        now = utcnow()
        expires_at = now + self.ttl

        async with self.session_factory() as session:
            if staff_id:
                await self._lock_staff(session, tenant_id, staff_id)
                existing = await self.find_conflicting_staff_hold(
                    session, tenant_id, staff_id, start, end, now
                )
                if existing is not None:
                    logger.info(
                        "Hold collision for staff %s %s-%s (held by %s)",
                        staff_id,
                        start.isoformat(),
                        end.isoformat(),
                        existing.id,
                    )
                    raise BookingHoldExists(existing.id, existing.expires_at)

            hold = BookingHold(
                id=uuid.uuid4(),
                tenant_id=tenant_id,
                location_id=location_id,
                customer_id=customer_id,
                created_by=created_by,
                expires_at=expires_at,
                created_at=now,
            )
            entries: list[BookingHoldEntry] = []
            if staff_id:
                entries.append(
                    BookingHoldEntry(
                        tenant_id=tenant_id,
                        kind=HoldEntryKind.STAFF,
                        staff_id=staff_id,
                        start=start,
                        end=end,
                        expires_at=expires_at,
                    )
                )
            for req in requirements:
                for _ in range(max(req.quantity, 1)):
                    entries.append(
                        BookingHoldEntry(
                            tenant_id=tenant_id,
                            kind=HoldEntryKind.RESOURCE,
                            staff_id=staff_id,
                            resource_type_id=req.resource_type_id,
                            start=start,
                            end=end,
                            expires_at=expires_at,
                        )
                    )
            hold.entries = entries
            session.add(hold)
            await session.commit()

        logger.info(
            "Booking hold %s created for staff %s from %s to %s (expires %s)",
            hold.id,
            staff_id,
            start.isoformat(),
            end.isoformat(),
            expires_at.isoformat(),
        )
        return hold.id

    async def release_booking_hold(self, hold_id) -> bool:
        """Delete a hold by id. Idempotent; never raises.

        Returns True only when a hold was actually removed.
        """
        if not hold_id:
            logger.warning("Attempted to release booking hold with no hold_id")
            return False
        hold_uuid = _coerce_uuid(hold_id)
        if hold_uuid is None:
            logger.warning("Attempted to release booking hold with invalid id %r", hold_id)
            return False

        try:
            async with self.session_factory() as session:
                await session.execute(delete(BookingHoldEntry).where(BookingHoldEntry.hold_id == hold_uuid))
                result = await session.execute(delete(BookingHold).where(BookingHold.id == hold_uuid))
                await session.commit()
        except Exception:
            # The hold still expires on its own; the sweeper removes it.
            logger.exception("Failed to release booking hold %s", hold_uuid)
            return False

        released = (result.rowcount or 0) > 0
        if released:
            logger.info("Booking hold %s released", hold_uuid)
        return released

    async def is_slot_held(
        self,
        staff_id: Optional[uuid.UUID],
        start: datetime,
        end: datetime,
        tenant_id: uuid.UUID,
        location_id: Optional[uuid.UUID] = None,
        resource_type_id: Optional[uuid.UUID] = None,
    ) -> bool:
        """Pre-flight check only; create_booking_hold stays authoritative."""
        start = ensure_utc(start)
        end = ensure_utc(end)
        now = utcnow()
        try:
            async with self.session_factory() as session:
                if staff_id:
                    hold = await self.find_conflicting_staff_hold(
                        session, tenant_id, staff_id, start, end, now, location_id
                    )
                    return hold is not None
                if resource_type_id is None:
                    return False
                stmt = (
                    select(BookingHoldEntry.id)
                    .join(BookingHold, BookingHold.id == BookingHoldEntry.hold_id)
                    .where(
                        BookingHoldEntry.tenant_id == tenant_id,
                        BookingHoldEntry.kind == HoldEntryKind.RESOURCE,
                        BookingHoldEntry.resource_type_id == resource_type_id,
                        BookingHoldEntry.start < end,
                        BookingHoldEntry.end > start,
                        BookingHoldEntry.expires_at > now,
                    )
                )
                if location_id is not None:
                    stmt = stmt.where(BookingHold.location_id == location_id)
                result = await session.execute(stmt.limit(1))
                return result.scalar_one_or_none() is not None
        except Exception:
            # Fail open: a false "not held" only costs a later hold collision.
            logger.exception("Failed to check booking hold for staff %s", staff_id)
            return False

    async def cleanup_expired_holds(self, now: Optional[datetime] = None) -> int:
        """Delete every hold whose expiry has passed. Returns the number of holds removed."""
        now = ensure_utc(now) if now else utcnow()
        expired_ids = select(BookingHold.id).where(BookingHold.expires_at < now)
        async with self.session_factory() as session:
            await session.execute(
                delete(BookingHoldEntry).where(
                    or_(BookingHoldEntry.expires_at < now, BookingHoldEntry.hold_id.in_(expired_ids))
                )
            )
            result = await session.execute(delete(BookingHold).where(BookingHold.expires_at < now))
            await session.commit()

        deleted = result.rowcount or 0
        if deleted:
            logger.info("Cleaned up %s expired booking holds", deleted)
        return deleted

    async def get_active_holds(
        self,
        tenant_id: Optional[uuid.UUID] = None,
        limit: int = 100,
    ) -> list[BookingHold]:
        now = utcnow()
        stmt = select(BookingHold).where(BookingHold.expires_at > now)
        if tenant_id is not None:
            stmt = stmt.where(BookingHold.tenant_id == tenant_id)
        async with self.session_factory() as session:
            result = await session.execute(stmt.order_by(BookingHold.created_at.desc()).limit(limit))
            return list(result.scalars().all())
