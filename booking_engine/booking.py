"""
Booking orchestration.

One booking attempt runs:
    validate -> staff qualification -> staff availability -> resource capacity
    -> acquire hold -> atomic commit (appointment + reservations) -> release hold

Holds are written in their own short transactions so concurrent callers see
them immediately; the appointment and its reservations are committed together
in a separate transaction. Staff overlap and capacity are re-checked inside
that transaction because time has passed since the first read.

Conflicts surface as typed BookingError subclasses. Database failures
propagate unchanged, after any hold acquired by the call has been released.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Mapping, Optional, Sequence

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .availability import (
    REASON_OVERLAP,
    AvailabilityResult,
    check_availability,
    find_overlapping_appointment,
)
from .capacity import CapacityResult, check_resource_capacity
from .core.config import Settings, get_settings
from .core.db import utcnow
from .errors import (
    BookingConflict,
    BookingError,
    BookingHoldExists,
    NotFound,
    ResourceConflict,
    StaffNotQualified,
    ValidationFailed,
)
from .holds import BookingHoldManager, HoldRequirement
from .models import (
    INACTIVE_APPOINTMENT_STATUSES,
    Appointment,
    AppointmentStatus,
    HoldCreatedBy,
    ResourceReservation,
    ServiceItem,
)
from .notifications import AppointmentEvent, AppointmentNotifier, NullNotifier, notify_safely
from .tenancy.queries import get_staff_qualifications, require_owned
from .validation import (
    validate_appointment_data,
    validate_cancel_reason,
    validate_update_patch,
)

logger = logging.getLogger(__name__)

REASON_HOLD_COLLISION = "Time slot is being booked by another request"


def appointment_to_dict(appointment: Appointment) -> dict[str, Any]:
    return {
        "id": str(appointment.id),
        "tenant_id": str(appointment.tenant_id),
        "location_id": str(appointment.location_id),
        "customer_id": str(appointment.customer_id),
        "staff_id": str(appointment.staff_id) if appointment.staff_id else None,
        "pet_id": str(appointment.pet_id) if appointment.pet_id else None,
        "service_id": str(appointment.service_id),
        "service_item_id": str(appointment.service_item_id) if appointment.service_item_id else None,
        "start": appointment.start.isoformat(),
        "end": appointment.end.isoformat(),
        "status": appointment.status.value,
        "source": appointment.source.value,
        "notes": appointment.notes,
        "cancel_reason": appointment.cancel_reason,
    }


def requirements_for(service_item: Optional[ServiceItem]) -> list[HoldRequirement]:
    if service_item is None:
        return []
    return [
        HoldRequirement(resource_type_id=req.resource_type_id, quantity=req.quantity or 1)
        for req in service_item.required_resources
    ]


def build_reservations(
    appointment: Appointment,
    requirements: Sequence[HoldRequirement],
) -> list[ResourceReservation]:
    """One reservation row per unit of each required resource type."""
    return [
        ResourceReservation(
            tenant_id=appointment.tenant_id,
            location_id=appointment.location_id,
            appointment_id=appointment.id,
            resource_type_id=req.resource_type_id,
            start=appointment.start,
            end=appointment.end,
        )
        for req in requirements
        for _ in range(max(req.quantity, 1))
    ]


class BookingService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: Optional[AppointmentNotifier] = None,
        settings: Optional[Settings] = None,
        hold_manager: Optional[BookingHoldManager] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.notifier = notifier or NullNotifier()
        self.holds = hold_manager or BookingHoldManager(session_factory, self.settings)

    validate_appointment_data = staticmethod(validate_appointment_data)

    async def get_active_holds(self, tenant_id: Optional[uuid.UUID] = None, limit: int = 100):
        return await self.holds.get_active_holds(tenant_id, limit)

    # ────────────────────────────────────────────────────────────────
    # Read-only checks
    # ────────────────────────────────────────────────────────────────

    async def check_availability(
        self,
        staff_id: Optional[uuid.UUID],
        start: datetime,
        end: datetime,
        tenant_id: uuid.UUID,
        exclude_appointment_id: Optional[uuid.UUID] = None,
        location_id: Optional[uuid.UUID] = None,
    ) -> AvailabilityResult:
        async with self.session_factory() as session:
            return await check_availability(
                session, staff_id, start, end, tenant_id, exclude_appointment_id, location_id
            )

    async def check_resource_capacity(
        self,
        tenant_id: uuid.UUID,
        resource_type_id: uuid.UUID,
        required_quantity: int,
        start: datetime,
        end: datetime,
    ) -> CapacityResult:
        async with self.session_factory() as session:
            return await check_resource_capacity(
                session, tenant_id, resource_type_id, required_quantity, start, end
            )

    # ────────────────────────────────────────────────────────────────
    # Shared steps
    # ────────────────────────────────────────────────────────────────

    async def _ensure_qualified(
        self,
        session: AsyncSession,
        staff_id: Optional[uuid.UUID],
        service_id: Optional[uuid.UUID],
    ) -> None:
        if not staff_id or not service_id:
            return
        allowed = await get_staff_qualifications(session, staff_id)
        # An empty allow-list means the staff member may perform every service.
        if allowed and service_id not in allowed:
            raise StaffNotQualified(staff_id, service_id)

    async def _load_service_item(
        self,
        session: AsyncSession,
        tenant_id: uuid.UUID,
        service_item_id: Optional[uuid.UUID],
        service_id: uuid.UUID,
    ) -> Optional[ServiceItem]:
        if service_item_id is None:
            return None
        item = await require_owned(session, ServiceItem, service_item_id, tenant_id)
        if item is None:
            raise NotFound("Service item not found", {"service_item_id": str(service_item_id)})
        if item.service_id != service_id:
            raise ValidationFailed(["Service item does not belong to the requested service"])
        return item

    async def _ensure_capacity(
        self,
        session: AsyncSession,
        tenant_id: uuid.UUID,
        requirements: Sequence[HoldRequirement],
        start: datetime,
        end: datetime,
        exclude_hold_id: Optional[uuid.UUID] = None,
        exclude_appointment_id: Optional[uuid.UUID] = None,
        staff_id: Optional[uuid.UUID] = None,
        prefix: str = "Booking not available",
    ) -> None:
        for req in requirements:
            result = await check_resource_capacity(
                session,
                tenant_id,
                req.resource_type_id,
                req.quantity,
                start,
                end,
                exclude_hold_id=exclude_hold_id,
                exclude_appointment_id=exclude_appointment_id,
            )
            if not result.available:
                if staff_id:
                    # A concurrent booking for the same staff member also holds the
                    # resource; report the staff conflict instead.
                    await self._ensure_staff_free(
                        session, tenant_id, staff_id, start, end, exclude_appointment_id, prefix
                    )
                raise ResourceConflict(result.reason, req.resource_type_id)

    async def _ensure_staff_free(
        self,
        session: AsyncSession,
        tenant_id: uuid.UUID,
        staff_id: uuid.UUID,
        start: datetime,
        end: datetime,
        exclude_appointment_id: Optional[uuid.UUID] = None,
        prefix: str = "Booking not available",
    ) -> None:
        clash = await find_overlapping_appointment(
            session, tenant_id, staff_id, start, end, exclude_appointment_id
        )
        if clash is not None:
            raise BookingConflict(REASON_OVERLAP, {"conflicting_appointment_id": str(clash.id)}, prefix=prefix)
        hold = await self.holds.find_conflicting_staff_hold(session, tenant_id, staff_id, start, end, utcnow())
        if hold is not None:
            raise BookingConflict(
                REASON_HOLD_COLLISION,
                {"hold_id": str(hold.id), "expires_at": hold.expires_at.isoformat()},
                prefix=prefix,
            )

    async def _acquire_hold(
        self,
        staff_id: Optional[uuid.UUID],
        start: datetime,
        end: datetime,
        tenant_id: uuid.UUID,
        location_id: uuid.UUID,
        customer_id: uuid.UUID,
        requirements: Sequence[HoldRequirement],
        created_by: HoldCreatedBy,
    ) -> Optional[uuid.UUID]:
        if not staff_id and not requirements:
            return None
        try:
            return await self.holds.create_booking_hold(
                staff_id,
                start,
                end,
                tenant_id,
                location_id=location_id,
                customer_id=customer_id,
                resources=requirements,
                created_by=created_by,
            )
        except BookingHoldExists as exc:
            # Same outcome for the caller as an availability conflict.
            raise BookingConflict(REASON_HOLD_COLLISION, exc.details) from exc

    # ────────────────────────────────────────────────────────────────
    # Create
    # ────────────────────────────────────────────────────────────────

    async def create_appointment(self, data: Mapping[str, Any]) -> Appointment:
        try:
            appointment = await self._create_appointment(data)
        except BookingError as exc:
            logger.info("Appointment not created: %s %s", exc.code, exc.message)
            raise
        except Exception:
            logger.exception("Error creating appointment")
            raise

        await notify_safely(self.notifier, AppointmentEvent.CREATED, appointment.tenant_id, appointment)
        logger.info("Appointment created: %s", appointment.id)
        return appointment

    async def _create_appointment(self, data: Mapping[str, Any]) -> Appointment:
        payload = validate_appointment_data(data)

        async with self.session_factory() as session:
            await self._ensure_qualified(session, payload.staff_id, payload.service_id)

            availability = await check_availability(
                session,
                payload.staff_id,
                payload.start,
                payload.end,
                payload.tenant_id,
                None,
                payload.location_id,
            )
            if not availability.available:
                raise BookingConflict(availability.reason, availability.details)

            service_item = await self._load_service_item(
                session, payload.tenant_id, payload.service_item_id, payload.service_id
            )
            requirements = requirements_for(service_item)
            await self._ensure_capacity(
                session,
                payload.tenant_id,
                requirements,
                payload.start,
                payload.end,
                staff_id=payload.staff_id,
            )

        hold_id = await self._acquire_hold(
            payload.staff_id,
            payload.start,
            payload.end,
            payload.tenant_id,
            payload.location_id,
            payload.customer_id,
            requirements,
            payload.created_by,
        )
        try:
            async with self.session_factory() as session, session.begin():
                if payload.staff_id:
                    clash = await find_overlapping_appointment(
                        session, payload.tenant_id, payload.staff_id, payload.start, payload.end
                    )
                    if clash is not None:
                        raise BookingConflict(
                            REASON_OVERLAP, {"conflicting_appointment_id": str(clash.id)}
                        )
                await self._ensure_capacity(
                    session,
                    payload.tenant_id,
                    requirements,
                    payload.start,
                    payload.end,
                    exclude_hold_id=hold_id,
                )

                now = utcnow()
                appointment = Appointment(
                    id=uuid.uuid4(),
                    tenant_id=payload.tenant_id,
                    location_id=payload.location_id,
                    customer_id=payload.customer_id,
                    staff_id=payload.staff_id,
                    pet_id=payload.pet_id,
                    service_id=payload.service_id,
                    service_item_id=payload.service_item_id,
                    start=payload.start,
                    end=payload.end,
                    status=AppointmentStatus.SCHEDULED,
                    source=payload.source,
                    notes=payload.notes,
                    created_at=now,
                    updated_at=now,
                )
                session.add(appointment)
                await session.flush()
                session.add_all(build_reservations(appointment, requirements))
        finally:
            if hold_id is not None:
                await self.holds.release_booking_hold(hold_id)

        return appointment

    # ────────────────────────────────────────────────────────────────
    # Reschedule
    # ────────────────────────────────────────────────────────────────

    async def update_appointment(
        self,
        appointment_id: uuid.UUID,
        patch: Mapping[str, Any],
        tenant_id: uuid.UUID,
    ) -> Appointment:
        try:
            appointment = await self._update_appointment(appointment_id, patch, tenant_id)
        except BookingError as exc:
            logger.info("Appointment %s not updated: %s %s", appointment_id, exc.code, exc.message)
            raise
        except Exception:
            logger.exception("Error updating appointment %s", appointment_id)
            raise

        await notify_safely(self.notifier, AppointmentEvent.UPDATED, tenant_id, appointment)
        logger.info("Appointment updated: %s", appointment_id)
        return appointment

    async def _update_appointment(
        self,
        appointment_id: uuid.UUID,
        patch: Mapping[str, Any],
        tenant_id: uuid.UUID,
    ) -> Appointment:
        changes = validate_update_patch(patch)

        async with self.session_factory() as session:
            current = await require_owned(session, Appointment, appointment_id, tenant_id)
            if current is None:
                raise NotFound("Appointment not found", {"appointment_id": str(appointment_id)})
            if current.status in INACTIVE_APPOINTMENT_STATUSES:
                raise ValidationFailed([f"Cannot reschedule an appointment with status {current.status.value}"])

            final_staff_id = changes.get("staff_id", current.staff_id)
            final_service_id = changes.get("service_id", current.service_id)
            final_item_id = changes.get("service_item_id", current.service_item_id)
            final_location_id = changes.get("location_id", current.location_id)
            final_start = changes.get("start", current.start)
            final_end = changes.get("end", current.end)
            if final_end <= final_start:
                raise ValidationFailed(["End time must be after start time"])

            await self._ensure_qualified(session, final_staff_id, final_service_id)

            window_changed = any(key in changes for key in ("start", "end", "staff_id"))
            resources_changed = any(key in changes for key in ("start", "end", "service_item_id"))

            if window_changed:
                availability = await check_availability(
                    session,
                    final_staff_id,
                    final_start,
                    final_end,
                    tenant_id,
                    appointment_id,
                    changes.get("location_id"),
                )
                if not availability.available:
                    raise BookingConflict(
                        availability.reason, availability.details, prefix="Reschedule not available"
                    )

            service_item = await self._load_service_item(session, tenant_id, final_item_id, final_service_id)
            requirements = requirements_for(service_item)
            if resources_changed:
                await self._ensure_capacity(
                    session,
                    tenant_id,
                    requirements,
                    final_start,
                    final_end,
                    exclude_appointment_id=appointment_id,
                    staff_id=final_staff_id if window_changed else None,
                    prefix="Reschedule not available",
                )

        hold_id = None
        if window_changed or resources_changed:
            hold_id = await self._acquire_hold(
                final_staff_id if window_changed else None,
                final_start,
                final_end,
                tenant_id,
                final_location_id,
                current.customer_id,
                requirements if resources_changed else [],
                HoldCreatedBy.OPERATOR,
            )
        try:
            async with self.session_factory() as session, session.begin():
                appointment = await require_owned(session, Appointment, appointment_id, tenant_id)
                if appointment is None:
                    raise NotFound("Appointment not found", {"appointment_id": str(appointment_id)})

                if window_changed and final_staff_id:
                    clash = await find_overlapping_appointment(
                        session, tenant_id, final_staff_id, final_start, final_end, appointment_id
                    )
                    if clash is not None:
                        raise BookingConflict(
                            REASON_OVERLAP,
                            {"conflicting_appointment_id": str(clash.id)},
                            prefix="Reschedule not available",
                        )
                if resources_changed:
                    await self._ensure_capacity(
                        session,
                        tenant_id,
                        requirements,
                        final_start,
                        final_end,
                        exclude_hold_id=hold_id,
                        exclude_appointment_id=appointment_id,
                    )

                appointment.staff_id = final_staff_id
                appointment.service_id = final_service_id
                appointment.service_item_id = final_item_id
                appointment.location_id = final_location_id
                appointment.start = final_start
                appointment.end = final_end
                if "pet_id" in changes:
                    appointment.pet_id = changes["pet_id"]
                if "notes" in changes:
                    appointment.notes = changes["notes"]
                appointment.updated_at = utcnow()

                if resources_changed:
                    await session.execute(
                        delete(ResourceReservation).where(ResourceReservation.appointment_id == appointment_id)
                    )
                    session.add_all(build_reservations(appointment, requirements))
        finally:
            if hold_id is not None:
                await self.holds.release_booking_hold(hold_id)

        return appointment

    # ────────────────────────────────────────────────────────────────
    # Cancel
    # ────────────────────────────────────────────────────────────────

    async def cancel_appointment(
        self,
        appointment_id: uuid.UUID,
        tenant_id: uuid.UUID,
        reason: str,
    ) -> Appointment:
        cancel_reason = validate_cancel_reason(reason)

        async with self.session_factory() as session, session.begin():
            appointment = await require_owned(session, Appointment, appointment_id, tenant_id)
            if appointment is None:
                raise NotFound("Appointment not found", {"appointment_id": str(appointment_id)})
            if appointment.status == AppointmentStatus.CANCELED:
                return appointment

            now = utcnow()
            appointment.status = AppointmentStatus.CANCELED
            appointment.cancel_reason = cancel_reason.value
            appointment.canceled_at = now
            appointment.updated_at = now
            await session.execute(
                delete(ResourceReservation).where(ResourceReservation.appointment_id == appointment_id)
            )

        await notify_safely(self.notifier, AppointmentEvent.CANCELED, tenant_id, appointment)
        logger.info("Appointment canceled: %s (%s)", appointment_id, cancel_reason.value)
        return appointment
