"""
HTTP routes for the booking engine.

No auth here: the routes are meant to sit behind the host application's own
gateway. Every response uses the success/error envelope; BookingError subclasses
are mapped to their status codes by the handler registered in main.py.

    POST   /appointments                 -> create
    PATCH  /appointments/{id}            -> reschedule / edit
    POST   /appointments/{id}/cancel     -> cancel
    POST   /availability/check           -> read-only staff (+ capacity) check
    POST   /holds                        -> create a booking hold
    DELETE /holds/{id}                   -> release a booking hold
    GET    /holds                        -> list live holds (debugging)
"""

import logging
from functools import lru_cache
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from .booking import BookingService, appointment_to_dict
from .core.db import AsyncSessionLocal
from .core.responses import success_response
from .errors import ValidationFailed
from .holds import BookingHoldManager, HoldRequirement, hold_to_dict
from .models import HoldCreatedBy
from .notifications import LoggingNotifier
from .timeutils import parse_datetime
from .validation import parse_uuid

logger = logging.getLogger(__name__)

router = APIRouter(tags=["booking"])


# ────────────────────────────────────────────────────────────────
# Dependencies
# ────────────────────────────────────────────────────────────────

@lru_cache
def get_booking_service() -> BookingService:
    return BookingService(AsyncSessionLocal, notifier=LoggingNotifier())


def get_hold_manager(service: BookingService = Depends(get_booking_service)) -> BookingHoldManager:
    return service.holds


# ────────────────────────────────────────────────────────────────
# Request models
# ────────────────────────────────────────────────────────────────
# Fields stay loosely typed so malformed values reach the engine's own
# validator and come back as VALIDATION_FAILED.

class AppointmentCreateRequest(BaseModel):
    tenant_id: Optional[str] = None
    customer_id: Optional[str] = None
    service_id: Optional[str] = None
    service_item_id: Optional[str] = None
    staff_id: Optional[str] = None
    location_id: Optional[str] = None
    pet_id: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    notes: Optional[str] = None
    source: Optional[str] = None
    created_by: Optional[str] = None


class AppointmentUpdateRequest(BaseModel):
    tenant_id: str
    staff_id: Optional[str] = None
    service_id: Optional[str] = None
    service_item_id: Optional[str] = None
    location_id: Optional[str] = None
    pet_id: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    notes: Optional[str] = None


class AppointmentCancelRequest(BaseModel):
    tenant_id: str
    reason: str = "other"


class AvailabilityCheckRequest(BaseModel):
    tenant_id: str
    staff_id: Optional[str] = None
    start: str
    end: str
    location_id: Optional[str] = None
    exclude_appointment_id: Optional[str] = None
    resource_type_id: Optional[str] = None
    quantity: int = Field(default=1, ge=1)


class HoldCreateRequest(BaseModel):
    tenant_id: str
    location_id: str
    customer_id: str
    start: str
    end: str
    staff_id: Optional[str] = None
    resource_type_id: Optional[str] = None
    quantity: int = Field(default=1, ge=1)
    created_by: HoldCreatedBy = HoldCreatedBy.WEB


def _require_uuid(name: str, value: Any, errors: list[str]):
    parsed = parse_uuid(value)
    if parsed is None:
        errors.append(f"Invalid {name}: must be a valid ID")
    return parsed


def _optional_uuid(name: str, value: Any, errors: list[str]):
    if value in (None, ""):
        return None
    return _require_uuid(name, value, errors)


def _window(start: Any, end: Any, errors: list[str]):
    start_at = parse_datetime(start)
    end_at = parse_datetime(end)
    if start_at is None:
        errors.append("Invalid start time format. Must be a valid date.")
    if end_at is None:
        errors.append("Invalid end time format. Must be a valid date.")
    if start_at is not None and end_at is not None and end_at <= start_at:
        errors.append("End time must be after start time")
    return start_at, end_at


# ────────────────────────────────────────────────────────────────
# Appointments
# ────────────────────────────────────────────────────────────────

@router.post("/appointments", status_code=201)
async def create_appointment(
    payload: AppointmentCreateRequest,
    service: BookingService = Depends(get_booking_service),
):
    appointment = await service.create_appointment(payload.model_dump(exclude_none=True))
    return success_response(appointment_to_dict(appointment))


@router.patch("/appointments/{appointment_id}")
async def update_appointment(
    appointment_id: str,
    payload: AppointmentUpdateRequest,
    service: BookingService = Depends(get_booking_service),
):
    errors: list[str] = []
    appointment_uuid = _require_uuid("appointment_id", appointment_id, errors)
    tenant_uuid = _require_uuid("tenant_id", payload.tenant_id, errors)
    if errors:
        raise ValidationFailed(errors)

    patch = payload.model_dump(exclude_unset=True, exclude={"tenant_id"})
    appointment = await service.update_appointment(appointment_uuid, patch, tenant_uuid)
    return success_response(appointment_to_dict(appointment))


@router.post("/appointments/{appointment_id}/cancel")
async def cancel_appointment(
    appointment_id: str,
    payload: AppointmentCancelRequest,
    service: BookingService = Depends(get_booking_service),
):
    errors: list[str] = []
    appointment_uuid = _require_uuid("appointment_id", appointment_id, errors)
    tenant_uuid = _require_uuid("tenant_id", payload.tenant_id, errors)
    if errors:
        raise ValidationFailed(errors)

    appointment = await service.cancel_appointment(appointment_uuid, tenant_uuid, payload.reason)
    return success_response(appointment_to_dict(appointment))


# ────────────────────────────────────────────────────────────────
# Availability
# ────────────────────────────────────────────────────────────────

@router.post("/availability/check")
async def check_availability(
    payload: AvailabilityCheckRequest,
    service: BookingService = Depends(get_booking_service),
):
    errors: list[str] = []
    tenant_id = _require_uuid("tenant_id", payload.tenant_id, errors)
    staff_id = _optional_uuid("staff_id", payload.staff_id, errors)
    location_id = _optional_uuid("location_id", payload.location_id, errors)
    exclude_id = _optional_uuid("exclude_appointment_id", payload.exclude_appointment_id, errors)
    resource_type_id = _optional_uuid("resource_type_id", payload.resource_type_id, errors)
    start, end = _window(payload.start, payload.end, errors)
    if errors:
        raise ValidationFailed(errors)

    result = await service.check_availability(staff_id, start, end, tenant_id, exclude_id, location_id)
    data = result.to_dict()
    if resource_type_id is not None:
        capacity = await service.check_resource_capacity(
            tenant_id, resource_type_id, payload.quantity, start, end
        )
        data["capacity"] = capacity.to_dict()
        data["available"] = result.available and capacity.available
    return success_response(data)


# ────────────────────────────────────────────────────────────────
# Holds
# ────────────────────────────────────────────────────────────────

@router.post("/holds", status_code=201)
async def create_hold(
    payload: HoldCreateRequest,
    holds: BookingHoldManager = Depends(get_hold_manager),
):
    errors: list[str] = []
    tenant_id = _require_uuid("tenant_id", payload.tenant_id, errors)
    location_id = _require_uuid("location_id", payload.location_id, errors)
    customer_id = _require_uuid("customer_id", payload.customer_id, errors)
    staff_id = _optional_uuid("staff_id", payload.staff_id, errors)
    resource_type_id = _optional_uuid("resource_type_id", payload.resource_type_id, errors)
    start, end = _window(payload.start, payload.end, errors)
    if not staff_id and not resource_type_id and not errors:
        errors.append("A hold needs a staff_id or a resource_type_id")
    if errors:
        raise ValidationFailed(errors)

    resources = [HoldRequirement(resource_type_id, payload.quantity)] if resource_type_id else []
    hold_id = await holds.create_booking_hold(
        staff_id,
        start,
        end,
        tenant_id,
        location_id=location_id,
        customer_id=customer_id,
        resources=resources,
        created_by=payload.created_by,
    )
    return success_response({"hold_id": str(hold_id), "ttl_seconds": int(holds.ttl.total_seconds())})


@router.delete("/holds/{hold_id}")
async def release_hold(hold_id: str, holds: BookingHoldManager = Depends(get_hold_manager)):
    released = await holds.release_booking_hold(hold_id)
    return success_response({"hold_id": hold_id, "released": released})


@router.get("/holds")
async def list_holds(
    tenant_id: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=500),
    holds: BookingHoldManager = Depends(get_hold_manager),
):
    errors: list[str] = []
    tenant_uuid = _optional_uuid("tenant_id", tenant_id, errors)
    if errors:
        raise ValidationFailed(errors)

    active = await holds.get_active_holds(tenant_uuid, limit)
    return success_response([hold_to_dict(hold) for hold in active])
