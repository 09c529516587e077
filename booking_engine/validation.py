import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional

from .errors import ValidationFailed
from .models import AppointmentSource, CancelReason, HoldCreatedBy
from .timeutils import parse_datetime

REQUIRED_FIELDS = {
    "tenant_id": "Tenant ID is required",
    "customer_id": "Customer ID is required",
    "service_id": "Service ID is required",
    "service_item_id": "Service item/variant ID is required",
    "staff_id": "Staff member ID is required",
    "location_id": "Location ID is required",
    "start": "Appointment start time is required",
    "end": "Appointment end time is required",
}

ID_FIELDS = ("tenant_id", "customer_id", "service_id", "service_item_id", "staff_id", "location_id", "pet_id")


@dataclass
class AppointmentInput:
    tenant_id: uuid.UUID
    customer_id: uuid.UUID
    service_id: uuid.UUID
    service_item_id: uuid.UUID
    staff_id: uuid.UUID
    location_id: uuid.UUID
    start: datetime
    end: datetime
    pet_id: Optional[uuid.UUID] = None
    notes: Optional[str] = None
    source: AppointmentSource = AppointmentSource.ONLINE
    created_by: HoldCreatedBy = HoldCreatedBy.WEB


def parse_uuid(value: Any) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    if not isinstance(value, str):
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def collect_errors(data: Mapping[str, Any]) -> list[str]:
    errors: list[str] = []

    for name, message in REQUIRED_FIELDS.items():
        if _is_blank(data.get(name)):
            errors.append(message)

    start = end = None
    if not _is_blank(data.get("start")):
        start = parse_datetime(data["start"])
        if start is None:
            errors.append("Invalid start time format. Must be a valid date.")
    if not _is_blank(data.get("end")):
        end = parse_datetime(data["end"])
        if end is None:
            errors.append("Invalid end time format. Must be a valid date.")
    if start is not None and end is not None and end <= start:
        errors.append("End time must be after start time")

    for name in ID_FIELDS:
        value = data.get(name)
        if not _is_blank(value) and parse_uuid(value) is None:
            errors.append(f"Invalid {name}: must be a valid ID")

    source = data.get("source")
    if source is not None and source not in {s.value for s in AppointmentSource}:
        errors.append(f"Invalid source: {source}")

    created_by = data.get("created_by")
    if created_by is not None and created_by not in {c.value for c in HoldCreatedBy}:
        errors.append(f"Invalid created_by: {created_by}")

    notes = data.get("notes")
    if notes is not None and len(str(notes)) > 500:
        errors.append("Notes must be at most 500 characters")

    return errors


def validate_appointment_data(data: Mapping[str, Any]) -> AppointmentInput:
    """Strict input validation for a new appointment; raises ValidationFailed with every problem found."""
    errors = collect_errors(data)
    if errors:
        raise ValidationFailed(errors)

    return AppointmentInput(
        tenant_id=parse_uuid(data["tenant_id"]),
        customer_id=parse_uuid(data["customer_id"]),
        service_id=parse_uuid(data["service_id"]),
        service_item_id=parse_uuid(data["service_item_id"]),
        staff_id=parse_uuid(data["staff_id"]),
        location_id=parse_uuid(data["location_id"]),
        start=parse_datetime(data["start"]),
        end=parse_datetime(data["end"]),
        pet_id=parse_uuid(data["pet_id"]) if not _is_blank(data.get("pet_id")) else None,
        notes=data.get("notes"),
        source=AppointmentSource(data.get("source") or AppointmentSource.ONLINE.value),
        created_by=HoldCreatedBy(data.get("created_by") or HoldCreatedBy.WEB.value),
    )


def validate_update_patch(patch: Mapping[str, Any]) -> dict[str, Any]:
    """Validate a reschedule patch. Only keys present in the patch are checked and returned."""
    errors: list[str] = []
    cleaned: dict[str, Any] = {}

    for name in ("staff_id", "service_id", "service_item_id", "location_id", "pet_id"):
        if name not in patch:
            continue
        value = patch[name]
        if value is None and name in ("staff_id", "pet_id"):
            cleaned[name] = None
            continue
        parsed = parse_uuid(value)
        if parsed is None:
            errors.append(f"Invalid {name}: must be a valid ID")
        else:
            cleaned[name] = parsed

    for name in ("start", "end"):
        if name not in patch:
            continue
        parsed = parse_datetime(patch[name])
        if parsed is None:
            errors.append(f"Invalid {name} time format. Must be a valid date.")
        else:
            cleaned[name] = parsed

    if "start" in cleaned and "end" in cleaned and cleaned["end"] <= cleaned["start"]:
        errors.append("End time must be after start time")

    if "notes" in patch:
        notes = patch["notes"]
        if notes is not None and len(str(notes)) > 500:
            errors.append("Notes must be at most 500 characters")
        else:
            cleaned["notes"] = notes

    if errors:
        raise ValidationFailed(errors)
    return cleaned


def validate_cancel_reason(reason: Any) -> CancelReason:
    try:
        return CancelReason(reason)
    except ValueError:
        allowed = ", ".join(r.value for r in CancelReason)
        raise ValidationFailed([f"Invalid cancel reason. Must be one of: {allowed}"])
