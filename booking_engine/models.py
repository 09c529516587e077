import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .core.db import Base, UTCDateTime, utcnow


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    CHECKED_IN = "checked_in"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELED = "canceled"
    NO_SHOW = "no_show"


# Statuses that no longer occupy the staff member's time.
INACTIVE_APPOINTMENT_STATUSES = (AppointmentStatus.CANCELED, AppointmentStatus.NO_SHOW)


class AppointmentSource(str, Enum):
    ONLINE = "online"
    PHONE = "phone"
    WALK_IN = "walk_in"
    SOCIAL = "social"


class CancelReason(str, Enum):
    CUSTOMER_REQUESTED = "customer_requested"
    STAFF_UNAVAILABLE = "staff_unavailable"
    RESOURCE_UNAVAILABLE = "resource_unavailable"
    WEATHER_CONDITIONS = "weather_conditions"
    PET_HEALTH_ISSUE = "pet_health_issue"
    BUSINESS_CLOSED = "business_closed"
    DOUBLE_BOOKING_ERROR = "double_booking_error"
    SYSTEM_ERROR = "system_error"
    OTHER = "other"


class HoldCreatedBy(str, Enum):
    WEB = "web"
    OPERATOR = "operator"
    ASSISTANT = "assistant"


class HoldEntryKind(str, Enum):
    STAFF = "staff"
    RESOURCE = "resource"


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class TenantWorkHours(Base):
    """Tenant-wide opening hours, used when a staff member has no personal schedule."""

    __tablename__ = "tenant_work_hours"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
    weekday: Mapped[int] = mapped_column(Integer, nullable=False)  # 0 = Sunday
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "weekday", name="uq_tenant_work_hours_weekday"),
        CheckConstraint("weekday >= 0 AND weekday <= 6", name="ck_tenant_work_hours_weekday"),
    )


class StaffMember(Base):
    __tablename__ = "staff_members"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # Bumped by every staff hold acquisition; the row lock serializes them.
    hold_seq: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class StaffServiceQualification(Base):
    """Allow-list entry. A staff member with no rows may perform every service."""

    __tablename__ = "staff_service_qualifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    staff_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("staff_members.id"), nullable=False, index=True)
    service_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("services.id"), nullable=False)

    __table_args__ = (UniqueConstraint("staff_id", "service_id", name="uq_staff_service_qualification"),)


class StaffSchedule(Base):
    __tablename__ = "staff_schedules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
    staff_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("staff_members.id"), nullable=False, index=True)
    location_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    weekday: Mapped[int] = mapped_column(Integer, nullable=False)  # 0 = Sunday
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    # [{"start": "12:00", "end": "12:30"}, ...]
    break_windows: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "staff_id", "location_id", "weekday", name="uq_staff_schedule_weekday"
        ),
        CheckConstraint("weekday >= 0 AND weekday <= 6", name="ck_staff_schedule_weekday"),
    )


class TimeOff(Base):
    __tablename__ = "time_off"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
    staff_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("staff_members.id"), nullable=False, index=True)
    start: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    end: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    reason: Mapped[str | None] = mapped_column(String(200), nullable=True)

    __table_args__ = (CheckConstraint('"start" < "end"', name="ck_time_off_range"),)


class ResourceType(Base):
    __tablename__ = "resource_types"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Resource(Base):
    __tablename__ = "resources"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
    location_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    resource_type_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("resource_types.id"), nullable=False, index=True
    )
    label: Mapped[str] = mapped_column(String(50), nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Service(Base):
    __tablename__ = "services"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class ServiceItem(Base):
    """A bookable variant of a service (size, coat type...)."""

    __tablename__ = "service_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
    service_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("services.id"), nullable=False, index=True)
    label: Mapped[str | None] = mapped_column(String(50), nullable=True)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    required_resources: Mapped[list["ServiceItemResource"]] = relationship(
        lazy="selectin", cascade="all, delete-orphan"
    )


class ServiceItemResource(Base):
    __tablename__ = "service_item_resources"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    service_item_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("service_items.id"), nullable=False, index=True
    )
    resource_type_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("resource_types.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)


class Appointment(Base):
    __tablename__ = "appointments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("tenants.id"), nullable=False)
    location_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    customer_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    staff_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("staff_members.id"), nullable=True)
    pet_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    service_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("services.id"), nullable=False)
    service_item_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("service_items.id"), nullable=True)
    start: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    status: Mapped[AppointmentStatus] = mapped_column(
        SqlEnum(AppointmentStatus, name="appointment_status", values_callable=_enum_values),
        default=AppointmentStatus.SCHEDULED,
        nullable=False,
    )
    source: Mapped[AppointmentSource] = mapped_column(
        SqlEnum(AppointmentSource, name="appointment_source", values_callable=_enum_values),
        default=AppointmentSource.ONLINE,
        nullable=False,
    )
    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(String(64), nullable=True)
    canceled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint('"end" > "start"', name="ck_appointment_range"),
        Index("ix_appointments_tenant_staff_window", "tenant_id", "staff_id", "start", "end"),
    )


class ResourceReservation(Base):
    """One row per unit of a resource type consumed by an appointment."""

    __tablename__ = "resource_reservations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("tenants.id"), nullable=False)
    location_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    appointment_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("appointments.id"), nullable=False, index=True
    )
    resource_type_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("resource_types.id"), nullable=False)
    start: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        Index("ix_reservations_tenant_type_window", "tenant_id", "resource_type_id", "start", "end"),
    )


class BookingHold(Base):
    """Short-lived advisory hold covering the gap between availability check and commit.

    Not a reservation of record: confirmed bookings live in appointments and
    resource_reservations only.
    """

    __tablename__ = "booking_holds"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("tenants.id"), nullable=False)
    location_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    customer_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    created_by: Mapped[HoldCreatedBy] = mapped_column(
        SqlEnum(HoldCreatedBy, name="hold_created_by", values_callable=_enum_values),
        default=HoldCreatedBy.WEB,
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    entries: Mapped[list["BookingHoldEntry"]] = relationship(lazy="selectin")

    __table_args__ = (Index("ix_booking_holds_tenant_expiry", "tenant_id", "expires_at"),)


class BookingHoldEntry(Base):
    """Tentative claim inside a hold: staff exclusivity or one unit of a resource type."""

    __tablename__ = "booking_hold_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    hold_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("booking_holds.id", ondelete="CASCADE"), nullable=False, index=True
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    kind: Mapped[HoldEntryKind] = mapped_column(
        SqlEnum(HoldEntryKind, name="hold_entry_kind", values_callable=_enum_values),
        nullable=False,
    )
    staff_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    resource_type_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    start: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    # Copied from the parent hold so overlap/count queries need no join.
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        Index("ix_hold_entries_staff_window", "tenant_id", "kind", "staff_id", "start", "end"),
        Index("ix_hold_entries_resource_window", "tenant_id", "kind", "resource_type_id", "start", "end"),
    )
