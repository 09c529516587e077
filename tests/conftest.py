"""
Pytest configuration and fixtures for async database testing.

Each test gets its own database: a temporary SQLite file by default, or the
database named by TEST_DATABASE_URL (e.g. a local Postgres) which is created
and dropped around the test. Separate sessions hit separate connections, so
concurrent bookings race for real.
"""
import os
import uuid
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from httpx import AsyncClient, ASGITransport

from booking_engine.booking import BookingService
from booking_engine.core.config import Settings
from booking_engine.core.db import Base, build_engine, build_session_factory
from booking_engine.holds import BookingHoldManager
from booking_engine.models import (
    Resource,
    ResourceType,
    Service,
    ServiceItem,
    ServiceItemResource,
    StaffMember,
    StaffSchedule,
    Tenant,
)

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")

# 2025-12-01 is a Monday (weekday 1 with Sunday = 0).
MONDAY = (2025, 12, 1)


def at(hour: int, minute: int = 0, day: tuple = MONDAY) -> datetime:
    """UTC instant on the test Monday."""
    return datetime(*day, hour, minute, tzinfo=timezone.utc)


@pytest.fixture(scope="function")
async def async_engine(tmp_path):
    """
    Create async SQLAlchemy engine for the test database.

    Tables are created fresh for every test and dropped afterwards.
    """
    url = TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'booking.db'}"
    engine = build_engine(url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    if TEST_DATABASE_URL:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine):
    return build_session_factory(async_engine)


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite+aiosqlite://",
        hold_ttl_seconds=30,
        hold_sweep_enabled=False,
    )


@pytest.fixture
def hold_manager(session_factory, settings):
    return BookingHoldManager(session_factory, settings)


class RecordingNotifier:
    def __init__(self):
        self.events = []

    async def appointment_changed(self, event, tenant_id, appointment):
        self.events.append((event, tenant_id, appointment.id))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def booking_service(session_factory, settings, notifier, hold_manager):
    return BookingService(session_factory, notifier=notifier, settings=settings, hold_manager=hold_manager)


@pytest.fixture
async def seed(session_factory):
    """
    One tenant (UTC) with:
      - staff S1 and S2, both working Monday 09:00-18:00 with a 12:00-12:30 break
      - resource type "Tub" with a single tub (capacity 1)
      - service "Bath" whose item "Small dog" needs one tub
    """
    tenant_id = uuid.uuid4()
    location_id = uuid.uuid4()
    staff_ids = [uuid.uuid4(), uuid.uuid4()]
    tub_type_id = uuid.uuid4()
    service_id = uuid.uuid4()
    item_id = uuid.uuid4()

    async with session_factory() as session:
        session.add(Tenant(id=tenant_id, name="Happy Paws", timezone="UTC"))
        await session.flush()
        for index, staff_id in enumerate(staff_ids):
            session.add(StaffMember(id=staff_id, tenant_id=tenant_id, full_name=f"Groomer {index + 1}"))
        session.add(ResourceType(id=tub_type_id, tenant_id=tenant_id, name="Tub"))
        session.add(Service(id=service_id, tenant_id=tenant_id, name="Bath"))
        await session.flush()
        for staff_id in staff_ids:
            session.add(
                StaffSchedule(
                    tenant_id=tenant_id,
                    staff_id=staff_id,
                    location_id=location_id,
                    weekday=1,
                    start_time="09:00",
                    end_time="18:00",
                    break_windows=[{"start": "12:00", "end": "12:30"}],
                )
            )
        session.add(
            Resource(
                tenant_id=tenant_id,
                location_id=location_id,
                resource_type_id=tub_type_id,
                label="Tub 1",
                capacity=1,
            )
        )
        session.add(
            ServiceItem(
                id=item_id,
                tenant_id=tenant_id,
                service_id=service_id,
                label="Small dog",
                duration_minutes=60,
                required_resources=[ServiceItemResource(resource_type_id=tub_type_id, quantity=1)],
            )
        )
        await session.commit()

    return SimpleNamespace(
        tenant_id=tenant_id,
        location_id=location_id,
        staff_id=staff_ids[0],
        other_staff_id=staff_ids[1],
        tub_type_id=tub_type_id,
        service_id=service_id,
        service_item_id=item_id,
        customer_id=uuid.uuid4(),
    )


@pytest.fixture
def make_payload(seed):
    """Build a create-appointment payload for the seeded tenant."""

    def _make(start: datetime, end: datetime, **overrides):
        payload = {
            "tenant_id": str(seed.tenant_id),
            "customer_id": str(seed.customer_id),
            "service_id": str(seed.service_id),
            "service_item_id": str(seed.service_item_id),
            "staff_id": str(seed.staff_id),
            "location_id": str(seed.location_id),
            "start": start.isoformat(),
            "end": end.isoformat(),
        }
        payload.update(overrides)
        return payload

    return _make


@pytest.fixture(scope="function")
async def client(booking_service):
    """
    FastAPI AsyncClient bound to the per-test booking service.
    """
    from booking_engine.api import get_booking_service
    from booking_engine.main import app

    app.dependency_overrides[get_booking_service] = lambda: booking_service

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
