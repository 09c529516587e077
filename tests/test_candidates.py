"""
Candidate-list booking tests.

Run with: pytest tests/test_candidates.py -v
"""

import uuid

import pytest

from booking_engine.candidates import create_appointment_for_candidates
from booking_engine.errors import ResourceConflict
from booking_engine.models import Service, StaffServiceQualification, TimeOff

from .conftest import at


class TestCandidates:
    async def test_first_free_candidate_is_booked(self, booking_service, seed, make_payload):
        result = await create_appointment_for_candidates(
            booking_service, make_payload(at(10), at(11)), [seed.staff_id, seed.other_staff_id]
        )
        assert result.booked
        assert result.booked_staff_id == str(seed.staff_id)
        assert len(result.attempts) == 1
        assert result.attempts[0].succeeded

    async def test_moves_on_after_booking_conflict(self, booking_service, session_factory, seed, make_payload):
        # Occupy staff 1 without touching the tub.
        async with session_factory() as session:
            session.add(TimeOff(tenant_id=seed.tenant_id, staff_id=seed.staff_id, start=at(9), end=at(13)))
            await session.commit()

        result = await create_appointment_for_candidates(
            booking_service, make_payload(at(10), at(11)), [seed.staff_id, seed.other_staff_id]
        )
        assert result.booked_staff_id == str(seed.other_staff_id)
        assert [a.code for a in result.attempts] == ["BOOKING_CONFLICT", None]
        assert result.error is None

    async def test_moves_on_after_unqualified_staff(self, booking_service, session_factory, seed, make_payload):
        other_service_id = uuid.uuid4()
        async with session_factory() as session:
            session.add(Service(id=other_service_id, tenant_id=seed.tenant_id, name="Teeth cleaning"))
            await session.flush()
            session.add(StaffServiceQualification(staff_id=seed.staff_id, service_id=other_service_id))
            await session.commit()

        result = await create_appointment_for_candidates(
            booking_service, make_payload(at(10), at(11)), [seed.staff_id, seed.other_staff_id]
        )
        assert result.booked_staff_id == str(seed.other_staff_id)
        assert result.attempts[0].code == "STAFF_NOT_QUALIFIED"

    async def test_stops_on_resource_conflict(self, booking_service, seed, make_payload):
        await booking_service.create_appointment(make_payload(at(10), at(11), staff_id=str(seed.other_staff_id)))

        result = await create_appointment_for_candidates(
            booking_service,
            make_payload(at(10), at(11)),
            [seed.staff_id, seed.other_staff_id],
        )
        assert not result.booked
        assert len(result.attempts) == 1
        assert isinstance(result.error, ResourceConflict)

    async def test_stops_on_validation_failure(self, booking_service, seed, make_payload):
        result = await create_appointment_for_candidates(
            booking_service, make_payload(at(11), at(10)), [seed.staff_id, seed.other_staff_id]
        )
        assert not result.booked
        assert [a.code for a in result.attempts] == ["VALIDATION_FAILED"]

    async def test_all_candidates_busy(self, booking_service, seed, make_payload):
        result = await create_appointment_for_candidates(
            booking_service, make_payload(at(12, 10), at(12, 20)), [seed.staff_id, seed.other_staff_id]
        )
        assert not result.booked
        assert [a.code for a in result.attempts] == ["BOOKING_CONFLICT", "BOOKING_CONFLICT"]
        assert result.error.reason == "Overlaps with break time"

    async def test_infrastructure_errors_propagate(self, booking_service, seed, make_payload, monkeypatch):
        async def broken(data):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(booking_service, "create_appointment", broken)
        with pytest.raises(RuntimeError):
            await create_appointment_for_candidates(booking_service, make_payload(at(10), at(11)), [seed.staff_id])
