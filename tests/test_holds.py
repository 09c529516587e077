"""
Booking hold manager tests: mutual exclusion, release, pre-flight check, sweep.

Run with: pytest tests/test_holds.py -v
"""

import asyncio
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from booking_engine.core.db import utcnow
from booking_engine.errors import BookingHoldExists, NotFound
from booking_engine.holds import HoldRequirement, hold_to_dict
from booking_engine.models import BookingHold, BookingHoldEntry, HoldEntryKind, StaffMember
from booking_engine.sweeper import HoldSweeper

from .conftest import at


async def _hold(hold_manager, seed, start, end, staff_id="default", **kwargs):
    return await hold_manager.create_booking_hold(
        seed.staff_id if staff_id == "default" else staff_id,
        start,
        end,
        seed.tenant_id,
        location_id=seed.location_id,
        customer_id=seed.customer_id,
        **kwargs,
    )


async def _count(session_factory, model):
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


# ────────────────────────────────────────────────────────────────
# Acquisition
# ────────────────────────────────────────────────────────────────

class TestCreateBookingHold:
    async def test_creates_hold_with_ttl(self, session_factory, seed, hold_manager):
        before = utcnow()
        hold_id = await _hold(hold_manager, seed, at(10), at(11), resource_type_id=seed.tub_type_id)

        async with session_factory() as session:
            hold = await session.get(BookingHold, hold_id)
            kinds = sorted(entry.kind.value for entry in hold.entries)
        assert kinds == ["resource", "staff"]
        assert hold.expires_at >= before + timedelta(seconds=30)
        assert hold.expires_at <= utcnow() + timedelta(seconds=30)

    async def test_resource_entries_fan_out_by_quantity(self, session_factory, seed, hold_manager):
        await _hold(hold_manager, seed, at(10), at(11), staff_id=None, resources=[HoldRequirement(seed.tub_type_id, 2)])
        async with session_factory() as session:
            entries = (await session.execute(select(BookingHoldEntry))).scalars().all()
        assert [entry.kind for entry in entries] == [HoldEntryKind.RESOURCE, HoldEntryKind.RESOURCE]

    async def test_overlapping_staff_hold_is_rejected(self, seed, hold_manager):
        first = await _hold(hold_manager, seed, at(10), at(11))
        with pytest.raises(BookingHoldExists) as excinfo:
            await _hold(hold_manager, seed, at(10, 30), at(11, 30))
        assert excinfo.value.hold_id == first
        assert excinfo.value.code == "BOOKING_HOLD_EXISTS"
        assert "Hold expires at" in excinfo.value.message

    async def test_adjacent_and_other_staff_holds_succeed(self, seed, hold_manager):
        await _hold(hold_manager, seed, at(10), at(11))
        await _hold(hold_manager, seed, at(11), at(12))
        await _hold(hold_manager, seed, at(10), at(11), staff_id=seed.other_staff_id)

    async def test_resource_holds_are_not_exclusive(self, seed, hold_manager):
        await _hold(hold_manager, seed, at(10), at(11), staff_id=None, resource_type_id=seed.tub_type_id)
        await _hold(hold_manager, seed, at(10), at(11), staff_id=None, resource_type_id=seed.tub_type_id)

    async def test_expired_hold_does_not_block(self, session_factory, seed, hold_manager):
        await _hold(hold_manager, seed, at(10), at(11))
        async with session_factory() as session:
            for model in (BookingHold, BookingHoldEntry):
                await session.execute(
                    model.__table__.update().values(expires_at=utcnow() - timedelta(seconds=1))
                )
            await session.commit()

        await _hold(hold_manager, seed, at(10), at(11))

    async def test_unaligned_adjacent_holds_succeed(self, session_factory, seed, hold_manager):
        """Only real overlap rejects; a boundary at 10:32 is not a collision."""
        await _hold(hold_manager, seed, at(10), at(10, 32))
        await _hold(hold_manager, seed, at(10, 32), at(11))
        await _hold(hold_manager, seed, at(11, 0) + timedelta(seconds=30), at(11, 7))
        await _hold(hold_manager, seed, at(11), at(11) + timedelta(seconds=30))

        with pytest.raises(BookingHoldExists):
            await _hold(hold_manager, seed, at(10, 31), at(10, 33))

        async with session_factory() as session:
            staff = await session.get(StaffMember, seed.staff_id)
        # The rejected acquisition rolled its bump back.
        assert staff.hold_seq == 4

    async def test_unknown_staff_is_not_found(self, seed, hold_manager):
        with pytest.raises(NotFound):
            await _hold(hold_manager, seed, at(10), at(11), staff_id=uuid.uuid4())

    async def test_store_errors_propagate_unchanged(self, monkeypatch, seed, hold_manager):
        first = await _hold(hold_manager, seed, at(10), at(11), staff_id=None, resource_type_id=seed.tub_type_id)
        monkeypatch.setattr("booking_engine.holds.uuid.uuid4", lambda: first)

        with pytest.raises(IntegrityError):
            await _hold(hold_manager, seed, at(13), at(14), staff_id=None, resource_type_id=seed.tub_type_id)

    @pytest.mark.parametrize(
        "kwargs, message",
        [
            ({"location_id": None}, "location_id is required"),
            ({"customer_id": None}, "customer_id is required"),
        ],
    )
    async def test_requires_location_and_customer(self, seed, hold_manager, kwargs, message):
        params = {"location_id": seed.location_id, "customer_id": seed.customer_id, **kwargs}
        with pytest.raises(ValueError, match=message):
            await hold_manager.create_booking_hold(seed.staff_id, at(10), at(11), seed.tenant_id, **params)

    async def test_requires_a_claim(self, seed, hold_manager):
        with pytest.raises(ValueError):
            await _hold(hold_manager, seed, at(10), at(11), staff_id=None)


class TestConcurrentHolds:
    async def test_exactly_one_concurrent_hold_wins(self, session_factory, seed, hold_manager):
        results = await asyncio.gather(
            _hold(hold_manager, seed, at(10), at(11)),
            _hold(hold_manager, seed, at(10, 15), at(11, 15)),
            return_exceptions=True,
        )
        winners = [r for r in results if isinstance(r, uuid.UUID)]
        losers = [r for r in results if isinstance(r, BookingHoldExists)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert await _count(session_factory, BookingHold) == 1

    async def test_concurrent_adjacent_holds_both_win(self, session_factory, seed, hold_manager):
        results = await asyncio.gather(
            _hold(hold_manager, seed, at(10), at(10, 32)),
            _hold(hold_manager, seed, at(10, 32), at(11)),
            return_exceptions=True,
        )
        assert all(isinstance(r, uuid.UUID) for r in results)
        assert await _count(session_factory, BookingHold) == 2


# ────────────────────────────────────────────────────────────────
# Release, pre-flight, listing
# ────────────────────────────────────────────────────────────────

class TestReleaseBookingHold:
    async def test_release_removes_everything(self, session_factory, seed, hold_manager):
        hold_id = await _hold(hold_manager, seed, at(10), at(11), resource_type_id=seed.tub_type_id)
        assert await hold_manager.release_booking_hold(hold_id) is True
        for model in (BookingHold, BookingHoldEntry):
            assert await _count(session_factory, model) == 0

        # Slot is free again.
        await _hold(hold_manager, seed, at(10), at(11))

    async def test_release_is_idempotent(self, seed, hold_manager):
        hold_id = await _hold(hold_manager, seed, at(10), at(11))
        assert await hold_manager.release_booking_hold(hold_id) is True
        assert await hold_manager.release_booking_hold(hold_id) is False
        assert await hold_manager.release_booking_hold(uuid.uuid4()) is False

    @pytest.mark.parametrize("hold_id", [None, "", "not-a-uuid"])
    async def test_release_with_bad_id_never_raises(self, hold_manager, hold_id):
        assert await hold_manager.release_booking_hold(hold_id) is False

    async def test_release_accepts_string_ids(self, seed, hold_manager):
        hold_id = await _hold(hold_manager, seed, at(10), at(11))
        assert await hold_manager.release_booking_hold(str(hold_id)) is True


class TestIsSlotHeld:
    async def test_staff_slot(self, seed, hold_manager):
        await _hold(hold_manager, seed, at(10), at(11))
        assert await hold_manager.is_slot_held(seed.staff_id, at(10, 30), at(11, 30), seed.tenant_id)
        assert not await hold_manager.is_slot_held(seed.staff_id, at(11), at(12), seed.tenant_id)
        assert not await hold_manager.is_slot_held(seed.other_staff_id, at(10), at(11), seed.tenant_id)

    async def test_resource_slot(self, seed, hold_manager):
        await _hold(hold_manager, seed, at(10), at(11), staff_id=None, resource_type_id=seed.tub_type_id)
        assert await hold_manager.is_slot_held(
            None, at(10), at(11), seed.tenant_id, resource_type_id=seed.tub_type_id
        )

    async def test_fails_open(self, seed, hold_manager):
        class BrokenFactory:
            def __call__(self):
                raise RuntimeError("database unavailable")

        hold_manager.session_factory = BrokenFactory()
        assert await hold_manager.is_slot_held(seed.staff_id, at(10), at(11), seed.tenant_id) is False


class TestActiveHolds:
    async def test_lists_live_holds_for_tenant(self, seed, hold_manager):
        hold_id = await _hold(hold_manager, seed, at(10), at(11))
        holds = await hold_manager.get_active_holds(seed.tenant_id)
        assert [hold.id for hold in holds] == [hold_id]
        assert hold_to_dict(holds[0])["tentative"][0]["staff_id"] == str(seed.staff_id)
        assert await hold_manager.get_active_holds(uuid.uuid4()) == []

    async def test_respects_limit(self, seed, hold_manager):
        await _hold(hold_manager, seed, at(10), at(11))
        await _hold(hold_manager, seed, at(13), at(14))
        assert len(await hold_manager.get_active_holds(limit=1)) == 1


# ────────────────────────────────────────────────────────────────
# Sweeping
# ────────────────────────────────────────────────────────────────

class TestCleanup:
    async def test_cleanup_removes_only_expired(self, session_factory, seed, hold_manager):
        await _hold(hold_manager, seed, at(10), at(11))
        assert await hold_manager.cleanup_expired_holds() == 0

        later = utcnow() + timedelta(seconds=31)
        assert await hold_manager.cleanup_expired_holds(now=later) == 1
        for model in (BookingHold, BookingHoldEntry):
            assert await _count(session_factory, model) == 0

    async def test_sweeper_run_once(self, session_factory, seed, hold_manager):
        await _hold(hold_manager, seed, at(10), at(11))
        async with session_factory() as session:
            await session.execute(
                BookingHold.__table__.update().values(expires_at=utcnow() - timedelta(seconds=1))
            )
            await session.commit()

        sweeper = HoldSweeper(hold_manager, interval_seconds=0.01)
        assert await sweeper.run_once() == 1
        assert await _count(session_factory, BookingHold) == 0

    async def test_sweeper_survives_errors(self, hold_manager):
        calls = []

        async def failing_cleanup(now=None):
            calls.append(now)
            raise RuntimeError("boom")

        hold_manager.cleanup_expired_holds = failing_cleanup
        sweeper = HoldSweeper(hold_manager, interval_seconds=0.01)
        sweeper.start()
        await asyncio.sleep(0.05)
        assert sweeper.running
        await sweeper.stop()
        assert len(calls) >= 2
        assert not sweeper.running
