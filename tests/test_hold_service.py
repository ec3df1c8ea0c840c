"""
Tests for the conflict resolver: admission, rejection and check-in
conversion, including concurrent admission races.
"""

import asyncio

import pytest
from sqlalchemy import func, select

from app.core.exceptions import (
    CapacityExceededError,
    DuplicateHoldError,
    InvalidTransitionError,
    NotFoundError,
    StorageConflictError,
    ValidationError,
)
from app.domain.lifecycle import ReservationStatus
from app.domain.timewindow import TimeWindow
from app.models.reservation import Reservation
from app.schemas.zone import ZoneCreate
from app.services import hold_service, ledger_service, reservation_service, zone_service
from conftest import T0, ZONE_BOUNDARY, at, make_zone


async def hold(session_factory, user_id, zone_id, start, end, now=T0, slot_id=None, arrival=False):
    async with session_factory() as db:
        return await hold_service.request_hold(
            db,
            user_id=user_id,
            zone_id=zone_id,
            window_start=start,
            window_end=end,
            now=now,
            slot_id=slot_id,
            arrival=arrival,
        )


async def reservation_count(session_factory, **filters) -> int:
    async with session_factory() as db:
        query = select(func.count(Reservation.id))
        for column, value in filters.items():
            query = query.where(getattr(Reservation, column) == value)
        return (await db.execute(query)).scalar_one()


# ---- Admission and rejection -------------------------------------------------

@pytest.mark.asyncio
async def test_slot_hold_fills_single_capacity_zone(session_factory, single_zone):
    """A slot-level hold consumes zone capacity; an overlapping zone hold is rejected."""
    outcome = await hold(session_factory, "user-a", single_zone.id, at(10), at(70), slot_id="A1")
    assert outcome.reservation.status == ReservationStatus.PENDING.value
    assert outcome.converted is False

    with pytest.raises(CapacityExceededError):
        await hold(session_factory, "user-b", single_zone.id, at(30), at(40))

    assert await reservation_count(session_factory, zone_id=single_zone.id) == 1


@pytest.mark.asyncio
async def test_capacity_counts_overlapping_holds_only(session_factory, pair_zone):
    await hold(session_factory, "user-a", pair_zone.id, at(10), at(70))
    await hold(session_factory, "user-b", pair_zone.id, at(20), at(30))

    with pytest.raises(CapacityExceededError):
        await hold(session_factory, "user-c", pair_zone.id, at(25), at(26))

    # [30, 40) only touches user-b's [20, 30), so one unit is free
    outcome = await hold(session_factory, "user-d", pair_zone.id, at(30), at(40))
    assert outcome.reservation.status == "pending"


@pytest.mark.asyncio
async def test_past_start_is_rejected_without_writing(session_factory, pair_zone):
    with pytest.raises(ValidationError):
        await hold(session_factory, "user-a", pair_zone.id, at(-10), at(50))

    assert await reservation_count(session_factory) == 0


@pytest.mark.asyncio
async def test_inverted_window_is_rejected(session_factory, pair_zone):
    with pytest.raises(ValidationError):
        await hold(session_factory, "user-a", pair_zone.id, at(60), at(10))


@pytest.mark.asyncio
async def test_ended_window_is_rejected(session_factory, pair_zone):
    with pytest.raises(ValidationError):
        await hold(session_factory, "user-a", pair_zone.id, at(-60), at(-1), arrival=True)


@pytest.mark.asyncio
async def test_arrival_start_must_be_near_now(session_factory, pair_zone):
    with pytest.raises(ValidationError):
        await hold(session_factory, "user-a", pair_zone.id, at(30), at(90), arrival=True)


@pytest.mark.asyncio
async def test_unknown_zone(session_factory):
    with pytest.raises(NotFoundError):
        await hold(session_factory, "user-a", 9999, at(10), at(70))


@pytest.mark.asyncio
async def test_unknown_slot(session_factory, pair_zone):
    with pytest.raises(NotFoundError):
        await hold(session_factory, "user-a", pair_zone.id, at(10), at(70), slot_id="Z9")


@pytest.mark.asyncio
async def test_inactive_zone_is_rejected(session_factory):
    async with session_factory() as db:
        zone = await zone_service.create_zone(
            db, ZoneCreate(name="Closed", boundary=ZONE_BOUNDARY, capacity=3, is_active=False)
        )

    with pytest.raises(ValidationError):
        await hold(session_factory, "user-a", zone.id, at(10), at(70))


@pytest.mark.asyncio
async def test_slot_is_exclusive(session_factory, pair_zone):
    await hold(session_factory, "user-a", pair_zone.id, at(10), at(70), slot_id="A1")

    with pytest.raises(CapacityExceededError):
        await hold(session_factory, "user-b", pair_zone.id, at(30), at(40), slot_id="A1")

    outcome = await hold(session_factory, "user-b", pair_zone.id, at(30), at(40), slot_id="A2")
    assert outcome.reservation.slot_id == "A2"


# ---- One live hold per user per zone -----------------------------------------

@pytest.mark.asyncio
async def test_duplicate_hold_reports_existing_reservation(session_factory, pair_zone):
    first = await hold(session_factory, "user-a", pair_zone.id, at(10), at(70))

    with pytest.raises(DuplicateHoldError) as exc_info:
        await hold(session_factory, "user-a", pair_zone.id, at(100), at(160))

    assert exc_info.value.reservation_id == first.reservation.id


@pytest.mark.asyncio
async def test_same_user_may_hold_in_different_zones(session_factory, pair_zone, single_zone):
    await hold(session_factory, "user-a", pair_zone.id, at(10), at(70))
    outcome = await hold(session_factory, "user-a", single_zone.id, at(10), at(70))
    assert outcome.reservation.zone_id == single_zone.id


@pytest.mark.asyncio
async def test_cancelled_hold_frees_the_user_and_the_capacity(session_factory, single_zone):
    first = await hold(session_factory, "user-a", single_zone.id, at(10), at(70))
    async with session_factory() as db:
        await reservation_service.cancel(db, first.reservation.id, "user-a", T0)

    second = await hold(session_factory, "user-a", single_zone.id, at(10), at(70))
    assert second.reservation.id != first.reservation.id
    assert await reservation_count(session_factory, user_id="user-a") == 2


# ---- Check-in conversion -----------------------------------------------------

@pytest.mark.asyncio
async def test_arrival_converts_own_pending_hold(session_factory, pair_zone):
    pending = await hold(session_factory, "user-a", pair_zone.id, at(5), at(65))

    outcome = await hold(session_factory, "user-a", pair_zone.id, at(6), at(65), now=at(6), arrival=True)

    assert outcome.converted is True
    assert outcome.reservation.id == pending.reservation.id
    assert outcome.reservation.status == ReservationStatus.ACTIVE.value
    assert outcome.reservation.activated_at == at(6)
    assert await reservation_count(session_factory, user_id="user-a") == 1


@pytest.mark.asyncio
async def test_arrival_on_active_hold_is_idempotent(session_factory, pair_zone):
    first = await hold(session_factory, "user-a", pair_zone.id, at(5), at(65))
    await hold(session_factory, "user-a", pair_zone.id, at(6), at(65), now=at(6), arrival=True)

    again = await hold(session_factory, "user-a", pair_zone.id, at(7), at(65), now=at(7), arrival=True)

    assert again.converted is True
    assert again.reservation.id == first.reservation.id
    assert again.reservation.activated_at == at(6)


@pytest.mark.asyncio
async def test_arrival_without_prior_hold_occupies_immediately(session_factory, pair_zone):
    outcome = await hold(session_factory, "user-a", pair_zone.id, T0, at(60), slot_id="A1", arrival=True)

    assert outcome.converted is False
    assert outcome.reservation.status == ReservationStatus.ACTIVE.value
    assert outcome.reservation.activated_at == T0


@pytest.mark.asyncio
async def test_arrival_does_not_convert_a_non_overlapping_hold(session_factory, pair_zone):
    await hold(session_factory, "user-a", pair_zone.id, at(120), at(180))

    with pytest.raises(DuplicateHoldError):
        await hold(session_factory, "user-a", pair_zone.id, T0, at(60), arrival=True)


@pytest.mark.asyncio
async def test_early_arrival_is_refused(session_factory, pair_zone):
    """The pending window has not started yet, so check-in is not legal."""
    await hold(session_factory, "user-a", pair_zone.id, at(30), at(90))

    with pytest.raises(InvalidTransitionError):
        await hold(session_factory, "user-a", pair_zone.id, T0, at(60), arrival=True)


@pytest.mark.asyncio
async def test_arrival_at_another_slot_does_not_convert(session_factory, pair_zone):
    pending = await hold(session_factory, "user-a", pair_zone.id, at(5), at(65), slot_id="A1")

    with pytest.raises(DuplicateHoldError) as exc_info:
        await hold(session_factory, "user-a", pair_zone.id, at(6), at(65), now=at(6), slot_id="A2", arrival=True)
    assert exc_info.value.reservation_id == pending.reservation.id
    assert await reservation_count(session_factory, status="pending") == 1

    outcome = await hold(session_factory, "user-a", pair_zone.id, at(6), at(65), now=at(6), slot_id="A1", arrival=True)
    assert outcome.converted is True
    assert outcome.reservation.slot_id == "A1"


@pytest.mark.asyncio
async def test_ended_hold_is_expired_instead_of_blocking(session_factory, pair_zone):
    """The sweeper has not reached the old hold yet; a new request still goes through."""
    old = await hold(session_factory, "user-a", pair_zone.id, at(10), at(60))

    outcome = await hold(session_factory, "user-a", pair_zone.id, at(70), at(130), now=at(61))

    assert outcome.reservation.id != old.reservation.id
    assert outcome.reservation.status == ReservationStatus.PENDING.value
    async with session_factory() as db:
        previous = await reservation_service.get_reservation(db, old.reservation.id, "user-a")
    assert previous.status == ReservationStatus.EXPIRED.value
    assert previous.expired_at == at(61)


# ---- Concurrent admission ----------------------------------------------------

async def _race(session_factory, requests):
    return await asyncio.gather(
        *(hold(session_factory, *request) for request in requests),
        return_exceptions=True,
    )


@pytest.mark.asyncio
async def test_concurrent_requests_for_last_unit_admit_exactly_one(session_factory, single_zone):
    results = await _race(
        session_factory,
        [(f"user-{i}", single_zone.id, at(10), at(70)) for i in range(10)],
    )

    admitted = [r for r in results if isinstance(r, hold_service.HoldOutcome)]
    rejected = [r for r in results if isinstance(r, CapacityExceededError)]
    assert len(admitted) == 1
    assert len(rejected) == 9

    async with session_factory() as db:
        snapshot = await ledger_service.window_snapshot(db, single_zone, TimeWindow(at(10), at(70)))
    assert snapshot.consumed_count == 1


@pytest.mark.asyncio
async def test_concurrent_requests_never_exceed_capacity(session_factory):
    zone = await make_zone(session_factory, "Busy", capacity=3)

    results = await _race(
        session_factory,
        [(f"user-{i}", zone.id, at(10), at(70)) for i in range(8)],
    )

    admitted = [r for r in results if isinstance(r, hold_service.HoldOutcome)]
    assert 1 <= len(admitted) <= 3
    assert all(
        isinstance(r, (hold_service.HoldOutcome, CapacityExceededError)) for r in results
    )
    assert await reservation_count(session_factory, zone_id=zone.id) == len(admitted)


@pytest.mark.asyncio
async def test_concurrent_requests_from_one_user_admit_one_hold(session_factory, pair_zone):
    results = await _race(
        session_factory,
        [("user-a", pair_zone.id, at(10 + i), at(70)) for i in range(5)],
    )

    admitted = [r for r in results if isinstance(r, hold_service.HoldOutcome)]
    duplicates = [r for r in results if isinstance(r, DuplicateHoldError)]
    assert len(admitted) == 1
    assert len(duplicates) == 4
    assert await reservation_count(session_factory, user_id="user-a") == 1


# ---- Bounded retry on storage conflicts --------------------------------------

def conflicting_admission(monkeypatch, failures, duplicate=False):
    """Make the first `failures` admission attempts lose a storage race."""
    real_admit = hold_service._admit_once
    calls = []

    async def admit(*args):
        calls.append(args)
        if len(calls) <= failures:
            raise StorageConflictError("Zone changed during admission", duplicate=duplicate)
        return await real_admit(*args)

    monkeypatch.setattr(hold_service, "_admit_once", admit)
    return calls


@pytest.mark.asyncio
async def test_version_conflict_is_retried(monkeypatch, session_factory, pair_zone):
    calls = conflicting_admission(monkeypatch, failures=1)

    outcome = await hold(session_factory, "user-a", pair_zone.id, at(10), at(70))

    assert len(calls) == 2
    assert outcome.reservation.status == ReservationStatus.PENDING.value
    assert await reservation_count(session_factory) == 1


@pytest.mark.asyncio
async def test_exhausted_retries_report_high_demand(monkeypatch, session_factory, pair_zone):
    attempts = hold_service.settings.MAX_ADMISSION_ATTEMPTS
    calls = conflicting_admission(monkeypatch, failures=attempts)

    with pytest.raises(CapacityExceededError, match="high demand"):
        await hold(session_factory, "user-a", pair_zone.id, at(10), at(70))

    assert len(calls) == attempts
    assert await reservation_count(session_factory) == 0


@pytest.mark.asyncio
async def test_exhausted_uniqueness_conflicts_report_duplicate(monkeypatch, session_factory, pair_zone):
    attempts = hold_service.settings.MAX_ADMISSION_ATTEMPTS
    calls = conflicting_admission(monkeypatch, failures=attempts, duplicate=True)

    with pytest.raises(DuplicateHoldError):
        await hold(session_factory, "user-a", pair_zone.id, at(10), at(70))

    assert len(calls) == attempts
    assert await reservation_count(session_factory) == 0
