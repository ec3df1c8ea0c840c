"""
Conflict resolver: admits, rejects or converts hold requests.

CONCURRENCY STRATEGY: Optimistic Locking with Retry
====================================================

Problem:
  Two users ask for the last unit of a zone at the same moment.
  Both count live holds, both see one unit free, both insert.
  Result: the zone is over capacity.

Solution:
  Every admission into a zone bumps the zone's `version` inside the same
  transaction that reads the live holds and inserts the new one:

  1. Read the zone and its current version
  2. Look up the caller's live hold in the zone (conversion / duplicate).
     A hold whose window already ended is expired on the spot.
     Arrival converts it only for the slot it names.
  3. Count overlapping live holds through the capacity ledger
  4. UPDATE zones SET version = version + 1
     WHERE id = :zone_id AND version = :seen_version
  5. INSERT the reservation and commit

  If step 4 affects no rows, a competing admission committed first. The
  whole sequence is rolled back and replayed against fresh state, up to
  MAX_ADMISSION_ATTEMPTS times. The replay usually fails cleanly with a
  capacity or duplicate error because the winner's hold is now visible.
  First committer wins; there is no other ordering.

  The partial unique index on (user_id, zone_id) for live statuses is the
  storage-level backstop for one-live-hold-per-user-per-zone. A violation
  surfaces as IntegrityError on insert and is treated like a version
  conflict.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.exceptions import (
    CapacityExceededError,
    DuplicateHoldError,
    InvalidTransitionError,
    NotFoundError,
    StorageConflictError,
    ValidationError,
)
from app.core.logging import get_logger
from app.core.metrics import admission_retries, hold_latency, record_hold_request
from app.domain.lifecycle import LIVE_STATUSES, ReservationStatus
from app.domain.timewindow import TimeWindow, ensure_utc, is_expired, is_future, is_near
from app.models.reservation import Reservation
from app.models.zone import Zone
from app.services import ledger_service, reservation_service

logger = get_logger(__name__)
settings = get_settings()


@dataclass(frozen=True)
class HoldOutcome:
    reservation: Reservation
    converted: bool = False


def validate_request(
    window: TimeWindow,
    now: datetime,
    arrival: bool,
    grace: timedelta,
) -> None:
    """Fail-fast input checks. Nothing touches the store before these pass."""
    if not window.is_valid:
        raise ValidationError("Window start must be before window end")

    if not is_future(window.end, now):
        raise ValidationError("Window end must be in the future")

    if arrival:
        if not is_near(window.start, now, grace):
            raise ValidationError(
                f"Arrival requests must start within {int(grace.total_seconds() // 60)} minutes of now"
            )
    elif not is_future(window.start, now):
        raise ValidationError("Window start must be in the future")


async def _load_zone(db: AsyncSession, zone_id: int) -> Zone:
    result = await db.execute(
        select(Zone).where(Zone.id == zone_id).execution_options(populate_existing=True)
    )
    zone = result.scalar_one_or_none()
    if zone is None:
        raise NotFoundError(f"Zone {zone_id} not found")
    return zone


async def find_live_hold(db: AsyncSession, user_id: str, zone_id: int) -> Optional[Reservation]:
    result = await db.execute(
        select(Reservation)
        .where(
            Reservation.user_id == user_id,
            Reservation.zone_id == zone_id,
            Reservation.status.in_([status.value for status in LIVE_STATUSES]),
        )
        .execution_options(populate_existing=True)
    )
    return result.unique().scalars().first()


async def _admit_once(
    db: AsyncSession,
    user_id: str,
    zone_id: int,
    slot_id: Optional[str],
    window: TimeWindow,
    now: datetime,
    arrival: bool,
) -> HoldOutcome:
    # Step 1: zone and the version we will compare against
    zone = await _load_zone(db, zone_id)
    if not zone.is_active:
        raise ValidationError(f"Zone {zone_id} is not accepting reservations")
    if slot_id is not None and slot_id not in {slot.slot_id for slot in zone.slots}:
        raise NotFoundError(f"Slot {slot_id} not found in zone {zone_id}")
    seen_version = zone.version
    capacity = zone.capacity

    # Step 2: the caller's live hold in this zone, if any
    existing = await find_live_hold(db, user_id, zone_id)
    if existing is not None and is_expired(existing.window_end, now):
        # Ended but not yet swept: expire it here instead of blocking the caller
        try:
            await reservation_service.expire(db, existing.id, now)
        except InvalidTransitionError as exc:
            raise StorageConflictError("Live hold changed during admission") from exc
        logger.info("hold_expired_on_admission", reservation_id=existing.id, user_id=user_id, zone_id=zone_id)
        existing = None

    if existing is not None:
        same_slot = slot_id is None or slot_id == existing.slot_id
        if arrival and same_slot and existing.window.overlaps(window):
            if existing.lifecycle_status == ReservationStatus.ACTIVE:
                return HoldOutcome(existing, converted=True)
            reservation = await reservation_service.check_in(db, existing.id, now)
            return HoldOutcome(reservation, converted=True)
        raise DuplicateHoldError(
            "You already hold a pending or active reservation in this zone",
            reservation_id=existing.id,
        )

    # Step 3: capacity for the requested window
    snapshot = await ledger_service.window_snapshot(db, zone, window)
    if snapshot.is_full:
        logger.warning(
            "hold_rejected_no_capacity",
            zone_id=zone_id,
            capacity=capacity,
            pending=snapshot.pending_count,
            active=snapshot.active_count,
        )
        raise CapacityExceededError(
            f"Zone is full for the requested window. Capacity: {capacity}, "
            f"held: {snapshot.consumed_count}"
        )

    if slot_id is not None:
        slot_snapshot = await ledger_service.window_snapshot(db, zone, window, slot_id=slot_id)
        if slot_snapshot.consumed_count > 0:
            logger.warning("hold_rejected_slot_taken", zone_id=zone_id, slot_id=slot_id)
            raise CapacityExceededError(f"Slot {slot_id} is already reserved for that time")

    # Step 4: optimistic lock on the zone
    bump = await db.execute(
        update(Zone)
        .where(Zone.id == zone_id, Zone.version == seen_version)
        .values(version=Zone.version + 1)
        .execution_options(synchronize_session=False)
    )
    if bump.rowcount == 0:
        raise StorageConflictError("Zone changed during admission")

    # Step 5: insert and commit
    status = ReservationStatus.ACTIVE if arrival else ReservationStatus.PENDING
    reservation = Reservation(
        user_id=user_id,
        zone=zone,
        slot_id=slot_id,
        window_start=window.start,
        window_end=window.end,
        status=status.value,
        activated_at=now if arrival else None,
        created_at=now,
        updated_at=now,
    )
    db.add(reservation)
    try:
        await db.flush()
        await db.commit()
    except IntegrityError as exc:
        raise StorageConflictError("Live hold already exists for this user and zone", duplicate=True) from exc

    return HoldOutcome(reservation)


async def request_hold(
    db: AsyncSession,
    user_id: str,
    zone_id: int,
    window_start: datetime,
    window_end: datetime,
    now: datetime,
    slot_id: Optional[str] = None,
    arrival: bool = False,
) -> HoldOutcome:
    """
    Admit a hold, convert the caller's own pending hold on arrival, or reject.
    Retries the whole admission up to MAX_ADMISSION_ATTEMPTS on storage conflicts.
    """
    started = time.perf_counter()
    now = ensure_utc(now)
    window = TimeWindow(window_start, window_end)
    grace = timedelta(minutes=settings.ARRIVAL_GRACE_MINUTES)

    try:
        validate_request(window, now, arrival, grace)
    except ValidationError:
        record_hold_request("invalid")
        raise

    last_conflict: Optional[StorageConflictError] = None
    try:
        for attempt in range(1, settings.MAX_ADMISSION_ATTEMPTS + 1):
            try:
                outcome = await _admit_once(db, user_id, zone_id, slot_id, window, now, arrival)
            except StorageConflictError as exc:
                last_conflict = exc
                admission_retries.inc()
                logger.info(
                    "hold_retry",
                    user_id=user_id,
                    zone_id=zone_id,
                    attempt=attempt,
                    reason="duplicate" if exc.duplicate else "version_conflict",
                )
                # Expire cached state so next attempt reads fresh data
                await db.rollback()
                continue
            except DuplicateHoldError:
                record_hold_request("duplicate")
                await db.rollback()
                raise
            except CapacityExceededError:
                record_hold_request("capacity")
                await db.rollback()
                raise
            except (ValidationError, NotFoundError, InvalidTransitionError):
                record_hold_request("invalid")
                await db.rollback()
                raise

            record_hold_request("converted" if outcome.converted else "admitted")
            logger.info(
                "hold_converted" if outcome.converted else "hold_admitted",
                reservation_id=outcome.reservation.id,
                user_id=user_id,
                zone_id=zone_id,
                slot_id=slot_id,
                status=outcome.reservation.status,
                attempt=attempt,
            )
            return outcome
    finally:
        hold_latency.observe(time.perf_counter() - started)

    if last_conflict is not None and last_conflict.duplicate:
        record_hold_request("duplicate")
        raise DuplicateHoldError("You already hold a pending or active reservation in this zone")

    record_hold_request("capacity")
    logger.warning("hold_rejected_contention", user_id=user_id, zone_id=zone_id)
    raise CapacityExceededError("Reservation failed due to high demand for this zone. Please try again.")
