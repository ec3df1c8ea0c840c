"""
Reservation state machine backed by the store.

CONCURRENCY STRATEGY: Compare-and-Set on status
===============================================

Problem:
  The expiry sweeper, the conflict resolver's check-in conversion and user
  cancellations all mutate the same rows without an in-process lock.
  A read-then-assign would let two actors both "win" the same reservation.

Solution:
  Every transition is a single conditional UPDATE:

    UPDATE reservations SET status = :target, <stamp> = :now
    WHERE id = :id AND status = :observed

  If rows_affected == 0 somebody else moved the record first. We re-read it:
  - already in the target status -> idempotent success (no change)
  - any other status             -> evaluate the new status from scratch

  Retrying a transition that has already happened therefore succeeds
  without touching the row, which is what makes client retries after a
  transport timeout safe. Terminal statuses have no outgoing edges, so a
  terminal record can never change again.
"""

from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import InvalidTransitionError, NotFoundError, StorageConflictError
from app.core.logging import get_logger
from app.core.metrics import invalid_transitions, record_transition
from app.domain.lifecycle import ReservationStatus, can_transition
from app.domain.timewindow import is_expired, is_within
from app.models.reservation import Reservation

logger = get_logger(__name__)

MAX_CAS_ATTEMPTS = 3

# Audit column stamped with `now` when the status is reached
_STAMP_COLUMNS = {
    ReservationStatus.ACTIVE: "activated_at",
    ReservationStatus.COMPLETED: "completed_at",
    ReservationStatus.CANCELLED: "cancelled_at",
    ReservationStatus.EXPIRED: "expired_at",
}

Guard = Callable[[Reservation, datetime], Optional[str]]


async def _load(db: AsyncSession, reservation_id: int) -> Reservation:
    result = await db.execute(
        select(Reservation)
        .where(Reservation.id == reservation_id)
        .execution_options(populate_existing=True)
    )
    reservation = result.unique().scalar_one_or_none()
    if reservation is None:
        raise NotFoundError(f"Reservation {reservation_id} not found")
    return reservation


def _refuse(reservation: Reservation, target: ReservationStatus, reason: str) -> InvalidTransitionError:
    invalid_transitions.inc()
    logger.warning(
        "reservation_transition_refused",
        reservation_id=reservation.id,
        current=reservation.status,
        target=target.value,
        reason=reason,
    )
    return InvalidTransitionError(reason, current=reservation.status, target=target.value)


async def transition(
    db: AsyncSession,
    reservation_id: int,
    target: ReservationStatus,
    now: datetime,
    guard: Optional[Guard] = None,
) -> tuple[Reservation, bool]:
    """
    Move a reservation to `target` atomically.

    Returns (reservation, changed). `changed` is False when the reservation
    was already in `target` (idempotent retry). Raises InvalidTransitionError
    when the lifecycle table or `guard` forbids the move.
    """
    for attempt in range(1, MAX_CAS_ATTEMPTS + 1):
        reservation = await _load(db, reservation_id)
        current = reservation.lifecycle_status

        if current == target:
            return reservation, False

        if not can_transition(current, target):
            raise _refuse(
                reservation, target,
                f"Cannot move reservation from {current.value} to {target.value}",
            )

        if guard is not None:
            reason = guard(reservation, now)
            if reason:
                raise _refuse(reservation, target, reason)

        values = {"status": target.value, "updated_at": now}
        stamp = _STAMP_COLUMNS.get(target)
        if stamp:
            values[stamp] = now

        result = await db.execute(
            update(Reservation)
            .where(Reservation.id == reservation_id, Reservation.status == current.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            logger.info(
                "reservation_transition_retry",
                reservation_id=reservation_id,
                attempt=attempt,
                observed=current.value,
                target=target.value,
            )
            await db.rollback()
            continue

        await db.commit()
        reservation = await _load(db, reservation_id)
        record_transition(target.value)
        logger.info(
            "reservation_transition",
            reservation_id=reservation_id,
            from_status=current.value,
            to_status=target.value,
            user_id=reservation.user_id,
            zone_id=reservation.zone_id,
        )
        return reservation, True

    raise StorageConflictError(
        f"Reservation {reservation_id} kept changing underneath the transition to {target.value}"
    )


def _within_window(reservation: Reservation, now: datetime) -> Optional[str]:
    if not is_within(now, reservation.window_start, reservation.window_end):
        return "Check-in is only possible inside the reservation window"
    return None


def _window_over(reservation: Reservation, now: datetime) -> Optional[str]:
    if not is_expired(reservation.window_end, now):
        return "Reservation window has not ended yet"
    return None


async def get_reservation(
    db: AsyncSession,
    reservation_id: int,
    requester_id: str,
    is_admin: bool = False,
) -> Reservation:
    """Fetch a reservation visible to the requester (owner or admin)."""
    reservation = await _load(db, reservation_id)
    if not is_admin and reservation.user_id != requester_id:
        # Same answer as a missing id: other users' holds are not disclosed
        raise NotFoundError(f"Reservation {reservation_id} not found")
    return reservation


async def cancel(
    db: AsyncSession,
    reservation_id: int,
    requester_id: str,
    now: datetime,
    is_admin: bool = False,
) -> Reservation:
    """
    Cancel a pending or active reservation.
    Capacity is released implicitly: the ledger only counts live statuses.
    """
    await get_reservation(db, reservation_id, requester_id, is_admin)
    reservation, _ = await transition(db, reservation_id, ReservationStatus.CANCELLED, now)
    return reservation


async def activate(db: AsyncSession, reservation_id: int, now: datetime) -> tuple[Reservation, bool]:
    """PENDING -> ACTIVE while `now` is inside the window."""
    return await transition(db, reservation_id, ReservationStatus.ACTIVE, now, guard=_within_window)


async def check_in(db: AsyncSession, reservation_id: int, now: datetime) -> Reservation:
    reservation, _ = await activate(db, reservation_id, now)
    return reservation


async def expire(db: AsyncSession, reservation_id: int, now: datetime) -> tuple[Reservation, bool]:
    """PENDING/ACTIVE -> EXPIRED once the window has ended."""
    return await transition(db, reservation_id, ReservationStatus.EXPIRED, now, guard=_window_over)


async def complete(
    db: AsyncSession,
    reservation_id: int,
    requester_id: str,
    now: datetime,
    is_admin: bool = False,
) -> Reservation:
    """Check-out: ACTIVE -> COMPLETED."""
    await get_reservation(db, reservation_id, requester_id, is_admin)
    reservation, _ = await transition(db, reservation_id, ReservationStatus.COMPLETED, now)
    return reservation


async def list_user_reservations(db: AsyncSession, user_id: str) -> list[Reservation]:
    """All reservations of a user, every status, most recent window end first."""
    result = await db.execute(
        select(Reservation)
        .where(Reservation.user_id == user_id)
        .order_by(Reservation.window_end.desc(), Reservation.id.desc())
    )
    return list(result.unique().scalars().all())
