"""
Capacity ledger: live projection of consumed vs. available capacity.

LIVE RECOMPUTATION
==================

Nothing here is cached or persisted. Every call counts the live (pending or
active) reservations of a zone whose window overlaps the target window:

  consumed  = pending + active
  available = max(0, capacity - consumed)

Pending and active holds are reported separately and never merged into one
opaque number. Both reduce availability: a future intent reserves capacity
for its own window.

Two views:
  - current-instant view: target window is the instant `now` (live slot
    colouring, zone summaries)
  - window view: target window is a requested interval (admission checks)

Because both views are plain reads, callers that need a stable answer
(admission) must run them inside the same transaction that writes.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.lifecycle import LIVE_STATUSES, ReservationStatus
from app.domain.timewindow import TimeWindow
from app.models.reservation import Reservation
from app.models.zone import Zone

_LIVE_VALUES = [status.value for status in LIVE_STATUSES]


@dataclass(frozen=True)
class CapacitySnapshot:
    zone_id: int
    capacity: int
    window: TimeWindow
    pending_count: int
    active_count: int

    @property
    def consumed_count(self) -> int:
        return self.pending_count + self.active_count

    @property
    def available(self) -> int:
        return max(0, self.capacity - self.consumed_count)

    @property
    def is_full(self) -> bool:
        return self.consumed_count >= self.capacity


def _live_overlapping(zone_id: int, window: TimeWindow):
    return (
        Reservation.zone_id == zone_id,
        Reservation.status.in_(_LIVE_VALUES),
        Reservation.window_start < window.end,
        Reservation.window_end > window.start,
    )


async def count_live_holds(
    db: AsyncSession,
    zone_id: int,
    window: TimeWindow,
    slot_id: Optional[str] = None,
) -> dict[ReservationStatus, int]:
    """Live holds overlapping `window`, grouped by status."""
    query = (
        select(Reservation.status, func.count(Reservation.id))
        .where(*_live_overlapping(zone_id, window))
        .group_by(Reservation.status)
    )
    if slot_id is not None:
        query = query.where(Reservation.slot_id == slot_id)

    rows = (await db.execute(query)).all()
    counts = {status: 0 for status in LIVE_STATUSES}
    for status, count in rows:
        counts[ReservationStatus(status)] = count
    return counts


async def window_snapshot(
    db: AsyncSession,
    zone: Zone,
    window: TimeWindow,
    slot_id: Optional[str] = None,
) -> CapacitySnapshot:
    """Window view. With `slot_id`, capacity is the single slot (always 1)."""
    counts = await count_live_holds(db, zone.id, window, slot_id)
    return CapacitySnapshot(
        zone_id=zone.id,
        capacity=1 if slot_id is not None else zone.capacity,
        window=window,
        pending_count=counts[ReservationStatus.PENDING],
        active_count=counts[ReservationStatus.ACTIVE],
    )


async def current_snapshot(db: AsyncSession, zone: Zone, now: datetime) -> CapacitySnapshot:
    """Current-instant view."""
    return await window_snapshot(db, zone, TimeWindow.instant(now))


async def slot_occupancy(db: AsyncSession, zone_id: int, now: datetime) -> dict[str, ReservationStatus]:
    """
    Map of slot_id -> status of the live hold covering `now`.
    Slots without an entry are free. An active hold wins over a pending one.
    """
    result = await db.execute(
        select(Reservation.slot_id, Reservation.status).where(
            *_live_overlapping(zone_id, TimeWindow.instant(now)),
            Reservation.slot_id.is_not(None),
        )
    )
    occupancy: dict[str, ReservationStatus] = {}
    for slot_id, status in result.all():
        status = ReservationStatus(status)
        if occupancy.get(slot_id) != ReservationStatus.ACTIVE:
            occupancy[slot_id] = status
    return occupancy
