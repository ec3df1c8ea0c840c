"""
Reservation lifecycle: statuses and the legal transition table.

    PENDING -> ACTIVE -> COMPLETED
    PENDING -> EXPIRED
    ACTIVE  -> EXPIRED
    PENDING | ACTIVE -> CANCELLED

Terminal statuses never transition again.
"""

import enum


class ReservationStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self not in LIVE_STATUSES


LIVE_STATUSES = frozenset({ReservationStatus.PENDING, ReservationStatus.ACTIVE})
TERMINAL_STATUSES = frozenset(set(ReservationStatus) - LIVE_STATUSES)

ALLOWED_TRANSITIONS: dict[ReservationStatus, frozenset[ReservationStatus]] = {
    ReservationStatus.PENDING: frozenset({
        ReservationStatus.ACTIVE,
        ReservationStatus.EXPIRED,
        ReservationStatus.CANCELLED,
    }),
    ReservationStatus.ACTIVE: frozenset({
        ReservationStatus.COMPLETED,
        ReservationStatus.EXPIRED,
        ReservationStatus.CANCELLED,
    }),
    ReservationStatus.CANCELLED: frozenset(),
    ReservationStatus.EXPIRED: frozenset(),
    ReservationStatus.COMPLETED: frozenset(),
}


def can_transition(current: ReservationStatus, target: ReservationStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[ReservationStatus(current)]


def sources_for(target: ReservationStatus) -> frozenset[ReservationStatus]:
    """Statuses from which ``target`` is reachable in one step."""
    return frozenset(
        status for status, targets in ALLOWED_TRANSITIONS.items() if target in targets
    )
