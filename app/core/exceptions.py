"""
Domain error hierarchy for the reservation core.

Every error carries a stable ``kind`` (safe for clients to branch on) and a
human-readable ``reason``. The API layer maps them to HTTP responses in one
place (see ``app.main``); services never raise HTTPException directly.
"""

from typing import Optional


class ReservationError(Exception):
    """Base class for every error raised by the reservation core."""

    kind = "reservation_error"
    status_code = 400

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason

    def to_dict(self) -> dict:
        return {"error": self.kind, "detail": self.reason}


class ValidationError(ReservationError):
    """Malformed or out-of-policy input. Nothing was written."""

    kind = "validation_error"
    status_code = 422


class DuplicateHoldError(ReservationError):
    """The user already holds a live reservation in this zone.

    Attributes:
        reservation_id: The id of the existing live reservation, when known.
    """

    kind = "duplicate_hold"
    status_code = 409

    def __init__(self, reason: str, reservation_id: Optional[int] = None):
        super().__init__(reason)
        self.reservation_id = reservation_id


class CapacityExceededError(ReservationError):
    """The zone or slot has no free capacity for the requested window."""

    kind = "capacity_exceeded"
    status_code = 409


class NotFoundError(ReservationError):
    kind = "not_found"
    status_code = 404


class InvalidTransitionError(ReservationError):
    """Raised when a lifecycle transition is not legal from the current status.

    Attributes:
        current: Status the reservation was in when the transition was refused.
        target: Status the caller tried to reach.
    """

    kind = "invalid_transition"
    status_code = 409

    def __init__(self, reason: str, current: Optional[str] = None, target: Optional[str] = None):
        super().__init__(reason)
        self.current = current
        self.target = target


class StorageConflictError(ReservationError):
    """A concurrent write won the race for the same rows.

    Admission retries on this; it only reaches a caller when a non-admission
    path hits it.

    Attributes:
        duplicate: True when the conflict came from the one-live-hold-per-user
            uniqueness constraint rather than the zone version counter.
    """

    kind = "storage_conflict"
    status_code = 409

    def __init__(self, reason: str, duplicate: bool = False):
        super().__init__(reason)
        self.duplicate = duplicate


class ForbiddenError(ReservationError):
    kind = "forbidden"
    status_code = 403
