"""
Reservation (hold) model: a user's claim on one unit of zone or slot
capacity for a bounded time window.

Key design decisions:
- Partial unique index on (user_id, zone_id) restricted to live statuses.
  This is what makes "one live hold per user per zone" race-proof; the
  service-level lookup is only there to produce a friendly error.
- Terminal records are never deleted; they are the audit history.
- Status changes go through compare-and-set UPDATEs in reservation_service,
  never through plain attribute assignment.
"""

from sqlalchemy import CheckConstraint, Column, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import relationship

from app.db.base import Base, TimestampMixin
from app.db.types import UTCDateTime
from app.domain.lifecycle import ReservationStatus
from app.domain.timewindow import TimeWindow

_LIVE_PREDICATE = text("status IN ('pending', 'active')")


class Reservation(Base, TimestampMixin):
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    zone_id = Column(Integer, ForeignKey("zones.id"), nullable=False)
    slot_id = Column(String(64), nullable=True)  # None for zone-level holds
    window_start = Column(UTCDateTime(), nullable=False)
    window_end = Column(UTCDateTime(), nullable=False)
    status = Column(String(20), nullable=False, default=ReservationStatus.PENDING.value)

    activated_at = Column(UTCDateTime(), nullable=True)
    completed_at = Column(UTCDateTime(), nullable=True)
    cancelled_at = Column(UTCDateTime(), nullable=True)
    expired_at = Column(UTCDateTime(), nullable=True)

    zone = relationship("Zone", lazy="joined")

    __table_args__ = (
        CheckConstraint("window_start < window_end", name="check_reservation_window"),
        CheckConstraint(
            "status IN ('pending', 'active', 'cancelled', 'expired', 'completed')",
            name="check_reservation_status",
        ),
        Index(
            "uq_reservations_user_zone_live",
            "user_id",
            "zone_id",
            unique=True,
            postgresql_where=_LIVE_PREDICATE,
            sqlite_where=_LIVE_PREDICATE,
        ),
        # Ledger queries: live holds of one zone
        Index("ix_reservations_zone_status", "zone_id", "status"),
        # Sweeper queries: live holds ordered by end of window
        Index("ix_reservations_status_window_end", "status", "window_end"),
    )

    @property
    def window(self) -> TimeWindow:
        return TimeWindow(self.window_start, self.window_end)

    @property
    def lifecycle_status(self) -> ReservationStatus:
        return ReservationStatus(self.status)

    @property
    def zone_name(self):
        return self.zone.name if self.zone is not None else None

    @property
    def slot_tag(self):
        if self.slot_id is None or self.zone is None:
            return None
        for slot in self.zone.slots:
            if slot.slot_id == self.slot_id:
                return slot.tag
        return self.slot_id

    def __repr__(self) -> str:
        return (
            f"<Reservation(id={self.id}, user={self.user_id}, zone={self.zone_id}, "
            f"slot={self.slot_id}, status={self.status})>"
        )
