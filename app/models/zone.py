"""
Zone model: a bounded area with a fixed total capacity.

Key design decisions:
- No `available` column. Availability is always recomputed from live
  reservations (see ledger_service); a stored counter drifts under
  concurrent writes and expiry.
- `version` is bumped by every admission into the zone. Admissions update it
  with `WHERE version = :seen`, so two concurrent admissions cannot both
  commit against the same capacity snapshot (optimistic locking).
"""

from sqlalchemy import Boolean, CheckConstraint, Column, Integer, JSON, String
from sqlalchemy.orm import relationship

from app.db.base import Base, TimestampMixin


class Zone(Base, TimestampMixin):
    __tablename__ = "zones"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, unique=True)
    boundary = Column(JSON, nullable=False, default=list)  # ordered ring of {"lat", "lng"}
    capacity = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    # Optimistic locking version counter
    version = Column(Integer, nullable=False, default=1)

    slots = relationship(
        "Slot",
        back_populates="zone",
        lazy="selectin",
        order_by="Slot.position",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("capacity >= 1", name="check_zone_capacity_positive"),
    )

    def __repr__(self) -> str:
        return f"<Zone(id={self.id}, name={self.name}, capacity={self.capacity})>"
