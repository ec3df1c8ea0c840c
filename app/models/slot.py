"""
Slot model: a single addressable space inside a zone.

Slots are static once provisioned. Their occupancy is derived from live
reservations at query time and is never stored here.
"""

from sqlalchemy import Column, ForeignKey, Integer, JSON, String, UniqueConstraint
from sqlalchemy.orm import relationship

from app.db.base import Base, TimestampMixin


class Slot(Base, TimestampMixin):
    __tablename__ = "slots"

    id = Column(Integer, primary_key=True, index=True)
    zone_id = Column(Integer, ForeignKey("zones.id"), nullable=False, index=True)
    slot_id = Column(String(64), nullable=False)  # unique within the zone
    tag = Column(String(64), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    # {"type": "polygon", "ring": [...]} or {"type": "circle", "center": {...}, "radius_m": r}
    geometry = Column(JSON, nullable=True)

    zone = relationship("Zone", back_populates="slots")

    __table_args__ = (
        UniqueConstraint("zone_id", "slot_id", name="uq_slot_zone_slot_id"),
    )

    def __repr__(self) -> str:
        return f"<Slot(zone={self.zone_id}, slot_id={self.slot_id}, tag={self.tag})>"
