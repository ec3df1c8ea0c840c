"""
Arrival confirmation: the caller-side flow in front of the check-in
conversion. It asks the geofence collaborator whether the reported position
lies inside the slot (or zone) and only then issues an arrival hold request.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError, ValidationError
from app.core.logging import get_logger
from app.domain.timewindow import is_expired
from app.services import hold_service, zone_service
from app.services.geofence import GeofencePredicate
from app.services.hold_service import HoldOutcome

logger = get_logger(__name__)


async def confirm_arrival(
    db: AsyncSession,
    geofence: GeofencePredicate,
    user_id: str,
    zone_id: int,
    lat: float,
    lng: float,
    window_end: datetime,
    now: datetime,
    slot_id: Optional[str] = None,
) -> HoldOutcome:
    zone = await zone_service.get_zone(db, zone_id)

    # Arrival for an existing slot hold is checked against that slot
    held = await hold_service.find_live_hold(db, user_id, zone_id)
    if (
        slot_id is None
        and held is not None
        and held.slot_id is not None
        and not is_expired(held.window_end, now)
    ):
        slot_id = held.slot_id

    geometry = zone.boundary
    if slot_id is not None:
        slot = next((s for s in zone.slots if s.slot_id == slot_id), None)
        if slot is None:
            raise NotFoundError(f"Slot {slot_id} not found in zone {zone_id}")
        geometry = slot.geometry or zone.boundary

    if not geofence.contains(geometry, lat, lng):
        logger.warning("arrival_outside_geofence", user_id=user_id, zone_id=zone_id, slot_id=slot_id)
        raise ValidationError("Reported position is outside the reserved area")

    return await hold_service.request_hold(
        db,
        user_id=user_id,
        zone_id=zone_id,
        window_start=now,
        window_end=window_end,
        now=now,
        slot_id=slot_id,
        arrival=True,
    )
