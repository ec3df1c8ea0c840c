"""
Zone service: read projections over zones and slots, plus the
administrative provisioning used by the zone-management collaborator.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError, ValidationError
from app.core.logging import get_logger
from app.domain.lifecycle import ReservationStatus
from app.domain.timewindow import TimeWindow
from app.models.slot import Slot
from app.models.zone import Zone
from app.schemas.zone import ZoneCreate
from app.services import ledger_service
from app.services.ledger_service import CapacitySnapshot

logger = get_logger(__name__)


async def create_zone(db: AsyncSession, zone_data: ZoneCreate) -> Zone:
    """Provision a zone and its slots."""
    slot_ids = [slot.slot_id for slot in zone_data.slots]
    if len(slot_ids) != len(set(slot_ids)):
        raise ValidationError("Slot ids must be unique within a zone")

    zone = Zone(
        name=zone_data.name,
        boundary=[point.model_dump() for point in zone_data.boundary],
        capacity=zone_data.capacity,
        is_active=zone_data.is_active,
        slots=[
            Slot(
                slot_id=slot.slot_id,
                tag=slot.tag,
                position=position,
                geometry=slot.geometry.model_dump(exclude_none=True) if slot.geometry else None,
            )
            for position, slot in enumerate(zone_data.slots)
        ],
    )
    db.add(zone)
    try:
        await db.flush()
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ValidationError(f"Zone name '{zone_data.name}' is already in use") from exc

    logger.info("zone_created", zone_id=zone.id, name=zone.name, capacity=zone.capacity, slots=len(slot_ids))
    return await get_zone(db, zone.id)


async def get_zone(db: AsyncSession, zone_id: int) -> Zone:
    result = await db.execute(
        select(Zone).where(Zone.id == zone_id).execution_options(populate_existing=True)
    )
    zone = result.scalar_one_or_none()
    if not zone:
        raise NotFoundError(f"Zone {zone_id} not found")
    return zone


async def update_capacity(db: AsyncSession, zone_id: int, capacity: int) -> Zone:
    """
    Administrative capacity edit. Bumps the zone version so in-flight
    admissions replay against the new capacity.
    Existing holds are never revoked by a shrink; the zone just admits
    nothing until live holds drop below the new capacity.
    """
    await get_zone(db, zone_id)
    await db.execute(
        update(Zone)
        .where(Zone.id == zone_id)
        .values(capacity=capacity, version=Zone.version + 1)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    logger.info("zone_capacity_updated", zone_id=zone_id, capacity=capacity)
    return await get_zone(db, zone_id)


async def list_zones(db: AsyncSession) -> list[Zone]:
    result = await db.execute(select(Zone).order_by(Zone.name))
    return list(result.scalars().all())


async def zone_summary(
    db: AsyncSession,
    zone_id: int,
    now: datetime,
    window: Optional[TimeWindow] = None,
) -> CapacitySnapshot:
    """Current-instant view by default, window view when `window` is given."""
    zone = await get_zone(db, zone_id)
    if window is None:
        return await ledger_service.current_snapshot(db, zone, now)
    if not window.is_valid:
        raise ValidationError("Window start must be before window end")
    return await ledger_service.window_snapshot(db, zone, window)


async def zone_overviews(db: AsyncSession, now: datetime) -> list[tuple[Zone, CapacitySnapshot]]:
    zones = await list_zones(db)
    return [(zone, await ledger_service.current_snapshot(db, zone, now)) for zone in zones]


_SLOT_STATES = {
    ReservationStatus.PENDING: "reserved",
    ReservationStatus.ACTIVE: "occupied",
}


async def slot_statuses(db: AsyncSession, zone_id: int, now: datetime) -> list[dict]:
    """Per-slot occupancy at `now`, derived from live holds."""
    zone = await get_zone(db, zone_id)
    occupancy = await ledger_service.slot_occupancy(db, zone_id, now)
    return [
        {
            "slot_id": slot.slot_id,
            "tag": slot.tag,
            "occupied": slot.slot_id in occupancy,
            "state": _SLOT_STATES.get(occupancy.get(slot.slot_id), "free"),
        }
        for slot in zone.slots
    ]
