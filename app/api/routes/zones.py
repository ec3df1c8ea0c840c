"""
Zone endpoints: live capacity summaries, slot occupancy, provisioning.
Nothing here is cached; every read recomputes from live reservations.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_now, require_admin
from app.core.exceptions import ValidationError
from app.db.session import get_db
from app.domain.timewindow import TimeWindow
from app.schemas.zone import (
    SlotStatus,
    ZoneCapacityUpdate,
    ZoneCreate,
    ZoneOverview,
    ZoneResponse,
    ZoneSummary,
)
from app.services import zone_service
from app.services.ledger_service import CapacitySnapshot

router = APIRouter(prefix="/zones", tags=["Zones"])


def _summary_fields(snapshot: CapacitySnapshot) -> dict:
    return {
        "zone_id": snapshot.zone_id,
        "capacity": snapshot.capacity,
        "active_count": snapshot.active_count,
        "pending_count": snapshot.pending_count,
        "consumed_count": snapshot.consumed_count,
        "available": snapshot.available,
        "window_start": snapshot.window.start,
        "window_end": snapshot.window.end,
    }


@router.get("/", response_model=list[ZoneOverview])
async def list_zones_endpoint(
    now: datetime = Depends(get_now),
    db: AsyncSession = Depends(get_db),
):
    """All zones with live availability at the current instant."""
    overviews = await zone_service.zone_overviews(db, now)
    return [
        ZoneOverview(
            name=zone.name,
            is_active=zone.is_active,
            boundary=zone.boundary or [],
            **_summary_fields(snapshot),
        )
        for zone, snapshot in overviews
    ]


@router.post("/", response_model=ZoneResponse, status_code=status.HTTP_201_CREATED,
             dependencies=[Depends(require_admin)])
async def create_zone_endpoint(
    zone_data: ZoneCreate,
    db: AsyncSession = Depends(get_db),
):
    """Provision a zone with its slots. Requires the admin key."""
    return await zone_service.create_zone(db, zone_data)


@router.get("/{zone_id}", response_model=ZoneResponse)
async def get_zone_endpoint(zone_id: int, db: AsyncSession = Depends(get_db)):
    return await zone_service.get_zone(db, zone_id)


@router.patch("/{zone_id}/capacity", response_model=ZoneResponse,
              dependencies=[Depends(require_admin)])
async def update_capacity_endpoint(
    zone_id: int,
    body: ZoneCapacityUpdate,
    db: AsyncSession = Depends(get_db),
):
    return await zone_service.update_capacity(db, zone_id, body.capacity)


@router.get("/{zone_id}/summary", response_model=ZoneSummary)
async def zone_summary_endpoint(
    zone_id: int,
    window_start: Optional[datetime] = Query(None),
    window_end: Optional[datetime] = Query(None),
    now: datetime = Depends(get_now),
    db: AsyncSession = Depends(get_db),
):
    """
    Capacity summary. Without a window this is the current-instant view;
    with both bounds it is the window view used for admission decisions.
    """
    if (window_start is None) != (window_end is None):
        raise ValidationError("Provide both window_start and window_end, or neither")

    window = TimeWindow(window_start, window_end) if window_start is not None else None
    snapshot = await zone_service.zone_summary(db, zone_id, now, window)
    return ZoneSummary(**_summary_fields(snapshot))


@router.get("/{zone_id}/slots", response_model=list[SlotStatus])
async def slot_statuses_endpoint(
    zone_id: int,
    now: datetime = Depends(get_now),
    db: AsyncSession = Depends(get_db),
):
    """Per-slot occupancy right now (free / reserved / occupied)."""
    return await zone_service.slot_statuses(db, zone_id, now)
