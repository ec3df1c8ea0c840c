"""
Hold endpoints: request, arrive, list, cancel, check out.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user_id, get_is_admin, get_now
from app.db.session import get_db
from app.schemas.reservation import (
    ArrivalCreate,
    HoldCreate,
    HoldResult,
    ReservationAck,
    ReservationResponse,
)
from app.services import arrival_service, hold_service, reservation_service
from app.services.geofence import GeofencePredicate, get_geofence
from app.services.hold_service import HoldOutcome

router = APIRouter(prefix="/holds", tags=["Holds"])


def _hold_result(outcome: HoldOutcome, response: Response) -> HoldResult:
    if outcome.converted:
        response.status_code = status.HTTP_200_OK
    return HoldResult(
        reservation_id=outcome.reservation.id,
        status=outcome.reservation.status,
        converted=outcome.converted,
    )


@router.post("/", response_model=HoldResult, status_code=status.HTTP_201_CREATED)
async def request_hold_endpoint(
    hold_data: HoldCreate,
    response: Response,
    user_id: str = Depends(get_current_user_id),
    now: datetime = Depends(get_now),
    db: AsyncSession = Depends(get_db),
):
    """
    Request a zone-level hold, or a slot-level hold when slot_id is given.

    With `arrival` set, a caller who already holds a pending reservation
    covering now is checked in (200, same id) instead of getting a duplicate.
    Concurrent admissions into the same zone are resolved first-committer-wins.
    """
    outcome = await hold_service.request_hold(
        db,
        user_id=user_id,
        zone_id=hold_data.zone_id,
        window_start=hold_data.window_start,
        window_end=hold_data.window_end,
        now=now,
        slot_id=hold_data.slot_id,
        arrival=hold_data.arrival,
    )
    return _hold_result(outcome, response)


@router.post("/arrival", response_model=HoldResult, status_code=status.HTTP_201_CREATED)
async def confirm_arrival_endpoint(
    arrival: ArrivalCreate,
    response: Response,
    user_id: str = Depends(get_current_user_id),
    now: datetime = Depends(get_now),
    geofence: GeofencePredicate = Depends(get_geofence),
    db: AsyncSession = Depends(get_db),
):
    """Geofence-confirmed arrival: check in an existing hold or occupy now."""
    outcome = await arrival_service.confirm_arrival(
        db,
        geofence,
        user_id=user_id,
        zone_id=arrival.zone_id,
        lat=arrival.location.lat,
        lng=arrival.location.lng,
        window_end=arrival.window_end,
        now=now,
        slot_id=arrival.slot_id,
    )
    return _hold_result(outcome, response)


@router.get("/", response_model=list[ReservationResponse])
async def list_holds_endpoint(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """All of the caller's reservations, every status, latest window end first."""
    return await reservation_service.list_user_reservations(db, user_id)


@router.get("/{reservation_id}", response_model=ReservationResponse)
async def get_hold_endpoint(
    reservation_id: int,
    user_id: str = Depends(get_current_user_id),
    is_admin: bool = Depends(get_is_admin),
    db: AsyncSession = Depends(get_db),
):
    return await reservation_service.get_reservation(db, reservation_id, user_id, is_admin)


@router.delete("/{reservation_id}", response_model=ReservationAck)
async def cancel_hold_endpoint(
    reservation_id: int,
    user_id: str = Depends(get_current_user_id),
    is_admin: bool = Depends(get_is_admin),
    now: datetime = Depends(get_now),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a pending or active hold. Repeating a cancel is acknowledged again."""
    reservation = await reservation_service.cancel(db, reservation_id, user_id, now, is_admin)
    return ReservationAck(
        message="Reservation cancelled",
        reservation_id=reservation.id,
        status=reservation.status,
    )


@router.post("/{reservation_id}/checkout", response_model=ReservationAck)
async def checkout_hold_endpoint(
    reservation_id: int,
    user_id: str = Depends(get_current_user_id),
    is_admin: bool = Depends(get_is_admin),
    now: datetime = Depends(get_now),
    db: AsyncSession = Depends(get_db),
):
    """Check out of an active hold."""
    reservation = await reservation_service.complete(db, reservation_id, user_id, now, is_admin)
    return ReservationAck(
        message="Reservation completed",
        reservation_id=reservation.id,
        status=reservation.status,
    )
