"""
Pydantic schemas for hold (reservation) requests/responses.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from app.schemas.zone import GeoPoint


class HoldCreate(BaseModel):
    zone_id: int
    slot_id: Optional[str] = Field(None, min_length=1, max_length=64)
    window_start: datetime
    window_end: datetime
    # Immediate check-in semantics: the start may lie within the arrival grace of now
    arrival: bool = False


class ArrivalCreate(BaseModel):
    zone_id: int
    slot_id: Optional[str] = Field(None, min_length=1, max_length=64)
    location: GeoPoint
    window_end: datetime


class HoldResult(BaseModel):
    reservation_id: int
    status: str
    converted: bool = False


class ReservationResponse(BaseModel):
    id: int
    user_id: str
    zone_id: int
    zone_name: Optional[str] = None
    slot_id: Optional[str] = None
    slot_tag: Optional[str] = None
    window_start: datetime
    window_end: datetime
    status: str
    activated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ReservationAck(BaseModel):
    message: str
    reservation_id: int
    status: str


class SweepReport(BaseModel):
    expired: int
    activated: int
    failed: int
    skipped: bool = False
