"""
Pydantic schemas for zone and slot requests/responses.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator


class GeoPoint(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class SlotGeometry(BaseModel):
    type: Literal["polygon", "circle"]
    ring: Optional[list[GeoPoint]] = None
    center: Optional[GeoPoint] = None
    radius_m: Optional[float] = Field(None, gt=0)

    @model_validator(mode="after")
    def check_shape(self):
        if self.type == "circle" and (self.center is None or self.radius_m is None):
            raise ValueError("Circle geometry needs center and radius_m")
        if self.type == "polygon" and (not self.ring or len(self.ring) < 3):
            raise ValueError("Polygon geometry needs a ring of at least 3 points")
        return self


class SlotCreate(BaseModel):
    slot_id: str = Field(..., min_length=1, max_length=64)
    tag: str = Field(..., min_length=1, max_length=64)
    geometry: Optional[SlotGeometry] = None


class ZoneCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    boundary: list[GeoPoint] = Field(default_factory=list)
    capacity: int = Field(..., ge=1, le=100000)
    is_active: bool = True
    slots: list[SlotCreate] = Field(default_factory=list)


class ZoneCapacityUpdate(BaseModel):
    capacity: int = Field(..., ge=1, le=100000)


class ZoneSummary(BaseModel):
    zone_id: int
    capacity: int
    active_count: int
    pending_count: int
    consumed_count: int
    available: int
    window_start: datetime
    window_end: datetime


class ZoneOverview(ZoneSummary):
    name: str
    is_active: bool
    boundary: list[GeoPoint]


class SlotStatus(BaseModel):
    slot_id: str
    tag: str
    occupied: bool
    state: Literal["free", "reserved", "occupied"]


class SlotResponse(BaseModel):
    slot_id: str
    tag: str
    geometry: Optional[SlotGeometry] = None

    model_config = {"from_attributes": True}


class ZoneResponse(BaseModel):
    id: int
    name: str
    boundary: list[GeoPoint]
    capacity: int
    is_active: bool
    slots: list[SlotResponse]
    created_at: datetime

    model_config = {"from_attributes": True}
