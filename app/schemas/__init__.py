from app.schemas.zone import (
    GeoPoint, ZoneCreate, ZoneCapacityUpdate, ZoneSummary, ZoneOverview, ZoneResponse, SlotStatus,
)
from app.schemas.reservation import (
    HoldCreate, ArrivalCreate, HoldResult, ReservationResponse, ReservationAck, SweepReport,
)

__all__ = [
    "GeoPoint", "ZoneCreate", "ZoneCapacityUpdate", "ZoneSummary", "ZoneOverview",
    "ZoneResponse", "SlotStatus",
    "HoldCreate", "ArrivalCreate", "HoldResult", "ReservationResponse", "ReservationAck",
    "SweepReport",
]
