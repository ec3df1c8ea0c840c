from app.models.zone import Zone
from app.models.slot import Slot
from app.models.reservation import Reservation

__all__ = ["Zone", "Slot", "Reservation"]
