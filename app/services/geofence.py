"""
Geofence predicate collaborator.

The reservation core never computes geometry itself. The arrival
confirmation flow asks a predicate "is point P inside geometry G" before
invoking the hold request's check-in conversion. The predicate is injected
through `get_geofence` so deployments can swap in their own (e.g. a GIS
service) without touching the core.

Geometries are the JSON shapes stored on zones and slots:
  - a ring:     [{"lat": .., "lng": ..}, ...]                 (zone boundary)
  - a polygon:  {"type": "polygon", "ring": [...]}
  - a circle:   {"type": "circle", "center": {...}, "radius_m": r}
"""

from typing import Any, Protocol

from geopy.distance import geodesic
from shapely.geometry import Point, Polygon


class GeofencePredicate(Protocol):
    def contains(self, geometry: Any, lat: float, lng: float) -> bool:
        ...


def distance_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Geodesic distance in metres."""
    return geodesic((lat1, lng1), (lat2, lng2)).meters


def _ring_polygon(ring: list[dict]) -> Polygon:
    # Shapely works in (x, y) = (lng, lat)
    return Polygon([(point["lng"], point["lat"]) for point in ring])


class ShapelyGeofence:
    """Planar point-in-polygon (fine at parking-lot scale) and geodesic circles."""

    def contains(self, geometry: Any, lat: float, lng: float) -> bool:
        if not geometry:
            return False

        if isinstance(geometry, list):
            return self._in_ring(geometry, lat, lng)

        kind = geometry.get("type")
        if kind == "polygon":
            return self._in_ring(geometry.get("ring") or [], lat, lng)
        if kind == "circle":
            center = geometry["center"]
            return distance_m(center["lat"], center["lng"], lat, lng) <= geometry["radius_m"]
        raise ValueError(f"Unsupported geometry type: {kind}")

    @staticmethod
    def _in_ring(ring: list[dict], lat: float, lng: float) -> bool:
        if len(ring) < 3:
            return False
        return _ring_polygon(ring).covers(Point(lng, lat))


_default = ShapelyGeofence()


def get_geofence() -> GeofencePredicate:
    """FastAPI dependency; override to plug in another predicate."""
    return _default
