from __future__ import annotations
from dataclasses import dataclass
from math import atan2, cos, isfinite, radians, sin, sqrt

from nearbuy.exceptions import InvalidCoordinate

"""
Geospatial helpers.

We keep a tiny geometry layer here so listing and map modules can do distance
calculations without pulling in heavier GIS dependencies.
"""

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class GeoPoint:
    """A latitude/longitude pair in decimal degrees."""

    lat: float
    lon: float


def is_valid_point(lat: object, lon: object) -> bool:
    """Return True when `lat`/`lon` are finite numbers within WGS84 ranges."""
    if isinstance(lat, bool) or isinstance(lon, bool):
        return False
    try:
        lat_f = float(lat)  # type: ignore[arg-type]
        lon_f = float(lon)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return False
    if not (isfinite(lat_f) and isfinite(lon_f)):
        return False
    return -90.0 <= lat_f <= 90.0 and -180.0 <= lon_f <= 180.0


def validate_point(lat: object, lon: object) -> GeoPoint:
    """Build a `GeoPoint`, raising `InvalidCoordinate` for bad input."""
    if not is_valid_point(lat, lon):
        raise InvalidCoordinate(lat, lon)
    return GeoPoint(lat=float(lat), lon=float(lon))  # type: ignore[arg-type]


def haversine_km(a: GeoPoint, b: GeoPoint) -> float:
    """Compute great-circle distance in kilometers between two points."""
    lat1 = radians(a.lat)
    lat2 = radians(b.lat)
    dlat = radians(b.lat - a.lat)
    dlon = radians(b.lon - a.lon)

    h = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    # Floating point can push h just past 1 for antipodal points.
    h = min(1.0, max(0.0, h))
    return 2 * EARTH_RADIUS_KM * atan2(sqrt(h), sqrt(1 - h))
