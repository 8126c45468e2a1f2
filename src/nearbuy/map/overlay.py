"""
Search radius overlay.

The circle is approximated on the equirectangular plane: one degree of longitude is
`111.320 * cos(lat)` km and one degree of latitude is `110.574` km. That is accurate
to well under a percent for store-search radii (up to ~100 km) away from the poles,
which is all the overlay is used for.
"""

from __future__ import annotations

import logging
import math
from typing import Any

from nearbuy.domain.models import Coordinate, Polygon
from nearbuy.map.surface import MapSurface

logger = logging.getLogger(__name__)

KM_PER_DEG_LON_AT_EQUATOR = 111.320
KM_PER_DEG_LAT = 110.574
DEFAULT_SEGMENTS = 64

OVERLAY_LAYER_ID = "search-radius"


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def circle_polygon(center: Coordinate, radius_km: float, segments: int = DEFAULT_SEGMENTS) -> Polygon:
    """Return a closed `segments + 1` point ring approximating a circle around `center`."""
    if not math.isfinite(radius_km) or radius_km <= 0:
        raise ValueError("radius_km must be a positive finite number")
    if segments < 3:
        raise ValueError("segments must be >= 3")

    cos_lat = math.cos(math.radians(center.latitude))
    if cos_lat < 1e-9:
        raise ValueError("radius overlay is undefined at the poles")

    dx_deg = radius_km / (KM_PER_DEG_LON_AT_EQUATOR * cos_lat)
    dy_deg = radius_km / KM_PER_DEG_LAT

    ring: list[Coordinate] = []
    for i in range(segments):
        theta = (i / segments) * (2 * math.pi)
        ring.append(
            Coordinate(
                latitude=_clamp(center.latitude + dy_deg * math.sin(theta), -90.0, 90.0),
                longitude=_clamp(center.longitude + dx_deg * math.cos(theta), -180.0, 180.0),
            )
        )
    ring.append(ring[0])
    return Polygon(ring=ring)


def polygon_to_geojson(polygon: Polygon, properties: dict[str, Any] | None = None) -> dict[str, Any]:
    return polygon.to_geojson(properties)


def zoom_for_radius(radius_km: float, *, base_zoom: float = 14.0, min_zoom: float = 9.0) -> float:
    """Camera zoom that keeps a circle of `radius_km` comfortably in view."""
    if not math.isfinite(radius_km) or radius_km <= 0:
        return base_zoom
    return max(min_zoom, base_zoom - math.log2(radius_km / 2.5))


class SearchRadiusOverlay:
    """At most one radius polygon per map view; replaced wholesale on every update."""

    def __init__(self, surface: MapSurface, *, segments: int = DEFAULT_SEGMENTS, layer_id: str = OVERLAY_LAYER_ID):
        self._surface = surface
        self._segments = segments
        self._layer_id = layer_id
        self._handle: Any = None
        self.polygon: Polygon | None = None
        self.center: Coordinate | None = None
        self.radius_km: float | None = None

    @property
    def active(self) -> bool:
        return self._handle is not None

    def update(self, center: Coordinate, radius_km: float, *, segments: int | None = None) -> Polygon:
        polygon = circle_polygon(center, radius_km, segments or self._segments)
        self.clear()
        self._handle = self._surface.add_fill_polygon(polygon, layer_id=self._layer_id)
        self.polygon = polygon
        self.center = center
        self.radius_km = radius_km
        logger.debug("Radius overlay at (%.5f, %.5f) r=%.2f km", center.latitude, center.longitude, radius_km)
        return polygon

    def clear(self) -> None:
        if self._handle is not None:
            self._surface.remove_polygon(self._handle)
        self._handle = None
        self.polygon = None
        self.center = None
        self.radius_km = None
