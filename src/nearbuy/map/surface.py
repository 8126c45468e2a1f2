"""
Map surface capability set.

Every map provider the storefront can render with (Mapbox, Google, HERE) is driven
through this one interface; provider-specific code lives in adapters. Only the
owning `MapView` (via its `MarkerSet` and `SearchRadiusOverlay`) calls these methods.

`GeoJsonSurface` is the server-side adapter: it keeps primitives in memory and
renders them as a GeoJSON FeatureCollection that any of the web map libraries can
load directly.
"""

from __future__ import annotations

import itertools
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable

from nearbuy.core.geo import validate_point
from nearbuy.domain.models import Coordinate, Polygon

ClickCallback = Callable[[], None]


class MapSurface(ABC):
    """Opaque map handle; marker and polygon handles are adapter-specific."""

    @abstractmethod
    def add_marker(self, coordinate: Coordinate, title: str, description: str | None = None) -> Any:
        """Create a marker with a popup; raise if the primitive cannot be built."""

    @abstractmethod
    def update_marker_position(self, handle: Any, coordinate: Coordinate) -> None:
        """Move an existing marker in place."""

    @abstractmethod
    def update_marker_popup(self, handle: Any, title: str, description: str | None = None) -> None:
        """Replace popup content of an existing marker without recreating it."""

    @abstractmethod
    def remove_marker(self, handle: Any) -> None:
        """Remove a marker and release its popup and listeners."""

    @abstractmethod
    def add_click_listener(self, handle: Any, callback: ClickCallback) -> None:
        """Invoke `callback` when the marker is clicked."""

    @abstractmethod
    def add_fill_polygon(self, polygon: Polygon, *, layer_id: str, style: dict[str, Any] | None = None) -> Any:
        """Draw a filled polygon overlay and return its handle."""

    @abstractmethod
    def remove_polygon(self, handle: Any) -> None:
        """Remove a polygon overlay."""


@dataclass
class _MarkerPrimitive:
    coordinate: Coordinate
    title: str
    description: str | None
    listeners: list[ClickCallback] = field(default_factory=list)


@dataclass
class _PolygonPrimitive:
    layer_id: str
    polygon: Polygon
    style: dict[str, Any]


DEFAULT_FILL_STYLE: dict[str, Any] = {
    "fill-color": "#3B82F6",
    "fill-opacity": 0.1,
    "fill-outline-color": "#3B82F6",
}


class GeoJsonSurface(MapSurface):
    """In-memory surface that renders its primitives as GeoJSON."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._markers: dict[int, _MarkerPrimitive] = {}
        self._polygons: dict[int, _PolygonPrimitive] = {}

    @property
    def marker_count(self) -> int:
        return len(self._markers)

    @property
    def polygon_count(self) -> int:
        return len(self._polygons)

    def listener_count(self, handle: int) -> int:
        primitive = self._markers.get(handle)
        return len(primitive.listeners) if primitive else 0

    def _marker(self, handle: int) -> _MarkerPrimitive:
        try:
            return self._markers[handle]
        except KeyError:
            raise KeyError(f"Unknown marker handle {handle!r}") from None

    def add_marker(self, coordinate: Coordinate, title: str, description: str | None = None) -> int:
        validate_point(coordinate.latitude, coordinate.longitude)
        handle = next(self._ids)
        self._markers[handle] = _MarkerPrimitive(coordinate=coordinate, title=title, description=description)
        return handle

    def update_marker_position(self, handle: int, coordinate: Coordinate) -> None:
        validate_point(coordinate.latitude, coordinate.longitude)
        self._marker(handle).coordinate = coordinate

    def update_marker_popup(self, handle: int, title: str, description: str | None = None) -> None:
        primitive = self._marker(handle)
        primitive.title = title
        primitive.description = description

    def remove_marker(self, handle: int) -> None:
        primitive = self._markers.pop(handle, None)
        if primitive is not None:
            primitive.listeners.clear()

    def add_click_listener(self, handle: int, callback: ClickCallback) -> None:
        self._marker(handle).listeners.append(callback)

    def click(self, handle: int) -> None:
        """Simulate a user click on a marker."""
        for callback in list(self._marker(handle).listeners):
            callback()

    def add_fill_polygon(self, polygon: Polygon, *, layer_id: str, style: dict[str, Any] | None = None) -> int:
        handle = next(self._ids)
        self._polygons[handle] = _PolygonPrimitive(
            layer_id=layer_id, polygon=polygon, style={**DEFAULT_FILL_STYLE, **(style or {})}
        )
        return handle

    def remove_polygon(self, handle: int) -> None:
        self._polygons.pop(handle, None)

    def to_feature_collection(self) -> dict[str, Any]:
        features: list[dict[str, Any]] = []
        for primitive in self._polygons.values():
            features.append(
                primitive.polygon.to_geojson({"layer": primitive.layer_id, "paint": dict(primitive.style)})
            )
        for handle, marker in self._markers.items():
            features.append(
                {
                    "type": "Feature",
                    "geometry": {
                        "type": "Point",
                        "coordinates": [marker.coordinate.longitude, marker.coordinate.latitude],
                    },
                    "properties": {
                        "handle": handle,
                        "title": marker.title,
                        "description": marker.description,
                    },
                }
            )
        return {"type": "FeatureCollection", "features": features}
