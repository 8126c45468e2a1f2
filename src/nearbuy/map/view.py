"""
Map view: the one owner of a surface's markers and radius overlay.

Also builds desired marker lists from listings and stores, so callers only ever hand
domain objects to the view.
"""

from __future__ import annotations

import logging
from typing import Iterable

from nearbuy.domain.models import Coordinate, Listing, MapMarker, Polygon, Store
from nearbuy.map.overlay import DEFAULT_SEGMENTS, SearchRadiusOverlay
from nearbuy.map.reconcile import MarkerClickCallback, MarkerSet, ReconcileStats
from nearbuy.map.surface import GeoJsonSurface, MapSurface

logger = logging.getLogger(__name__)


def _distance_label(distance_km: float | None) -> str | None:
    if distance_km is None:
        return None
    return f"{distance_km:.1f} km away"


def markers_from_listings(listings: Iterable[Listing], *, currency: str = "AED") -> list[MapMarker]:
    """One marker per listing that has a store location (marketplace items have none)."""
    markers: list[MapMarker] = []
    for listing in listings:
        if listing.source_coordinate is None:
            continue
        parts = [listing.retailer_name, f"{currency} {listing.price:.2f}", _distance_label(listing.distance_km)]
        markers.append(
            MapMarker(
                id=f"listing:{listing.id}",
                coordinate=listing.source_coordinate,
                title=listing.display_name,
                description=" | ".join(p for p in parts if p),
            )
        )
    return markers


def markers_from_stores(stores: Iterable[Store]) -> list[MapMarker]:
    markers: list[MapMarker] = []
    for store in stores:
        parts = [store.category, _distance_label(store.distance_km), store.description]
        markers.append(
            MapMarker(
                id=f"store:{store.id}",
                coordinate=store.coordinate,
                title=store.name,
                description=" | ".join(p for p in parts if p) or None,
            )
        )
    return markers


class MapView:
    def __init__(
        self,
        surface: MapSurface | None = None,
        *,
        on_marker_click: MarkerClickCallback | None = None,
        overlay_segments: int = DEFAULT_SEGMENTS,
    ):
        self.surface = surface if surface is not None else GeoJsonSurface()
        self.markers = MarkerSet(self.surface, on_click=on_marker_click)
        self.overlay = SearchRadiusOverlay(self.surface, segments=overlay_segments)
        self.closed = False

    def show_markers(self, desired: Iterable[MapMarker]) -> ReconcileStats:
        if self.closed:
            raise RuntimeError("MapView is closed")
        return self.markers.reconcile(desired)

    def show_radius(
        self, center: Coordinate | None, radius_km: float | None, *, segments: int | None = None
    ) -> Polygon | None:
        """Draw (or, with no center, remove) the search radius overlay."""
        if self.closed:
            raise RuntimeError("MapView is closed")
        if center is None or radius_km is None:
            self.overlay.clear()
            return None
        try:
            return self.overlay.update(center, radius_km, segments=segments)
        except ValueError as exc:
            logger.warning("Radius overlay removed: %s", exc)
            self.overlay.clear()
            return None

    def close(self) -> None:
        """Tear down every marker and the overlay; idempotent."""
        if self.closed:
            return
        removed = self.markers.clear()
        self.overlay.clear()
        self.closed = True
        logger.debug("Map view closed (%d markers removed)", removed)
