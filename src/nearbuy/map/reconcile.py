"""
Marker reconciliation.

A `MarkerSet` is the one live marker collection of a map view: marker id -> rendered
primitive handle. `reconcile` diffs it against a desired marker list and applies the
minimal surface operations:

1. ids no longer desired are removed from the surface (releasing popups/listeners),
2. ids already present are moved/refreshed in place (the handle is kept, so open
   popups survive and nothing flickers),
3. new ids get a primitive, a popup, and a click listener when a callback is set.

After a reconcile the key set equals the ids of the desired markers that could be
rendered. A marker that cannot be built is logged and skipped; it never aborts the
rest of the batch.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable, Iterable

from nearbuy.core.geo import is_valid_point
from nearbuy.domain.models import MapMarker
from nearbuy.exceptions import InvalidCoordinate, ReconcileInProgress
from nearbuy.map.surface import MapSurface

logger = logging.getLogger(__name__)

MarkerClickCallback = Callable[[MapMarker], None]


@dataclass
class ReconcileStats:
    added: int = 0
    moved: int = 0
    refreshed: int = 0
    removed: int = 0
    skipped: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.added or self.moved or self.refreshed or self.removed)

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class _Entry:
    handle: Any
    marker: MapMarker


class MarkerSet:
    """Live markers of one map view, keyed by marker id."""

    def __init__(self, surface: MapSurface, *, on_click: MarkerClickCallback | None = None):
        self._surface = surface
        self._on_click = on_click
        self._entries: dict[str, _Entry] = {}
        self._reconciling = False
        self.last_stats = ReconcileStats()

    @property
    def surface(self) -> MapSurface:
        return self._surface

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, marker_id: object) -> bool:
        return marker_id in self._entries

    def ids(self) -> set[str]:
        return set(self._entries)

    def handle(self, marker_id: str) -> Any:
        return self._entries[marker_id].handle

    def marker(self, marker_id: str) -> MapMarker:
        return self._entries[marker_id].marker

    def _handle_click(self, marker_id: str) -> None:
        entry = self._entries.get(marker_id)
        if entry is not None and self._on_click is not None:
            self._on_click(entry.marker)

    def _remove(self, marker_id: str) -> None:
        entry = self._entries.pop(marker_id)
        try:
            self._surface.remove_marker(entry.handle)
        except Exception:
            # The entry is already gone from the set; the surface owns any leftovers.
            logger.exception("Failed to remove marker %s from map surface", marker_id)

    def _add(self, marker: MapMarker) -> None:
        handle = self._surface.add_marker(marker.coordinate, marker.title, marker.description)
        if self._on_click is not None:
            try:
                self._surface.add_click_listener(handle, lambda mid=marker.id: self._handle_click(mid))
            except Exception:
                self._surface.remove_marker(handle)
                raise
        self._entries[marker.id] = _Entry(handle=handle, marker=marker)

    def _update(self, entry: _Entry, marker: MapMarker, stats: ReconcileStats) -> None:
        previous = entry.marker
        if marker.coordinate != previous.coordinate:
            self._surface.update_marker_position(entry.handle, marker.coordinate)
            stats.moved += 1
        if marker.title != previous.title or marker.description != previous.description:
            self._surface.update_marker_popup(entry.handle, marker.title, marker.description)
            stats.refreshed += 1
        entry.marker = marker

    def reconcile(self, desired: Iterable[MapMarker]) -> ReconcileStats:
        """Bring the live markers in line with `desired`; see module docstring."""
        if self._reconciling:
            raise ReconcileInProgress("MarkerSet is already being reconciled")
        self._reconciling = True
        stats = ReconcileStats()
        try:
            wanted: dict[str, MapMarker] = {}
            for marker in desired:
                if marker.id in wanted:
                    logger.warning("Duplicate marker id %s; keeping the first occurrence", marker.id)
                    continue
                lat, lon = marker.coordinate.latitude, marker.coordinate.longitude
                if not is_valid_point(lat, lon):
                    logger.warning("Skipping marker %s: %s", marker.id, InvalidCoordinate(lat, lon))
                    stats.skipped += 1
                    continue
                wanted[marker.id] = marker

            for marker_id in [mid for mid in self._entries if mid not in wanted]:
                self._remove(marker_id)
                stats.removed += 1

            for marker_id, marker in wanted.items():
                entry = self._entries.get(marker_id)
                try:
                    if entry is None:
                        self._add(marker)
                        stats.added += 1
                    else:
                        self._update(entry, marker, stats)
                except Exception as exc:
                    logger.warning("Skipping marker %s: %s", marker_id, exc)
                    stats.skipped += 1
                    if entry is not None:
                        self._remove(marker_id)
                        stats.removed += 1
        finally:
            self._reconciling = False
        self.last_stats = stats
        if stats.changed or stats.skipped:
            logger.debug("Reconciled markers: %s", stats.as_dict())
        return stats

    def clear(self) -> int:
        """Tear down every marker (map unmount / navigation away). Returns the count removed."""
        if self._reconciling:
            raise ReconcileInProgress("Cannot clear a MarkerSet during reconcile")
        removed = 0
        for marker_id in list(self._entries):
            self._remove(marker_id)
            removed += 1
        return removed


def reconcile(current: MarkerSet, desired: Iterable[MapMarker]) -> MarkerSet:
    """Reconcile `current` against `desired` and return the same `MarkerSet`."""
    current.reconcile(desired)
    return current
