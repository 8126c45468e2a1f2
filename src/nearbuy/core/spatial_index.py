"""
Lightweight spatial indexing (grid bucket) for lat/lon points.

Used to pre-select stores around the shopper before exact haversine filtering,
so "stores near me" does not scan the whole catalog.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

from nearbuy.core.geo import GeoPoint, haversine_km, is_valid_point

T = TypeVar("T")


def _to_xy_km(lat: float, lon: float, *, lat0_deg: float) -> tuple[float, float]:
    # Equirectangular projection around a reference latitude (good enough at city scale).
    lat0 = math.radians(float(lat0_deg))
    x = float(lon) * 111.320 * math.cos(lat0)
    y = float(lat) * 110.574
    return x, y


@dataclass(frozen=True)
class _Entry(Generic[T]):
    item: T
    lat: float
    lon: float
    x_km: float
    y_km: float


class SpatialGridIndex(Generic[T]):
    def __init__(
        self,
        items: list[T],
        *,
        get_latlon: Callable[[T], tuple[float, float]],
        cell_size_km: float = 5.0,
        lat0_deg: float | None = None,
    ):
        if float(cell_size_km) <= 0:
            raise ValueError("cell_size_km must be > 0")
        self._cell_size_km = float(cell_size_km)
        self._cells: dict[tuple[int, int], list[_Entry[T]]] = {}
        self._entries: list[_Entry[T]] = []

        points: list[tuple[T, float, float]] = []
        for it in items:
            try:
                lat, lon = get_latlon(it)
            except (TypeError, ValueError, AttributeError, KeyError):
                continue
            if not is_valid_point(lat, lon):
                continue
            points.append((it, float(lat), float(lon)))

        if lat0_deg is None:
            lat0_deg = sum(p[1] for p in points) / len(points) if points else 0.0
        self._lat0_deg = float(lat0_deg)

        for it, lat_f, lon_f in points:
            x_km, y_km = _to_xy_km(lat_f, lon_f, lat0_deg=self._lat0_deg)
            e = _Entry(item=it, lat=lat_f, lon=lon_f, x_km=x_km, y_km=y_km)
            self._entries.append(e)
            self._cells.setdefault(self._cell_key_xy(x_km, y_km), []).append(e)

    def __len__(self) -> int:
        return len(self._entries)

    def _cell_key_xy(self, x_km: float, y_km: float) -> tuple[int, int]:
        return (int(math.floor(x_km / self._cell_size_km)), int(math.floor(y_km / self._cell_size_km)))

    def _sweep(self, *, lat: float, radius_km: float) -> tuple[int, int]:
        """Cell steps to cover `radius_km` around a query at `lat` (x, y)."""
        # Projected x uses cos(lat0); a real km at the query latitude spans
        # cos(lat0) / cos(lat) projected km, so the x sweep widens away from lat0.
        cos_query = max(math.cos(math.radians(lat)), 1e-6)
        stretch = max(1.0, math.cos(math.radians(self._lat0_deg)) / cos_query)
        steps_x = int(math.ceil(radius_km * 1.25 * stretch / self._cell_size_km)) + 1
        steps_y = int(math.ceil(radius_km * 1.25 / self._cell_size_km))
        return steps_x, steps_y

    def query_within(self, *, lat: float, lon: float, radius_km: float) -> list[tuple[T, float]]:
        """Return `(item, distance_km)` pairs within `radius_km`, nearest first."""
        r = float(radius_km)
        if r <= 0:
            return []
        origin = GeoPoint(lat=float(lat), lon=float(lon))
        steps_x, steps_y = self._sweep(lat=float(lat), radius_km=r)

        # Large sweeps (big radius, polar query) cost more than checking every entry.
        if (2 * steps_x + 1) * (2 * steps_y + 1) > len(self._entries):
            candidates: list[_Entry[T]] = self._entries
        else:
            x0, y0 = _to_xy_km(float(lat), float(lon), lat0_deg=self._lat0_deg)
            cx, cy = self._cell_key_xy(x0, y0)
            candidates = []
            for dx in range(-steps_x, steps_x + 1):
                for dy in range(-steps_y, steps_y + 1):
                    candidates.extend(self._cells.get((cx + dx, cy + dy), ()))

        out: list[tuple[T, float]] = []
        for e in candidates:
            d = haversine_km(origin, GeoPoint(lat=e.lat, lon=e.lon))
            if d <= r:
                out.append((e.item, d))
        out.sort(key=lambda pair: pair[1])
        return out
