"""
Domain models (Pydantic).

These types are the stable "contract" between layers:
- API/CLI inputs (`SearchRequest`, `FilterCriteria`)
- normalized, comparison-ready output (`Listing`, `SourceResult`, `SearchResult`)
- map state (`MapMarker`, `Polygon`)

Listings are constructed fresh for every search and never mutated afterwards, so
they are frozen models.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from nearbuy.core.geo import GeoPoint

SourceTag = Literal["local", "marketplaceA", "marketplaceB"]
ALL_SOURCES: tuple[SourceTag, ...] = ("local", "marketplaceA", "marketplaceB")

# Upper bound for search and store-discovery radii.
MAX_RADIUS_KM = 500.0

SortKey = Literal["default", "priceAsc", "priceDesc", "nameAsc", "nameDesc", "distanceAsc", "ratingDesc"]

# Values emitted by the storefront's sort dropdown.
_SORT_CONTROL_VALUES: dict[str, SortKey] = {
    "default": "default",
    "price-asc": "priceAsc",
    "price-desc": "priceDesc",
    "name-asc": "nameAsc",
    "name-desc": "nameDesc",
    "distance": "distanceAsc",
    "rating": "ratingDesc",
}

_UNSET_CONTROL = {"", "all", "any"}


class Coordinate(BaseModel):
    """A geographic point in decimal degrees (accepts `lat`/`lng` aliases)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    latitude: float = Field(
        ..., ge=-90, le=90, allow_inf_nan=False, validation_alias=AliasChoices("latitude", "lat")
    )
    longitude: float = Field(
        ...,
        ge=-180,
        le=180,
        allow_inf_nan=False,
        validation_alias=AliasChoices("longitude", "lng", "lon"),
    )

    def to_point(self) -> GeoPoint:
        return GeoPoint(lat=self.latitude, lon=self.longitude)


class Listing(BaseModel):
    """One comparison-ready product/store listing from any source."""

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str = ""
    price: Decimal = Decimal("0")
    source_tag: SourceTag
    category: str | None = None
    condition: str | None = None
    source_coordinate: Coordinate | None = None
    distance_km: float | None = Field(default=None, ge=0)
    external_url: str | None = None

    price_unparsed: bool = False
    converted: bool = False
    original_price: str | None = None
    original_currency: str | None = None
    image_url: str | None = None
    retailer_name: str | None = None


class FilterCriteria(BaseModel):
    """Filter + sort selection for one result view (rebuilt on every control change)."""

    price_min: Decimal | None = Field(default=None, ge=0)
    price_max: Decimal | None = Field(default=None, ge=0)
    category: str | None = None
    condition: str | None = None
    max_distance_km: float | None = Field(default=None, gt=0)
    sort_key: SortKey = "default"

    @field_validator("category", "condition", mode="before")
    @classmethod
    def _blank_means_unset(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip().lower() in _UNSET_CONTROL:
            return None
        return value

    @model_validator(mode="after")
    def _validate_price_bounds(self) -> "FilterCriteria":
        if self.price_min is not None and self.price_max is not None and self.price_max < self.price_min:
            raise ValueError("price_max must be >= price_min")
        return self

    @classmethod
    def from_controls(
        cls,
        *,
        sort_by: str = "default",
        price_range: str = "all",
        category: str = "all",
        distance_range: str = "all",
        condition: str = "all",
    ) -> "FilterCriteria":
        """Build criteria from the storefront filter controls.

        `price_range` is `"all"`, `"MIN-MAX"` or an open-ended `"MIN"`;
        `distance_range` is `"all"` or a whole number of kilometers.
        """
        sort_value = sort_by.strip()
        sort_key = _SORT_CONTROL_VALUES.get(sort_value.lower(), sort_value)

        price_min: Decimal | None = None
        price_max: Decimal | None = None
        price_range = price_range.strip().lower()
        if price_range not in _UNSET_CONTROL:
            low, _, high = price_range.partition("-")
            try:
                price_min = Decimal(low.strip() or "0")
                price_max = Decimal(high.strip()) if high.strip() else None
            except InvalidOperation as exc:
                raise ValueError(f"price_range must be 'all', 'MIN-MAX' or 'MIN', got {price_range!r}") from exc
            if not price_min.is_finite() or (price_max is not None and not price_max.is_finite()):
                raise ValueError(f"price_range must use finite amounts, got {price_range!r}")

        max_distance: float | None = None
        distance_range = distance_range.strip().lower()
        if distance_range not in _UNSET_CONTROL:
            try:
                max_distance = float(int(distance_range))
            except ValueError as exc:
                raise ValueError(
                    f"distance_range must be 'all' or whole kilometers, got {distance_range!r}"
                ) from exc

        return cls(
            price_min=price_min,
            price_max=price_max,
            category=category,
            condition=condition,
            max_distance_km=max_distance,
            sort_key=sort_key,
        )


class MapMarker(BaseModel):
    """Desired marker state; identity is `id` (coordinate changes are in-place moves)."""

    model_config = ConfigDict(frozen=True)

    id: str
    coordinate: Coordinate
    title: str
    description: str | None = None


class Polygon(BaseModel):
    """Closed ring of coordinates (first point equals last point)."""

    model_config = ConfigDict(frozen=True)

    ring: list[Coordinate]

    @field_validator("ring")
    @classmethod
    def _require_closed_ring(cls, ring: list[Coordinate]) -> list[Coordinate]:
        if len(ring) < 4:
            raise ValueError("polygon ring needs at least 4 points")
        if ring[0] != ring[-1]:
            raise ValueError("polygon ring must be closed (first point == last point)")
        return ring

    def to_geojson(self, properties: dict[str, Any] | None = None) -> dict[str, Any]:
        return {
            "type": "Feature",
            "geometry": {
                "type": "Polygon",
                "coordinates": [[[c.longitude, c.latitude] for c in self.ring]],
            },
            "properties": dict(properties or {}),
        }


class Store(BaseModel):
    """A local retailer location, optionally annotated with distance from the shopper."""

    id: str
    name: str
    coordinate: Coordinate
    category: str | None = None
    description: str | None = None
    distance_km: float | None = Field(default=None, ge=0)


class SearchRequest(BaseModel):
    """End-user request payload for a discovery/comparison search."""

    query: str = ""
    category: str | None = None
    user_location: Coordinate | None = None
    criteria: FilterCriteria = Field(default_factory=FilterCriteria)
    radius_km: float | None = Field(default=None, gt=0, le=MAX_RADIUS_KM)
    sources: list[SourceTag] = Field(default_factory=lambda: list(ALL_SOURCES))
    settings_overrides: dict[str, Any] | None = None

    @field_validator("query")
    @classmethod
    def _strip_query(cls, query: str) -> str:
        return query.strip()

    @field_validator("category", mode="before")
    @classmethod
    def _blank_category(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip().lower() in _UNSET_CONTROL:
            return None
        return value


class SourceResult(BaseModel):
    """Listings from one source plus its own loading flag and error notice."""

    source: SourceTag
    listings: list[Listing] = Field(default_factory=list)
    loading: bool = False
    error: str | None = None


class SearchResult(BaseModel):
    """Per-source results, the merged filtered view, and derived map state."""

    generated_at: datetime
    request_token: int
    query: SearchRequest
    sources: dict[str, SourceResult]
    merged: list[Listing] = Field(default_factory=list)
    markers: list[MapMarker] = Field(default_factory=list)
    overlay: Polygon | None = None
    meta: dict[str, Any] = Field(default_factory=dict)


class FilterListingsRequest(BaseModel):
    """Re-filter already fetched listings (filter controls changed, no refetch)."""

    listings: list[Listing] = Field(default_factory=list)
    criteria: FilterCriteria = Field(default_factory=FilterCriteria)
