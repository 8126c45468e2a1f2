"""
Local catalog source.

The catalog is a local JSON file (default: `data/catalogs/local_catalog.json`) with
two lists: `stores` (retail locations with coordinates) and `products` (priced
items, each stocked at one store). Product search joins each matching product with
its store so the normalizer sees the same row shape the storefront search returns.
"""

from __future__ import annotations

import json
import logging
from decimal import Decimal
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from nearbuy.core.env import resolve_project_path
from nearbuy.core.spatial_index import SpatialGridIndex
from nearbuy.domain.models import Coordinate, Store
from nearbuy.sources.base import SourceResponse

logger = logging.getLogger(__name__)


class CatalogStore(BaseModel):
    id: str
    name: str
    latitude: float | None = None
    longitude: float | None = None
    category: str | None = None
    description: str | None = None
    retailer: str | None = None
    address: str | None = None


class CatalogProduct(BaseModel):
    id: str
    name: str
    price: Decimal | str | None = None
    category: str | None = None
    description: str | None = None
    store_id: str | None = None
    image_url: str | None = None


class Catalog(BaseModel):
    stores: list[CatalogStore] = Field(default_factory=list)
    products: list[CatalogProduct] = Field(default_factory=list)


def load_catalog(path: str | Path) -> Catalog:
    """Load and validate a local catalog JSON file."""
    resolved = resolve_project_path(path)
    payload = json.loads(resolved.read_text(encoding="utf-8"))
    return Catalog.model_validate(payload)


def _matches(text: str | None, term: str) -> bool:
    return bool(text) and term in text.casefold()


class LocalCatalog:
    """Product and store lookups over the local catalog (loaded lazily, once)."""

    def __init__(self, path: str | Path, *, cell_size_km: float = 5.0):
        self._path = path
        self._cell_size_km = cell_size_km
        self._catalog: Catalog | None = None
        self._stores_by_id: dict[str, CatalogStore] = {}
        self._index: SpatialGridIndex[CatalogStore] | None = None

    @classmethod
    def from_catalog(cls, catalog: Catalog, **kwargs: Any) -> "LocalCatalog":
        out = cls(path="<memory>", **kwargs)
        out._set_catalog(catalog)
        return out

    def _set_catalog(self, catalog: Catalog) -> SpatialGridIndex[CatalogStore]:
        index = SpatialGridIndex(
            catalog.stores,
            get_latlon=lambda s: (s.latitude, s.longitude),
            cell_size_km=self._cell_size_km,
        )
        self._catalog = catalog
        self._stores_by_id = {s.id: s for s in catalog.stores}
        self._index = index
        skipped = len(catalog.stores) - len(index)
        if skipped:
            logger.warning("Local catalog: %d store(s) without a valid coordinate are not mappable", skipped)
        return index

    def _loaded(self) -> tuple[Catalog, SpatialGridIndex[CatalogStore]]:
        catalog, index = self._catalog, self._index
        if catalog is None or index is None:
            catalog = load_catalog(self._path)
            index = self._set_catalog(catalog)
        return catalog, index

    @property
    def catalog(self) -> Catalog:
        return self._loaded()[0]

    def _store_index(self) -> SpatialGridIndex[CatalogStore]:
        return self._loaded()[1]

    def _row(self, product: CatalogProduct) -> dict[str, Any]:
        row: dict[str, Any] = {
            "id": product.id,
            "name": product.name,
            "price": product.price,
            "category": product.category,
            "image_url": product.image_url,
        }
        store = self._stores_by_id.get(product.store_id or "")
        if store is not None:
            row["stores"] = {
                "id": store.id,
                "name": store.name,
                "latitude": store.latitude,
                "longitude": store.longitude,
            }
            if store.retailer:
                row["retailers"] = {"name": store.retailer}
        return row

    def search_rows(self, term: str, category: str | None = None) -> list[dict[str, Any]]:
        """Case-insensitive name/description/category match, joined with store info."""
        needle = term.strip().casefold()
        wanted_category = category.casefold() if category else None
        rows: list[dict[str, Any]] = []
        for product in self.catalog.products:
            if wanted_category and (product.category or "").casefold() != wanted_category:
                continue
            if needle and not (
                _matches(product.name, needle)
                or _matches(product.description, needle)
                or _matches(product.category, needle)
            ):
                continue
            rows.append(self._row(product))
        return rows

    def search_products(self, query: str, category: str | None = None) -> SourceResponse:
        try:
            return SourceResponse.ok(self.search_rows(query, category))
        except (OSError, ValueError) as exc:
            logger.warning("Local catalog search failed: %s", exc)
            return SourceResponse.failed(f"Local catalog unavailable: {exc}")

    def stores_near(self, center: Coordinate, radius_km: float, category: str | None = None) -> list[Store]:
        """Stores within `radius_km` of `center`, nearest first."""
        index = self._store_index()
        wanted_category = category.casefold() if category else None
        out: list[Store] = []
        for store, distance in index.query_within(
            lat=center.latitude, lon=center.longitude, radius_km=radius_km
        ):
            if wanted_category and (store.category or "").casefold() != wanted_category:
                continue
            out.append(
                Store(
                    id=store.id,
                    name=store.name,
                    coordinate=Coordinate(latitude=store.latitude, longitude=store.longitude),
                    category=store.category,
                    description=store.description or store.address,
                    distance_km=distance,
                )
            )
        return out
