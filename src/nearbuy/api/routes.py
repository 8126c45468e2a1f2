"""
API routes.

Endpoints:
- POST `/api/search`: main discovery/comparison entrypoint.
- POST `/api/listings/filter`: re-filter/sort listings the client already holds.
- GET  `/api/stores/nearby`: local stores around a point, nearest first.
- GET  `/api/map/overlay`: search-radius polygon (GeoJSON) and fly-to zoom.
- GET  `/api/map/token`: public map token for the storefront map.
- GET  `/api/settings`: public settings for the storefront (secrets removed).
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from fastapi import APIRouter, HTTPException, Query

from nearbuy.config.settings import get_settings
from nearbuy.domain.models import MAX_RADIUS_KM, Coordinate, FilterListingsRequest, SearchRequest, SearchResult
from nearbuy.exceptions import CredentialMissing
from nearbuy.listings.filters import apply_filters
from nearbuy.map.overlay import circle_polygon, zoom_for_radius
from nearbuy.map.surface import GeoJsonSurface
from nearbuy.map.view import MapView, markers_from_stores
from nearbuy.search.session import SearchSession, build_cache
from nearbuy.sources.amazon import AmazonClient
from nearbuy.sources.credentials import CredentialService
from nearbuy.sources.ebay import EbayClient
from nearbuy.sources.local import LocalCatalog

router = APIRouter()


def _validation_error(exc: Exception) -> HTTPException:
    return HTTPException(status_code=400, detail={"code": "VALIDATION_ERROR", "message": str(exc)})


def _internal_error(exc: Exception) -> HTTPException:
    return HTTPException(status_code=500, detail={"code": "INTERNAL_ERROR", "message": str(exc)})


@lru_cache
def _credentials() -> CredentialService:
    return CredentialService(get_settings())


@lru_cache
def _clients() -> tuple[LocalCatalog, AmazonClient, EbayClient]:
    settings = get_settings()
    cache = build_cache(settings)
    credentials = _credentials()
    local = LocalCatalog(settings.catalog.path, cell_size_km=settings.search.store_index_cell_km)
    return local, AmazonClient(settings, cache, credentials), EbayClient(settings, cache, credentials)


@router.post("/api/search", response_model=SearchResult)
async def post_search(request: SearchRequest) -> SearchResult:
    """Search every requested source and return per-source, merged and map results."""
    settings = get_settings()
    local, amazon, ebay = _clients()
    surface = GeoJsonSurface()
    session = SearchSession(
        settings,
        local_catalog=local,
        amazon_client=amazon,
        ebay_client=ebay,
        map_view=MapView(surface, overlay_segments=settings.map.overlay_segments),
    )
    try:
        result = await session.search(request)
        if result is None:
            raise RuntimeError("search was superseded before it finished")
        meta = dict(result.meta)
        meta["map"] = {**meta.get("map", {}), "feature_collection": surface.to_feature_collection()}
        return result.model_copy(update={"meta": meta})
    except ValueError as e:
        raise _validation_error(e) from e
    except Exception as e:
        raise _internal_error(e) from e
    finally:
        session.close()


@router.post("/api/listings/filter")
def post_filter_listings(payload: FilterListingsRequest) -> dict[str, Any]:
    """Apply filter/sort criteria to listings (pure; nothing is refetched)."""
    listings = apply_filters(payload.listings, payload.criteria)
    return {"count": len(listings), "listings": [l.model_dump(mode="json") for l in listings]}


@router.get("/api/stores/nearby")
def get_nearby_stores(
    lat: float,
    lon: float,
    radius_km: float | None = Query(default=None, gt=0, le=MAX_RADIUS_KM),
    category: str | None = None,
) -> dict[str, Any]:
    """Return local stores within `radius_km` of (lat, lon), nearest first."""
    settings = get_settings()
    local, _, _ = _clients()
    try:
        center = Coordinate(latitude=lat, longitude=lon)
        radius = float(radius_km or settings.search.default_radius_km)
        stores = local.stores_near(center, radius, category)
    except ValueError as e:
        raise _validation_error(e) from e
    except Exception as e:
        raise _internal_error(e) from e
    return {
        "center": center.model_dump(mode="json"),
        "radius_km": radius,
        "stores": [s.model_dump(mode="json") for s in stores],
        "markers": [m.model_dump(mode="json") for m in markers_from_stores(stores)],
    }


@router.get("/api/map/overlay")
def get_map_overlay(
    lat: float,
    lon: float,
    radius_km: float | None = Query(default=None, le=MAX_RADIUS_KM),
    segments: int | None = Query(default=None, ge=3, le=720),
) -> dict[str, Any]:
    """Return the search-radius circle as a GeoJSON feature plus a camera zoom."""
    settings = get_settings()
    radius = float(radius_km if radius_km is not None else settings.search.default_radius_km)
    try:
        center = Coordinate(latitude=lat, longitude=lon)
        polygon = circle_polygon(center, radius, segments or settings.map.overlay_segments)
    except ValueError as e:
        raise _validation_error(e) from e
    return {
        "center": center.model_dump(mode="json"),
        "radius_km": radius,
        "zoom": zoom_for_radius(radius, base_zoom=settings.map.base_zoom, min_zoom=settings.map.min_zoom),
        "feature": polygon.to_geojson({"radius_km": radius}),
    }


@router.get("/api/map/token")
def get_map_token() -> dict[str, str]:
    """Return the public map token (environment first, then the configured fallback)."""
    try:
        token = _credentials().map_token()
    except CredentialMissing as e:
        raise HTTPException(
            status_code=503,
            detail={"code": "CREDENTIAL_MISSING", "message": str(e)},
        ) from e
    return {"token": token.token, "source": token.source}


@router.get("/api/settings")
def get_public_settings() -> dict[str, Any]:
    """Return safe-to-expose settings for storefront defaults (credentials removed)."""
    data = get_settings().model_dump(mode="json")
    return {
        "app": {"name": data["app"]["name"]},
        "currency": {
            "reference": data["currency"]["reference"],
            "default_code": data["currency"]["default_code"],
            "rates": data["currency"]["rates"],
            "decimals": data["currency"]["decimals"],
        },
        "search": data["search"],
        "map": {
            "overlay_segments": data["map"]["overlay_segments"],
            "min_zoom": data["map"]["min_zoom"],
            "base_zoom": data["map"]["base_zoom"],
        },
        "sources": {
            "marketplaceA": {"country": data["marketplaces"]["amazon"]["country"]},
            "marketplaceB": {"marketplace_id": data["marketplaces"]["ebay"]["marketplace_id"]},
        },
    }
