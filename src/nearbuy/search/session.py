"""
Search orchestration.

`SearchSession.search` is the main entrypoint used by both API and CLI:
1) apply per-request settings overrides and resolve the shopper location
2) fetch every requested source concurrently (blocking adapters run in threads)
3) normalize each source's payload as soon as it arrives and hand it to the caller
4) filter/sort the merged listings, rebuild map markers and the radius overlay
5) return a `SearchResult` with per-source results, the merged view, and metadata

Each call takes a new request token; a result computed for an older token is
dropped without being reported (the shopper has already moved on).
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable

from nearbuy.config.overrides import apply_settings_overrides
from nearbuy.config.settings import Settings, get_settings
from nearbuy.core.cache import FileCache, record_cache_stats
from nearbuy.core.env import resolve_project_path
from nearbuy.core.source_meta import capture_source_meta
from nearbuy.domain.models import (
    ALL_SOURCES,
    Coordinate,
    FilterCriteria,
    Listing,
    MapMarker,
    SearchRequest,
    SearchResult,
    SourceResult,
    SourceTag,
)
from nearbuy.exceptions import SourceUnavailable, StaleRequest
from nearbuy.listings.filters import filter_sources, merge_sources, sort_listings
from nearbuy.listings.normalize import CurrencyTable, normalize_batch
from nearbuy.map.overlay import circle_polygon, zoom_for_radius
from nearbuy.map.view import MapView, markers_from_listings, markers_from_stores
from nearbuy.sources.amazon import AmazonClient
from nearbuy.sources.base import ProductSource, SourceResponse
from nearbuy.sources.credentials import CredentialService
from nearbuy.sources.ebay import EbayClient
from nearbuy.sources.local import LocalCatalog

logger = logging.getLogger(__name__)

# Callbacks may be plain functions or coroutines.
SourceResultCallback = Callable[[SourceResult], Any]


def build_cache(settings: Settings) -> FileCache:
    return FileCache(
        resolve_project_path(settings.cache.dir),
        enabled=settings.cache.enabled,
        default_ttl_seconds=settings.cache.default_ttl_seconds,
    )


def resolve_user_location(request: SearchRequest, settings: Settings) -> Coordinate | None:
    """Shopper location, or the configured fallback when enabled."""
    if request.user_location is not None:
        return request.user_location
    if settings.search.use_fallback_location:
        fallback = settings.search.fallback_location
        return Coordinate(latitude=fallback.lat, longitude=fallback.lon)
    return None


def _effective_radius_km(request: SearchRequest, settings: Settings) -> float:
    if request.radius_km is not None:
        return float(request.radius_km)
    if request.criteria.max_distance_km is not None:
        return float(request.criteria.max_distance_km)
    return float(settings.search.default_radius_km)


def _requested_sources(request: SearchRequest) -> list[SourceTag]:
    wanted = set(request.sources)
    return [s for s in ALL_SOURCES if s in wanted]


def _comparison(listings: list[Listing], limit: int) -> list[str]:
    priced = [l for l in listings if not l.price_unparsed]
    return [l.id for l in sort_listings(priced, "priceAsc")[:limit]]


class SearchSession:
    """One shopper's search view: concurrent source fetches plus the map it drives."""

    def __init__(
        self,
        settings: Settings,
        *,
        local_catalog: LocalCatalog,
        amazon_client: AmazonClient | None = None,
        ebay_client: ProductSource | None = None,
        map_view: MapView | None = None,
    ):
        self._settings = settings
        self._local = local_catalog
        self._amazon = amazon_client
        self._ebay = ebay_client
        self.map_view = map_view
        self._token = 0
        self._tasks: set[asyncio.Task[Any]] = set()
        self.results: dict[str, SourceResult] = {}
        self.criteria = FilterCriteria()
        self.request: SearchRequest | None = None
        self.user_location: Coordinate | None = None
        self._radius_km: float | None = None
        self._currency: CurrencyTable | None = None
        self.closed = False

    @classmethod
    def from_settings(cls, settings: Settings | None = None, *, map_view: MapView | None = None) -> "SearchSession":
        """Wire the default adapters (file cache, credentials, local catalog) from settings."""
        settings = settings or get_settings()
        cache = build_cache(settings)
        credentials = CredentialService(settings)
        return cls(
            settings,
            local_catalog=LocalCatalog(
                settings.catalog.path,
                cell_size_km=settings.search.store_index_cell_km,
            ),
            amazon_client=AmazonClient(settings, cache, credentials),
            ebay_client=EbayClient(settings, cache, credentials),
            map_view=map_view,
        )

    @property
    def request_token(self) -> int:
        return self._token

    @property
    def loading(self) -> dict[str, bool]:
        return {name: r.loading for name, r in self.results.items()}

    def _fetcher(self, source: SourceTag, request: SearchRequest) -> Callable[[], SourceResponse]:
        if source == "local":
            return lambda: self._local.search_products(request.query, request.category)
        client = self._amazon if source == "marketplaceA" else self._ebay
        if client is None:
            return lambda: SourceResponse.failed(str(SourceUnavailable(source, "not configured")))
        return lambda: client.search_products(request.query)

    def _check_current(self, token: int) -> None:
        if token != self._token:
            raise StaleRequest(token, self._token)

    def _cancel_tasks(self) -> None:
        for task in self._tasks:
            task.cancel()
        self._tasks.clear()

    async def search(
        self,
        request: SearchRequest,
        on_source_result: SourceResultCallback | None = None,
    ) -> SearchResult | None:
        """Run a search; returns None when a newer search superseded this one."""
        if self.closed:
            raise RuntimeError("SearchSession is closed")

        self._token += 1
        token = self._token
        self._cancel_tasks()

        try:
            return await self._run(token, request, on_source_result)
        except StaleRequest as exc:
            logger.debug("Dropping superseded search: %s", exc)
            return None

    async def _run(
        self,
        token: int,
        request: SearchRequest,
        on_source_result: SourceResultCallback | None,
    ) -> SearchResult:
        t0 = time.perf_counter()
        settings = apply_settings_overrides(self._settings, request.settings_overrides)
        table = CurrencyTable.from_settings(settings)
        user = resolve_user_location(request, settings)
        sources = _requested_sources(request)

        results: dict[str, SourceResult] = {s: SourceResult(source=s, loading=True) for s in sources}
        self.results = dict(results)
        warnings: list[dict[str, Any]] = []
        timings_ms: dict[str, int] = {}

        with capture_source_meta() as source_meta, record_cache_stats() as cache_stats:
            # Tasks copy the current context, so adapters record into `source_meta`.
            pending: dict[asyncio.Task[SourceResponse], SourceTag] = {}
            for source in sources:
                task = asyncio.create_task(asyncio.to_thread(self._fetcher(source, request)))
                pending[task] = source
                self._tasks.add(task)

            try:
                while pending:
                    done, _ = await asyncio.wait(pending.keys(), return_when=asyncio.FIRST_COMPLETED)
                    self._check_current(token)
                    for task in done:
                        source = pending.pop(task)
                        self._tasks.discard(task)
                        result = self._to_source_result(
                            source, task, user, table, limit=int(settings.search.max_results_per_source)
                        )
                        timings_ms[source] = int((time.perf_counter() - t0) * 1000)
                        if result.error:
                            warnings.append(
                                {
                                    "code": "SOURCE_UNAVAILABLE",
                                    "message": f"{source} results are unavailable; showing the other sources.",
                                    "detail": {"source": source, "error": result.error},
                                }
                            )
                        results[source] = result
                        self.results = dict(results)
                        if on_source_result is not None:
                            outcome = on_source_result(result)
                            if inspect.isawaitable(outcome):
                                await outcome
                            self._check_current(token)
            finally:
                for task in pending:
                    task.cancel()
                    self._tasks.discard(task)

        self._check_current(token)
        radius_km = _effective_radius_km(request, settings)
        self.request = request
        self.criteria = request.criteria
        self.user_location = user
        self._radius_km = radius_km
        self._currency = table

        merged = merge_sources(results, request.criteria)

        overlay = None
        if user is not None:
            try:
                overlay = circle_polygon(user, radius_km, settings.map.overlay_segments)
            except ValueError as exc:
                logger.warning("No radius overlay for this search: %s", exc)
                warnings.append(
                    {
                        "code": "OVERLAY_UNAVAILABLE",
                        "message": "The search radius cannot be drawn at this location.",
                        "detail": {"error": str(exc)},
                    }
                )

        markers = self._desired_markers(request, merged, user, radius_km, table)
        self._render_map(markers, user, radius_km, settings)

        timings_ms["total"] = int((time.perf_counter() - t0) * 1000)
        meta: dict[str, Any] = {
            "sources": source_meta.sources,
            "cache": cache_stats.as_dict(),
            "loading": {name: r.loading for name, r in results.items()},
            "counts": {name: len(r.listings) for name, r in results.items()},
            "comparison": _comparison(merged, int(settings.search.comparison_limit)),
            "currency": {"reference": table.reference, "rates_fixed": True},
            "map": {
                "radius_km": radius_km if user is not None else None,
                "zoom": zoom_for_radius(
                    radius_km, base_zoom=settings.map.base_zoom, min_zoom=settings.map.min_zoom
                )
                if user is not None
                else None,
                "location_source": "request"
                if request.user_location is not None
                else ("fallback" if user is not None else None),
            },
            "settings_snapshot": {
                "overrides_enabled": bool(request.settings_overrides),
                "settings_overrides": request.settings_overrides or None,
                "max_results_per_source": int(settings.search.max_results_per_source),
            },
            "warnings": warnings,
            "timings_ms": timings_ms,
        }
        if self._amazon is not None and request.query:
            meta["storefront_urls"] = {"marketplaceA": self._amazon.storefront_url(request.query)}

        return SearchResult(
            generated_at=datetime.now(timezone.utc),
            request_token=token,
            query=request,
            sources=results,
            merged=merged,
            markers=markers,
            overlay=overlay,
            meta=meta,
        )

    def _to_source_result(
        self,
        source: SourceTag,
        task: asyncio.Task[SourceResponse],
        user: Coordinate | None,
        table: CurrencyTable,
        *,
        limit: int,
    ) -> SourceResult:
        try:
            response = task.result()
        except Exception as exc:
            logger.warning("%s fetch raised unexpectedly: %s", source, exc)
            return SourceResult(source=source, loading=False, error=str(exc) or exc.__class__.__name__)

        listings = normalize_batch(response.data[:limit], source, user, currency=table)
        error = None if response.success else (response.error or f"{source} search failed")
        return SourceResult(source=source, listings=listings, loading=False, error=error)

    def _desired_markers(
        self,
        request: SearchRequest,
        merged: list[Listing],
        user: Coordinate | None,
        radius_km: float,
        table: CurrencyTable,
    ) -> list[MapMarker]:
        # No query: "stores near me" discovery around the shopper.
        if not request.query and user is not None:
            stores = self._local.stores_near(user, radius_km, request.category)
            return markers_from_stores(stores)
        return markers_from_listings(merged, currency=table.reference)

    def _render_map(
        self, markers: list[MapMarker], user: Coordinate | None, radius_km: float, settings: Settings
    ) -> None:
        if self.map_view is None:
            return
        self.map_view.show_markers(markers)
        self.map_view.show_radius(user, radius_km, segments=settings.map.overlay_segments)

    def apply_criteria(self, criteria: FilterCriteria) -> list[Listing]:
        """Re-filter the latest results without refetching; updates markers in place."""
        self.criteria = criteria
        merged = merge_sources(self.results, criteria)
        if self.request is None or self.map_view is None or self.map_view.closed:
            return merged
        request = self.request.model_copy(update={"criteria": criteria})
        radius_km = self._radius_km or float(self._settings.search.default_radius_km)
        table = self._currency or CurrencyTable.from_settings(self._settings)
        self.map_view.show_markers(self._desired_markers(request, merged, self.user_location, radius_km, table))
        return merged

    def filtered_sources(self) -> dict[str, SourceResult]:
        return filter_sources(self.results, self.criteria)

    def close(self) -> None:
        """Cancel in-flight fetches and tear down the map; later results are dropped."""
        if self.closed:
            return
        self._token += 1
        self._cancel_tasks()
        if self.map_view is not None:
            self.map_view.close()
        self.closed = True


def run_search(
    request: SearchRequest,
    *,
    settings: Settings | None = None,
    session: SearchSession | None = None,
) -> SearchResult:
    """Synchronous helper for CLI and scripts."""
    owned = session is None
    session = session or SearchSession.from_settings(settings)
    try:
        result = asyncio.run(session.search(request))
    finally:
        if owned:
            session.close()
    if result is None:
        raise RuntimeError("search was superseded before it finished")
    return result
