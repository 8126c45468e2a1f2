"""
Marketplace A ingestion client (Amazon via the RapidAPI "real-time Amazon data" API).

`search_products` returns flat records (`asin, title, price, rating, reviews, image,
url`) that `nearbuy.listings.normalize` understands. Upstream failures and missing
credentials come back as a failed `SourceResponse`; they never raise.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote_plus

from nearbuy.config.settings import Settings
from nearbuy.core.cache import FileCache
from nearbuy.core.http import describe_http_error, get_json
from nearbuy.exceptions import CredentialMissing
from nearbuy.sources.base import SourceResponse, fetch_cached
from nearbuy.sources.credentials import CredentialService

logger = logging.getLogger(__name__)

SOURCE_NAME = "marketplaceA:amazon"


def _to_record(item: dict[str, Any]) -> dict[str, Any]:
    return {
        "asin": item.get("asin"),
        "title": item.get("product_title") or item.get("title") or "",
        "price": item.get("product_price") or item.get("price"),
        "currency": item.get("currency"),
        "rating": item.get("product_star_rating"),
        "reviews": item.get("product_num_ratings"),
        "image": item.get("product_photo") or item.get("image"),
        "url": item.get("product_url") or item.get("url"),
    }


def extract_products(payload: Any) -> list[dict[str, Any]]:
    """Pull the product list out of a RapidAPI search response."""
    if not isinstance(payload, dict):
        return []
    data = payload.get("data")
    products = data.get("products") if isinstance(data, dict) else payload.get("products")
    if not isinstance(products, list):
        return []
    return [_to_record(p) for p in products if isinstance(p, dict)]


class AmazonClient:
    """Searches Amazon listings and caches the normalized-ready records."""

    def __init__(self, settings: Settings, cache: FileCache, credentials: CredentialService):
        self._settings = settings
        self._cache = cache
        self._credentials = credentials

    def _fetch(self, query: str, key: str) -> list[dict[str, Any]]:
        cfg = self._settings.marketplaces.amazon
        logger.info("Searching Amazon for %r", query)
        payload = get_json(
            cfg.base_url,
            params={"query": query, "page": 1, "country": cfg.country, "sort_by": "RELEVANCE"},
            headers={"X-RapidAPI-Key": key, "X-RapidAPI-Host": cfg.host},
            timeout_seconds=self._settings.app.http_timeout_seconds,
        )
        if isinstance(payload, dict) and payload.get("status") not in (None, "OK"):
            raise ValueError(f"RapidAPI returned status {payload.get('status')!r}")
        return extract_products(payload)

    def search_products(self, query: str) -> SourceResponse:
        term = query.strip()
        if not term:
            return SourceResponse.ok([])

        try:
            key = self._credentials.rapidapi_key()
        except CredentialMissing as exc:
            logger.warning("Amazon search skipped: %s", exc)
            return SourceResponse.failed(str(exc))

        cfg = self._settings.marketplaces.amazon
        limit = int(self._settings.search.max_results_per_source)
        cache_key = f"search:{cfg.country}:{term.casefold()}"
        try:
            records = fetch_cached(
                self._cache,
                namespace="amazon",
                key=cache_key,
                source_name=SOURCE_NAME,
                ttl_seconds=int(cfg.cache_ttl_seconds),
                builder=lambda: self._fetch(term, key),
            )
        except Exception as exc:
            reason = describe_http_error(exc)
            logger.warning("Amazon search failed for %r: %s", term, reason)
            return SourceResponse.failed(f"Amazon search failed: {reason}")
        return SourceResponse.ok(records[:limit] if isinstance(records, list) else [])

    def storefront_url(self, query: str) -> str:
        return self._settings.marketplaces.amazon.storefront_search_url.format(query=quote_plus(query.strip()))
