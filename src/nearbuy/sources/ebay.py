"""
Marketplace B ingestion client (eBay Browse API).

Auth is the OAuth client-credentials grant: the app token is requested with HTTP
Basic auth and kept until shortly before `expires_in`. A 401 on search drops the
token and retries once.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from nearbuy.config.settings import Settings
from nearbuy.core.cache import FileCache
from nearbuy.core.http import describe_http_error, get_json, post_form
from nearbuy.exceptions import CredentialMissing
from nearbuy.sources.base import SourceResponse, fetch_cached
from nearbuy.sources.credentials import CredentialService

logger = logging.getLogger(__name__)

SOURCE_NAME = "marketplaceB:ebay"


def _to_record(item: dict[str, Any]) -> dict[str, Any]:
    image = item.get("image")
    location = item.get("itemLocation")
    return {
        "itemId": item.get("itemId"),
        "title": item.get("title") or "",
        "price": item.get("price"),
        "image": image.get("imageUrl") if isinstance(image, dict) else None,
        "condition": item.get("condition"),
        "location": location.get("country") if isinstance(location, dict) else None,
        "url": item.get("itemWebUrl"),
    }


def extract_items(payload: Any) -> list[dict[str, Any]]:
    """Map a Browse `item_summary/search` response to flat records."""
    if not isinstance(payload, dict):
        return []
    items = payload.get("itemSummaries")
    if not isinstance(items, list):
        return []
    return [_to_record(i) for i in items if isinstance(i, dict)]


class EbayClient:
    """eBay Browse search client with token management and caching."""

    def __init__(self, settings: Settings, cache: FileCache, credentials: CredentialService):
        self._settings = settings
        self._cache = cache
        self._credentials = credentials
        self._access_token: str | None = None
        self._token_expires_at_unix: int = 0

    def _get_access_token(self) -> str:
        """Get a valid app token, refreshing it when needed."""
        now = int(time.time())
        if self._access_token and now < self._token_expires_at_unix - 30:
            return self._access_token

        client_id, client_secret = self._credentials.ebay_credentials()
        cfg = self._settings.marketplaces.ebay
        payload = post_form(
            cfg.token_url,
            data={"grant_type": "client_credentials", "scope": cfg.scope},
            auth=(client_id, client_secret),
            timeout_seconds=self._settings.app.http_timeout_seconds,
        )
        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        expires_in = int(payload.get("expires_in", 0)) if isinstance(payload, dict) else 0
        if not access_token or expires_in <= 0:
            raise RuntimeError("eBay token response is missing access_token/expires_in.")

        self._access_token = str(access_token)
        self._token_expires_at_unix = now + expires_in
        return self._access_token

    def _fetch(self, query: str, limit: int) -> list[dict[str, Any]]:
        cfg = self._settings.marketplaces.ebay
        refreshed_token = False
        while True:
            token = self._get_access_token()
            headers = {
                "Authorization": f"Bearer {token}",
                "X-EBAY-C-MARKETPLACE-ID": cfg.marketplace_id,
                "X-EBAY-C-ENDUSERCTX": cfg.end_user_context,
            }
            try:
                logger.info("Searching eBay for %r", query)
                payload = get_json(
                    cfg.base_url,
                    params={"q": query, "limit": limit},
                    headers=headers,
                    timeout_seconds=self._settings.app.http_timeout_seconds,
                )
            except httpx.HTTPStatusError as exc:
                if exc.response.status_code == 401 and not refreshed_token:
                    logger.info("eBay request unauthorized; refreshing token and retrying.")
                    self._access_token = None
                    self._token_expires_at_unix = 0
                    refreshed_token = True
                    continue
                raise
            return extract_items(payload)

    def search_products(self, query: str) -> SourceResponse:
        term = query.strip()
        if not term:
            return SourceResponse.ok([])

        try:
            self._credentials.ebay_credentials()
        except CredentialMissing as exc:
            logger.warning("eBay search skipped: %s", exc)
            return SourceResponse.failed(str(exc))

        cfg = self._settings.marketplaces.ebay
        limit = int(self._settings.search.max_results_per_source)
        try:
            records = fetch_cached(
                self._cache,
                namespace="ebay",
                key=f"search:{cfg.marketplace_id}:{limit}:{term.casefold()}",
                source_name=SOURCE_NAME,
                ttl_seconds=int(cfg.cache_ttl_seconds),
                builder=lambda: self._fetch(term, limit),
            )
        except Exception as exc:
            reason = describe_http_error(exc)
            logger.warning("eBay search failed for %r: %s", term, reason)
            return SourceResponse.failed(f"eBay search failed: {reason}")
        return SourceResponse.ok(records if isinstance(records, list) else [])
