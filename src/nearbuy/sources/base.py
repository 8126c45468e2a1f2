"""
Shared plumbing for listing sources.

Every marketplace adapter returns a `SourceResponse` instead of raising, and reads
through `fetch_cached` so the live/cache/stale/none status of each call ends up in
the per-search source metadata.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

import httpx

from nearbuy.core.cache import FileCache
from nearbuy.core.source_meta import record_source_status

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceResponse:
    success: bool
    data: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None

    @classmethod
    def ok(cls, data: list[dict[str, Any]]) -> "SourceResponse":
        return cls(success=True, data=list(data))

    @classmethod
    def failed(cls, error: str) -> "SourceResponse":
        return cls(success=False, data=[], error=error)


class ProductSource(Protocol):
    def search_products(self, query: str) -> SourceResponse: ...


def _stale_ok(exc: Exception) -> bool:
    return isinstance(exc, httpx.HTTPError)


def fetch_cached(
    cache: FileCache,
    *,
    namespace: str,
    key: str,
    source_name: str,
    ttl_seconds: int,
    builder: Callable[[], Any],
) -> Any:
    """Return a cached payload or build it live, falling back to stale data on HTTP errors."""
    try:
        resolved = cache.resolve(
            namespace,
            key,
            builder,
            ttl_seconds=ttl_seconds,
            stale_if_error=True,
            stale_predicate=_stale_ok,
        )
    except Exception as exc:
        record_source_status(source_name, {"mode": "none", "error": str(exc) or exc.__class__.__name__})
        raise

    status: dict[str, Any] = {"mode": resolved.mode}
    if resolved.entry is not None:
        status.update(resolved.entry.meta())
    record_source_status(source_name, status)
    if resolved.mode == "stale":
        logger.warning("%s upstream failed; serving stale cached results", source_name)
    return resolved.value
