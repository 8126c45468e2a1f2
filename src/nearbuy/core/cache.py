"""
On-disk JSON cache for marketplace responses.

Entries live under `.cache/nearbuy/<namespace>/<sha256>.json` as an envelope of
`created_at_unix`, `ttl_seconds` and `value`. Freshness is decided on read, and an
expired envelope is kept on disk so a failing upstream can still be answered with
the last known results (stale-if-error).

Repeated searches for the same term therefore cost no RapidAPI/eBay quota until
the TTL runs out.
"""

from __future__ import annotations

import contextvars
import json
import time
from contextlib import contextmanager
from dataclasses import dataclass
from hashlib import sha256
from pathlib import Path
from typing import Any, Callable, Iterator, Literal

CacheMode = Literal["cache", "live", "stale"]

_READ_ERRORS = (OSError, ValueError, KeyError, TypeError)


@dataclass(frozen=True)
class CacheEntry:
    created_at_unix: int
    ttl_seconds: int
    value: Any

    def is_fresh(self, now: float, ttl_seconds: int | None = None) -> bool:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        return int(now) - self.created_at_unix <= ttl

    def meta(self) -> dict[str, int]:
        return {"created_at_unix": self.created_at_unix, "ttl_seconds": self.ttl_seconds}


@dataclass
class CacheStats:
    """Cache usage for one search (hits, misses, writes, stale answers)."""

    hits: int = 0
    misses: int = 0
    expired: int = 0
    sets: int = 0
    stale_fallbacks: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "expired": self.expired,
            "sets": self.sets,
            "stale_fallbacks": self.stale_fallbacks,
        }


_cache_stats_var: contextvars.ContextVar[CacheStats | None] = contextvars.ContextVar(
    "nearbuy_cache_stats", default=None
)


@contextmanager
def record_cache_stats() -> Iterator[CacheStats]:
    """Collect cache stats for everything run in this context (tasks inherit it)."""
    stats = CacheStats()
    token = _cache_stats_var.set(stats)
    try:
        yield stats
    finally:
        _cache_stats_var.reset(token)


def _bump(field: str) -> None:
    stats = _cache_stats_var.get()
    if stats is not None:
        setattr(stats, field, getattr(stats, field) + 1)


@dataclass(frozen=True)
class Resolved:
    """Outcome of `FileCache.resolve`: the value plus where it came from."""

    value: Any
    mode: CacheMode
    entry: CacheEntry | None


class FileCache:
    def __init__(self, base_dir: Path, enabled: bool = True, default_ttl_seconds: int = 3600):
        self.base_dir = Path(base_dir)
        self.enabled = enabled
        self.default_ttl_seconds = default_ttl_seconds

    def _path(self, namespace: str, key: str) -> Path:
        digest = sha256(f"{namespace}:{key}".encode("utf-8")).hexdigest()
        return self.base_dir / namespace / f"{digest}.json"

    def peek(self, namespace: str, key: str) -> CacheEntry | None:
        """Read the envelope regardless of age; unreadable files count as absent."""
        if not self.enabled:
            return None
        path = self._path(namespace, key)
        if not path.exists():
            return None
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            return CacheEntry(
                created_at_unix=int(raw["created_at_unix"]),
                ttl_seconds=int(raw["ttl_seconds"]),
                value=raw["value"],
            )
        except _READ_ERRORS:
            return None

    def lookup(self, namespace: str, key: str, ttl_seconds: int | None = None) -> CacheEntry | None:
        """Fresh envelope or None; records a hit, miss or expiry."""
        if not self.enabled:
            return None
        entry = self.peek(namespace, key)
        if entry is None:
            _bump("misses")
            return None
        if not entry.is_fresh(time.time(), ttl_seconds):
            _bump("misses")
            _bump("expired")
            return None
        _bump("hits")
        return entry

    def get(self, namespace: str, key: str, ttl_seconds: int | None = None) -> Any | None:
        entry = self.lookup(namespace, key, ttl_seconds)
        return entry.value if entry is not None else None

    def get_stale(self, namespace: str, key: str) -> Any | None:
        entry = self.peek(namespace, key)
        return entry.value if entry is not None else None

    def set(self, namespace: str, key: str, value: Any, ttl_seconds: int | None = None) -> CacheEntry | None:
        """Write `value` (JSON-serializable) atomically via a temp file."""
        if not self.enabled:
            return None
        entry = CacheEntry(
            created_at_unix=int(time.time()),
            ttl_seconds=int(ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds),
            value=value,
        )
        path = self._path(namespace, key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps({**entry.meta(), "value": value}, ensure_ascii=False), encoding="utf-8")
        tmp.replace(path)
        _bump("sets")
        return entry

    def invalidate(self, namespace: str, key: str) -> None:
        if self.enabled:
            self._path(namespace, key).unlink(missing_ok=True)

    def resolve(
        self,
        namespace: str,
        key: str,
        builder: Callable[[], Any],
        ttl_seconds: int | None = None,
        *,
        stale_if_error: bool = False,
        stale_predicate: Callable[[Exception], bool] | None = None,
    ) -> Resolved:
        """Fresh cache entry, else `builder()` (stored), else an expired entry on error.

        The stale fallback applies only when `stale_if_error` is set and
        `stale_predicate(exc)` (if given) accepts the builder's exception.
        """
        entry = self.lookup(namespace, key, ttl_seconds)
        if entry is not None:
            return Resolved(entry.value, "cache", entry)
        try:
            value = builder()
        except Exception as exc:
            if stale_if_error and (stale_predicate is None or stale_predicate(exc)):
                stale = self.peek(namespace, key)
                if stale is not None:
                    _bump("stale_fallbacks")
                    return Resolved(stale.value, "stale", stale)
            raise
        return Resolved(value, "live", self.set(namespace, key, value, ttl_seconds=ttl_seconds))

    def get_or_set(
        self,
        namespace: str,
        key: str,
        builder: Callable[[], Any],
        ttl_seconds: int | None = None,
        *,
        stale_if_error: bool = False,
        stale_predicate: Callable[[Exception], bool] | None = None,
    ) -> Any:
        return self.resolve(
            namespace,
            key,
            builder,
            ttl_seconds,
            stale_if_error=stale_if_error,
            stale_predicate=stale_predicate,
        ).value
