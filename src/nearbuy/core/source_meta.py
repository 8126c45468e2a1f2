"""
Per-request source status capture.

Marketplace adapters report how each source was served during a search:
- mode: live/cache/stale/none/error
- the cache envelope timestamps (created_at_unix, ttl_seconds)
- optional details (TTL, error message)

The search session attaches this to `SearchResult.meta["sources"]` so the UI can
show source-scoped notices without guessing.
"""

from __future__ import annotations

import contextvars
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator


@dataclass
class SourceMeta:
    sources: dict[str, dict[str, Any]] = field(default_factory=dict)

    def record(self, name: str, payload: dict[str, Any]) -> None:
        if not name:
            return
        self.sources[name] = dict(payload)


_source_meta_var: contextvars.ContextVar[SourceMeta | None] = contextvars.ContextVar(
    "nearbuy_source_meta", default=None
)


def record_source_status(name: str, payload: dict[str, Any]) -> None:
    meta = _source_meta_var.get()
    if not meta:
        return
    meta.record(name, payload)


@contextmanager
def capture_source_meta() -> Iterator[SourceMeta]:
    meta = SourceMeta()
    token = _source_meta_var.set(meta)
    try:
        yield meta
    finally:
        _source_meta_var.reset(token)
