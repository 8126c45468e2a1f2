import pytest

from nearbuy.core.cache import FileCache, record_cache_stats


def test_file_cache_stale_if_error_returns_expired_value(monkeypatch, tmp_path):
    cache = FileCache(tmp_path, enabled=True, default_ttl_seconds=1)

    monkeypatch.setattr("nearbuy.core.cache.time.time", lambda: 0)
    cache.set("amazon", "search:US:speaker", [{"asin": "B1"}], ttl_seconds=1)

    monkeypatch.setattr("nearbuy.core.cache.time.time", lambda: 100)

    def builder():
        raise RuntimeError("upstream down")

    with record_cache_stats() as stats:
        val = cache.get_or_set(
            "amazon",
            "search:US:speaker",
            builder,
            ttl_seconds=1,
            stale_if_error=True,
            stale_predicate=lambda exc: isinstance(exc, RuntimeError),
        )
    assert val == [{"asin": "B1"}]
    assert stats.stale_fallbacks == 1


def test_file_cache_stale_if_error_respects_predicate(monkeypatch, tmp_path):
    cache = FileCache(tmp_path, enabled=True, default_ttl_seconds=1)

    monkeypatch.setattr("nearbuy.core.cache.time.time", lambda: 0)
    cache.set("ns", "k", {"v": 1}, ttl_seconds=1)

    monkeypatch.setattr("nearbuy.core.cache.time.time", lambda: 100)

    def builder():
        raise RuntimeError("upstream down")

    with pytest.raises(RuntimeError):
        cache.get_or_set(
            "ns",
            "k",
            builder,
            ttl_seconds=1,
            stale_if_error=True,
            stale_predicate=lambda exc: isinstance(exc, ValueError),
        )


def test_file_cache_invalidate_drops_entry(tmp_path):
    cache = FileCache(tmp_path, enabled=True)
    cache.set("ebay", "k", {"v": 1})

    cache.invalidate("ebay", "k")

    assert cache.get("ebay", "k") is None
    assert cache.get_stale("ebay", "k") is None


def test_file_cache_resolve_reports_where_the_value_came_from(monkeypatch, tmp_path):
    cache = FileCache(tmp_path, enabled=True, default_ttl_seconds=60)
    monkeypatch.setattr("nearbuy.core.cache.time.time", lambda: 1000)

    with record_cache_stats() as stats:
        first = cache.resolve("amazon", "q", lambda: ["live"])
        second = cache.resolve("amazon", "q", lambda: ["unused"])

    assert (first.mode, first.value) == ("live", ["live"])
    assert (second.mode, second.value) == ("cache", ["live"])
    assert second.entry.meta() == {"created_at_unix": 1000, "ttl_seconds": 60}
    assert stats.as_dict() == {"hits": 1, "misses": 1, "expired": 0, "sets": 1, "stale_fallbacks": 0}


def test_disabled_cache_always_builds(tmp_path):
    cache = FileCache(tmp_path, enabled=False)
    calls = []

    def builder():
        calls.append(1)
        return {"n": len(calls)}

    assert cache.get_or_set("ns", "k", builder) == {"n": 1}
    assert cache.get_or_set("ns", "k", builder) == {"n": 2}
    assert not any(tmp_path.iterdir())
