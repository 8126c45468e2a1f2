from starlette.testclient import TestClient

from nearbuy.api.app import app
from nearbuy.config.settings import get_settings
from nearbuy.sources.base import SourceResponse
from nearbuy.sources.credentials import CredentialService
from nearbuy.sources.local import Catalog, LocalCatalog


def _local_catalog() -> LocalCatalog:
    return LocalCatalog.from_catalog(
        Catalog.model_validate(
            {
                "stores": [
                    {"id": "s1", "name": "Sharaf DG", "category": "Electronics", "latitude": 25.1972, "longitude": 55.2744},
                    {"id": "s2", "name": "Carrefour Mall of the Emirates", "category": "Grocery", "latitude": 25.1181, "longitude": 55.2006},
                ],
                "products": [
                    {"id": "p1", "name": "Bluetooth Speaker", "price": "349.00", "category": "Electronics", "store_id": "s1"},
                ],
            }
        )
    )


class _StubAmazon:
    def search_products(self, query: str) -> SourceResponse:
        return SourceResponse.ok([{"asin": "B1", "title": "Speaker", "price": "$10.00"}])

    def storefront_url(self, query: str) -> str:
        return f"https://www.amazon.ae/s?k={query}"


class _StubEbay:
    def search_products(self, query: str) -> SourceResponse:
        return SourceResponse.failed("eBay credentials are not configured: Set EBAY_CLIENT_ID.")


def _patch_clients(monkeypatch):
    # Patch the cached clients factory so API tests stay offline.
    import nearbuy.api.routes as routes

    monkeypatch.setattr(routes, "_clients", lambda: (_local_catalog(), _StubAmazon(), _StubEbay()))


def test_api_search_returns_sources_markers_and_feature_collection(monkeypatch):
    _patch_clients(monkeypatch)
    payload = {"query": "speaker", "user_location": {"lat": 25.2048, "lng": 55.2708}, "radius_km": 10}

    with TestClient(app) as c:
        resp = c.post("/api/search", json=payload)

    assert resp.status_code == 200
    data = resp.json()
    assert set(data["sources"]) == {"local", "marketplaceA", "marketplaceB"}
    assert data["sources"]["marketplaceB"]["error"].startswith("eBay credentials")
    assert [l["id"] for l in data["merged"]] == ["p1", "B1"]
    assert [m["id"] for m in data["markers"]] == ["listing:p1"]
    features = data["meta"]["map"]["feature_collection"]["features"]
    assert sorted(f["geometry"]["type"] for f in features) == ["Point", "Polygon"]
    assert data["meta"]["warnings"][0]["code"] == "SOURCE_UNAVAILABLE"


def test_api_search_rejects_disallowed_overrides(monkeypatch):
    _patch_clients(monkeypatch)
    payload = {"query": "speaker", "settings_overrides": {"currency": {"reference": "USD"}}}

    with TestClient(app) as c:
        resp = c.post("/api/search", json=payload)

    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "VALIDATION_ERROR"


def test_api_filter_listings_is_pure_refilter():
    listings = [
        {"id": "a", "display_name": "Zebra lamp", "price": "120", "source_tag": "local", "distance_km": 2.0},
        {"id": "b", "display_name": "Apple lamp", "price": "80", "source_tag": "marketplaceA"},
        {"id": "c", "display_name": "Mid lamp", "price": "600", "source_tag": "local", "distance_km": 1.0},
    ]
    payload = {"listings": listings, "criteria": {"price_max": "500", "sort_key": "nameAsc"}}

    with TestClient(app) as c:
        resp = c.post("/api/listings/filter", json=payload)

    assert resp.status_code == 200
    data = resp.json()
    assert data["count"] == 2
    assert [l["id"] for l in data["listings"]] == ["b", "a"]


def test_api_nearby_stores_filters_by_category(monkeypatch):
    _patch_clients(monkeypatch)

    with TestClient(app) as c:
        resp = c.get("/api/stores/nearby", params={"lat": 25.2048, "lon": 55.2708, "radius_km": 20, "category": "electronics"})

    assert resp.status_code == 200
    data = resp.json()
    assert [s["id"] for s in data["stores"]] == ["s1"]
    assert data["markers"][0]["id"] == "store:s1"
    assert data["radius_km"] == 20


def test_api_map_overlay_returns_closed_ring_and_zoom():
    with TestClient(app) as c:
        resp = c.get("/api/map/overlay", params={"lat": 25.2048, "lon": 55.2708, "radius_km": 5, "segments": 8})

    assert resp.status_code == 200
    data = resp.json()
    ring = data["feature"]["geometry"]["coordinates"][0]
    assert len(ring) == 9
    assert ring[0] == ring[-1]
    assert data["zoom"] == 13.0


def test_api_map_overlay_rejects_invalid_center():
    with TestClient(app) as c:
        out_of_range = c.get("/api/map/overlay", params={"lat": 95, "lon": 55.27, "radius_km": 5})
        at_pole = c.get("/api/map/overlay", params={"lat": 90, "lon": 0, "radius_km": 5})
        bad_radius = c.get("/api/map/overlay", params={"lat": 25.2, "lon": 55.27, "radius_km": 0})

    assert out_of_range.status_code == 400
    assert at_pole.status_code == 400
    assert bad_radius.status_code == 400


def test_api_map_token_prefers_environment_and_reports_missing(monkeypatch):
    import nearbuy.api.routes as routes

    settings = get_settings()
    monkeypatch.setattr(
        routes, "_credentials", lambda: CredentialService(settings, loader=lambda name: {"mapbox_token": "pk.test"}.get(name))
    )
    with TestClient(app) as c:
        ok = c.get("/api/map/token")
    assert ok.status_code == 200
    assert ok.json() == {"token": "pk.test", "source": "env"}

    monkeypatch.setattr(routes, "_credentials", lambda: CredentialService(settings, loader=lambda name: None))
    with TestClient(app) as c:
        missing = c.get("/api/map/token")
    assert missing.status_code == 503
    assert missing.json()["detail"]["code"] == "CREDENTIAL_MISSING"


def test_api_settings_hides_credentials():
    with TestClient(app) as c:
        resp = c.get("/api/settings")

    assert resp.status_code == 200
    data = resp.json()
    assert data["currency"]["reference"] == "AED"
    assert data["map"]["overlay_segments"] == 64
    text = resp.text
    for secret in ("api_key", "client_id", "client_secret", "mapbox_token", "fallback_token"):
        assert secret not in text


def test_api_rejects_radius_above_the_cap(monkeypatch):
    _patch_clients(monkeypatch)

    with TestClient(app) as c:
        nearby = c.get("/api/stores/nearby", params={"lat": 25.2, "lon": 55.27, "radius_km": 5000})
        overlay = c.get("/api/map/overlay", params={"lat": 25.2, "lon": 55.27, "radius_km": 5000})
        search = c.post("/api/search", json={"query": "speaker", "radius_km": 5000})

    assert nearby.status_code == 422
    assert overlay.status_code == 422
    assert search.status_code == 422
