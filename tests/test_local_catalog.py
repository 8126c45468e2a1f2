import json

from nearbuy.domain.models import Coordinate
from nearbuy.listings.normalize import CurrencyTable, normalize_batch
from nearbuy.sources.local import Catalog, LocalCatalog

USER = Coordinate(latitude=25.2048, longitude=55.2708)
KM_PER_DEG_LAT = 111.19


def _catalog() -> LocalCatalog:
    stores = [
        {"id": f"s{km}", "name": f"Store {km}", "category": "Electronics", "retailer": f"Retailer {km}",
         "latitude": 25.2048 + km / KM_PER_DEG_LAT, "longitude": 55.2708}
        for km in (40, 15, 2)
    ]
    stores.append({"id": "s-home", "name": "Home Store", "category": "Home", "latitude": 25.21, "longitude": 55.27})
    stores.append({"id": "s-nowhere", "name": "Pop-up", "category": "Electronics"})
    products = [
        {"id": "p1", "name": "Wireless Speaker", "price": "349.00", "category": "Electronics", "store_id": "s2"},
        {"id": "p2", "name": "Speaker Stand", "price": "99", "category": "Home", "store_id": "s-home"},
        {"id": "p3", "name": "Headphones", "description": "Over-ear, great speaker drivers", "price": "799", "category": "Electronics", "store_id": "s40"},
        {"id": "p4", "name": "Charger", "price": "49", "category": "Electronics", "store_id": "s15"},
    ]
    return LocalCatalog.from_catalog(Catalog.model_validate({"stores": stores, "products": products}))


def test_stores_near_filters_by_radius_and_sorts_nearest_first():
    stores = _catalog().stores_near(USER, 20, category="electronics")

    assert [s.id for s in stores] == ["s2", "s15"]
    assert stores[0].distance_km < stores[1].distance_km <= 20


def test_search_rows_match_name_description_and_join_store():
    rows = _catalog().search_rows("SPEAKER")

    assert [r["id"] for r in rows] == ["p1", "p2", "p3"]
    assert rows[0]["stores"]["name"] == "Store 2"
    assert rows[0]["retailers"] == {"name": "Retailer 2"}


def test_search_rows_respect_category():
    rows = _catalog().search_rows("speaker", category="Home")
    assert [r["id"] for r in rows] == ["p2"]


def test_rows_normalize_to_listings_with_distance():
    response = _catalog().search_products("speaker", "Electronics")
    listings = normalize_batch(response.data, "local", USER, currency=CurrencyTable())

    assert response.success
    assert [l.id for l in listings] == ["p1", "p3"]
    assert listings[0].retailer_name == "Retailer 2"
    assert round(listings[0].distance_km) == 2


def test_missing_catalog_file_is_a_source_error(tmp_path):
    resp = LocalCatalog(tmp_path / "missing.json").search_products("speaker")
    assert not resp.success
    assert "unavailable" in resp.error


def test_catalog_loads_from_json_file(tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text(
        json.dumps({"stores": [{"id": "s", "name": "S", "latitude": 25.2, "longitude": 55.27}], "products": []}),
        encoding="utf-8",
    )
    stores = LocalCatalog(path).stores_near(USER, 5)
    assert [s.id for s in stores] == ["s"]
