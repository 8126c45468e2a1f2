from decimal import Decimal

import pytest

from nearbuy.domain.models import Coordinate, Listing, Store
from nearbuy.map.view import MapView, markers_from_listings, markers_from_stores

DUBAI_MALL = Coordinate(latitude=25.1972, longitude=55.2744)


def test_only_listings_with_a_store_location_become_markers():
    listings = [
        Listing(
            id="p1",
            display_name="Speaker",
            price=Decimal("349"),
            source_tag="local",
            source_coordinate=DUBAI_MALL,
            distance_km=0.9,
            retailer_name="Sharaf DG",
        ),
        Listing(id="B1", display_name="Speaker", price=Decimal("95.38"), source_tag="marketplaceA"),
    ]

    markers = markers_from_listings(listings)

    assert [m.id for m in markers] == ["listing:p1"]
    assert markers[0].description == "Sharaf DG | AED 349.00 | 0.9 km away"


def test_store_markers_carry_category_and_distance():
    stores = [Store(id="s1", name="Sharaf DG", coordinate=DUBAI_MALL, category="Electronics", distance_km=1.25)]
    assert markers_from_stores(stores)[0].description == "Electronics | 1.2 km away"


def test_close_tears_down_markers_and_overlay():
    view = MapView()
    view.show_markers(markers_from_stores([Store(id="s1", name="Shop", coordinate=DUBAI_MALL)]))
    view.show_radius(DUBAI_MALL, 10)

    view.close()
    view.close()

    assert view.surface.marker_count == 0
    assert view.surface.polygon_count == 0
    with pytest.raises(RuntimeError):
        view.show_markers([])


def test_show_radius_without_center_removes_overlay():
    view = MapView()
    view.show_radius(DUBAI_MALL, 10)
    assert view.show_radius(None, None) is None
    assert view.surface.polygon_count == 0
