import math

import pytest

from nearbuy.domain.models import Coordinate
from nearbuy.map.overlay import SearchRadiusOverlay, circle_polygon, polygon_to_geojson, zoom_for_radius
from nearbuy.map.surface import GeoJsonSurface


def test_circle_polygon_is_closed_with_segments_plus_one_points():
    polygon = circle_polygon(Coordinate(latitude=25, longitude=55), 5)

    assert len(polygon.ring) == 65
    assert polygon.ring[0] == polygon.ring[-1]


def test_circle_polygon_matches_equirectangular_offsets():
    center = Coordinate(latitude=25, longitude=55)
    polygon = circle_polygon(center, 5, segments=4)

    east, north = polygon.ring[0], polygon.ring[1]
    assert east.longitude - 55 == pytest.approx(5 / (111.320 * math.cos(math.radians(25))))
    assert east.latitude == pytest.approx(25)
    assert north.latitude - 25 == pytest.approx(5 / 110.574)


@pytest.mark.parametrize("radius", [0, -1, float("nan")])
def test_circle_polygon_rejects_non_positive_radius(radius):
    with pytest.raises(ValueError):
        circle_polygon(Coordinate(latitude=25, longitude=55), radius)


def test_geojson_uses_lon_lat_order():
    feature = polygon_to_geojson(circle_polygon(Coordinate(latitude=25, longitude=55), 5, segments=8))
    first = feature["geometry"]["coordinates"][0][0]

    assert feature["geometry"]["type"] == "Polygon"
    assert first[0] > 55 and first[1] == pytest.approx(25)


def test_zoom_for_radius_matches_fly_to_rule():
    assert zoom_for_radius(2.5) == 14
    assert zoom_for_radius(10) == pytest.approx(12)
    assert zoom_for_radius(500) == 9


def test_overlay_replaces_previous_polygon_and_clears():
    surface = GeoJsonSurface()
    overlay = SearchRadiusOverlay(surface, segments=16)

    overlay.update(Coordinate(latitude=25, longitude=55), 5)
    overlay.update(Coordinate(latitude=25.1, longitude=55.1), 10)

    assert surface.polygon_count == 1
    assert overlay.radius_km == 10
    assert len(overlay.polygon.ring) == 17

    overlay.clear()
    assert surface.polygon_count == 0
    assert not overlay.active
