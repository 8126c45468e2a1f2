import math

import pytest

from nearbuy.core.geo import GeoPoint, haversine_km, is_valid_point, validate_point
from nearbuy.exceptions import InvalidCoordinate


def test_haversine_same_point_is_zero():
    p = GeoPoint(lat=25.2048, lon=55.2708)
    assert haversine_km(p, p) == 0


def test_haversine_is_symmetric():
    a = GeoPoint(lat=25.2048, lon=55.2708)
    b = GeoPoint(lat=24.4539, lon=54.3773)
    assert haversine_km(a, b) == pytest.approx(haversine_km(b, a))


def test_haversine_one_degree_of_longitude_at_equator():
    d = haversine_km(GeoPoint(lat=0, lon=0), GeoPoint(lat=0, lon=1))
    assert d == pytest.approx(111.19, rel=0.01)


def test_haversine_antipodal_points_stay_finite():
    d = haversine_km(GeoPoint(lat=0, lon=0), GeoPoint(lat=0, lon=180))
    assert math.isfinite(d)
    assert d == pytest.approx(math.pi * 6371.0, rel=1e-6)


@pytest.mark.parametrize(
    "lat,lon",
    [(91, 0), (-90.5, 0), (0, 180.01), (float("nan"), 0), (0, float("inf")), (True, 0), ("x", 0), (None, 0)],
)
def test_invalid_points_are_rejected(lat, lon):
    assert not is_valid_point(lat, lon)
    with pytest.raises(InvalidCoordinate):
        validate_point(lat, lon)


def test_validate_point_returns_geopoint():
    assert validate_point("25.5", 55) == GeoPoint(lat=25.5, lon=55.0)
