import pytest
from fedotaxi import geo


def test_haversine_one_degree_of_latitude():
    d = geo.haversine_km((0.0, -78.0), (1.0, -78.0))
    assert d == pytest.approx(111.195, abs=0.01)


def test_haversine_same_point_is_zero():
    assert geo.haversine_km((-0.18, -78.46), (-0.18, -78.46)) == 0.0


def test_haversine_is_symmetric():
    a, b = (-0.1807, -78.4678), (-2.1700, -79.9224)
    assert geo.haversine_km(a, b) == pytest.approx(geo.haversine_km(b, a))


@pytest.mark.parametrize("lat,lon,ok", [
    (-0.18, -78.46, True),
    (90, 180, True),
    (-90, -180, True),
    (0.0, 0.0, False),
    (0.0, 10.0, True),
    (91, 0, False),
    (0, 181, False),
    (None, 10, False),
    (10, None, False),
])
def test_is_valid_coordinate(lat, lon, ok):
    assert geo.is_valid_coordinate(lat, lon) is ok


def test_bounding_box_contains_radius():
    min_lat, max_lat, min_lon, max_lon = geo.bounding_box(-0.18, -78.46, 11.1)
    assert max_lat - min_lat == pytest.approx(0.2)
    assert min_lon < -78.46 < max_lon
    # a point right at the radius to the east falls inside the box
    assert min_lon <= -78.46 + 0.0999 <= max_lon


def test_service_area():
    assert geo.in_service_area(-0.18, -78.46)
    assert not geo.in_service_area(40.4, -3.7)
