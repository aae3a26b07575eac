from math import radians, cos, sin, asin, sqrt
from typing import Optional, Tuple
from .config import settings

EARTH_RADIUS_KM = 6371.0
KM_PER_DEGREE = 111.0


def haversine_km(a: Tuple[float, float], b: Tuple[float, float]) -> float:
    lat1, lon1 = a
    lat2, lon2 = b
    # convert decimal degrees to radians
    lon1, lat1, lon2, lat2 = map(radians, [lon1, lat1, lon2, lat2])
    # haversine
    dlon = lon2 - lon1
    dlat = lat2 - lat1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    c = 2 * asin(sqrt(a))
    return EARTH_RADIUS_KM * c


def is_valid_coordinate(lat: Optional[float], lon: Optional[float]) -> bool:
    """Range check that also rejects (0, 0), the usual sign of an unset GPS fix."""
    if lat is None or lon is None:
        return False
    if not (-90 <= lat <= 90 and -180 <= lon <= 180):
        return False
    return not (lat == 0.0 and lon == 0.0)


def bounding_box(lat: float, lon: float, radius_km: float) -> Tuple[float, float, float, float]:
    """Return (min_lat, max_lat, min_lon, max_lon) of a square enclosing the radius."""
    lat_delta = radius_km / KM_PER_DEGREE
    lon_delta = radius_km / (KM_PER_DEGREE * cos(radians(lat)))
    return lat - lat_delta, lat + lat_delta, lon - lon_delta, lon + lon_delta


def in_service_area(lat: float, lon: float) -> bool:
    return (
        settings.SERVICE_AREA_MIN_LAT <= lat <= settings.SERVICE_AREA_MAX_LAT
        and settings.SERVICE_AREA_MIN_LON <= lon <= settings.SERVICE_AREA_MAX_LON
    )
