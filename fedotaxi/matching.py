"""Driver discovery: Haversine radius search with escalating radii.

The distance filter runs inside the database. When the database cannot
evaluate the trigonometric expression (e.g. SQLite built without math
functions) the search falls back to a bounding-box query and the exact
distance is computed here.
"""
from typing import List, Optional, Tuple
from sqlalchemy import Float, and_, func, select
from sqlalchemy.exc import SQLAlchemyError
from .config import settings
from .errors import InvalidRequest
from .geo import EARTH_RADIUS_KM, bounding_box, haversine_km, is_valid_coordinate
from . import models
import logging

logger = logging.getLogger(__name__)

drivers = models.drivers
users = models.users

DRIVER_COLUMNS = [
    drivers.c.id,
    drivers.c.user_id,
    users.c.email,
    users.c.first_name,
    users.c.last_name,
    users.c.phone,
    users.c.active.label("user_active"),
    drivers.c.license_number,
    drivers.c.vehicle_plate,
    drivers.c.vehicle_model,
    drivers.c.vehicle_year,
    drivers.c.available,
    drivers.c.current_latitude,
    drivers.c.current_longitude,
]


def driver_select():
    return select(*DRIVER_COLUMNS).select_from(drivers.join(users, drivers.c.user_id == users.c.id))


def _eligible_clause():
    return and_(
        drivers.c.available.is_(True),
        users.c.active.is_(True),
        drivers.c.current_latitude.is_not(None),
        drivers.c.current_longitude.is_not(None),
        drivers.c.vehicle_plate.is_not(None),
        drivers.c.vehicle_model.is_not(None),
    )


def _distance_expr(lat: float, lon: float):
    dlat = func.radians(drivers.c.current_latitude - lat, type_=Float)
    dlon = func.radians(drivers.c.current_longitude - lon, type_=Float)
    half_dlat = func.sin(dlat / 2, type_=Float)
    half_dlon = func.sin(dlon / 2, type_=Float)
    a = half_dlat * half_dlat + (
        func.cos(func.radians(lat, type_=Float), type_=Float)
        * func.cos(func.radians(drivers.c.current_latitude, type_=Float), type_=Float)
        * half_dlon
        * half_dlon
    )
    return 2 * EARTH_RADIUS_KM * func.asin(func.sqrt(a, type_=Float), type_=Float)


def is_valid_for_assignment(driver: dict) -> bool:
    return bool(
        driver.get("available")
        and driver.get("user_active", True)
        and is_valid_coordinate(driver.get("current_latitude"), driver.get("current_longitude"))
        and driver.get("vehicle_plate")
        and driver.get("vehicle_model")
    )


async def _query_by_distance(conn, lat: float, lon: float, radius_km: float, limit: Optional[int]) -> List[dict]:
    distance = _distance_expr(lat, lon)
    stmt = (
        driver_select()
        .add_columns(distance.label("distance_km"))
        .where(_eligible_clause())
        .where(distance <= radius_km)
        .order_by(distance, drivers.c.id)
    )
    if limit:
        stmt = stmt.limit(limit)
    res = await conn.execute(stmt)
    return [dict(r._mapping) for r in res]


async def _query_by_bounding_box(conn, lat: float, lon: float, radius_km: float, limit: Optional[int]) -> List[dict]:
    min_lat, max_lat, min_lon, max_lon = bounding_box(lat, lon, radius_km)
    stmt = (
        driver_select()
        .where(_eligible_clause())
        .where(drivers.c.current_latitude.between(min_lat, max_lat))
        .where(drivers.c.current_longitude.between(min_lon, max_lon))
        .order_by(drivers.c.id)
    )
    res = await conn.execute(stmt)
    found = []
    for r in res:
        d = dict(r._mapping)
        d["distance_km"] = haversine_km((lat, lon), (d["current_latitude"], d["current_longitude"]))
        if d["distance_km"] <= radius_km:
            found.append(d)
    found.sort(key=lambda d: (d["distance_km"], d["id"]))
    return found[:limit] if limit else found


async def drivers_within(conn, lat: float, lon: float, radius_km: float, limit: Optional[int] = None) -> List[dict]:
    """Eligible drivers within `radius_km` of (lat, lon), closest first."""
    # savepoint: a rejected statement must not abort the request's transaction
    try:
        async with conn.begin_nested():
            found = await _query_by_distance(conn, lat, lon, radius_km, limit)
    except SQLAlchemyError as e:
        logger.warning("drivers_within: distance query failed (%s), using bounding box", e.__class__.__name__)
        found = await _query_by_bounding_box(conn, lat, lon, radius_km, limit)
    return [d for d in found if is_valid_for_assignment(d)]


async def find_driver_in_radius(conn, lat: float, lon: float, radius_km: float, exclude: Tuple[int, ...] = ()) -> Optional[dict]:
    for d in await drivers_within(conn, lat, lon, radius_km):
        if d["id"] not in exclude:
            return d
    return None


async def find_best_driver(conn, lat: float, lon: float, radius_km: Optional[float] = None,
                           exclude: Tuple[int, ...] = ()) -> Optional[dict]:
    """Closest eligible driver, searching each escalation radius in turn.

    With an explicit `radius_km` at or above the first escalation radius only
    that radius is searched.
    """
    if not is_valid_coordinate(lat, lon):
        logger.info("find_best_driver: invalid origin (%s,%s)", lat, lon)
        return None
    radii = settings.MATCH_RADII_KM
    if radius_km is not None and radius_km >= radii[0]:
        radii = [radius_km]
    for radius in radii:
        driver = await find_driver_in_radius(conn, lat, lon, radius, exclude)
        if driver:
            logger.info("find_best_driver: found driver=%s dist_km=%.3f radius_km=%s", driver["id"], driver["distance_km"], radius)
            return driver
        logger.debug("find_best_driver: no driver within %skm", radius)
    return None


async def nearby_drivers(conn, lat: float, lon: float, radius_km: float, limit: Optional[int] = None) -> List[dict]:
    if not is_valid_coordinate(lat, lon):
        raise InvalidRequest("Invalid coordinates")
    if radius_km <= 0 or radius_km > settings.max_radius_km:
        raise InvalidRequest("Radius must be greater than 0 and at most %s km" % settings.max_radius_km)
    found = await drivers_within(conn, lat, lon, radius_km, limit or settings.NEARBY_LIMIT)
    logger.info("nearby_drivers: (%s,%s) radius_km=%s found=%d", lat, lon, radius_km, len(found))
    return found


async def zone_availability(conn, lat: float, lon: float) -> List[dict]:
    """Available driver counts for each escalation radius."""
    if not is_valid_coordinate(lat, lon):
        raise InvalidRequest("Invalid coordinates")
    within_max = await drivers_within(conn, lat, lon, settings.max_radius_km)
    return [
        {"radius_km": radius, "drivers": sum(1 for d in within_max if d["distance_km"] <= radius)}
        for radius in settings.MATCH_RADII_KM
    ]
