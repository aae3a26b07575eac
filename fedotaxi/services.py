from datetime import datetime, timezone
from typing import Optional, Dict, List
from sqlalchemy import select, insert, update, and_, desc
from .config import settings
from .errors import InvalidRequest, NotFound, Forbidden
from .geo import haversine_km, is_valid_coordinate, in_service_area
from .auth import get_password_hash
from . import matching, models
import re
import logging

logger = logging.getLogger(__name__)

users = models.users
drivers = models.drivers
trips = models.trips

# allowed next states per trip status
TRIP_TRANSITIONS: Dict[str, tuple] = {
    models.TRIP_REQUESTED: (models.TRIP_ACCEPTED, models.TRIP_CANCELLED),
    models.TRIP_ACCEPTED: (models.TRIP_IN_PROGRESS, models.TRIP_CANCELLED),
    models.TRIP_IN_PROGRESS: (models.TRIP_COMPLETED, models.TRIP_CANCELLED),
    models.TRIP_COMPLETED: (),
    models.TRIP_CANCELLED: (),
}

PHONE_RE = re.compile(r"\+?[0-9]{7,15}")
MIN_PASSWORD_LENGTH = 6
CLAIM_ATTEMPTS = 3


def is_valid_status_transition(current: str, new: str) -> bool:
    if current == new:
        return False
    return new in TRIP_TRANSITIONS.get(current, ())


def calculate_fare(distance_km: float) -> float:
    return round(settings.BASE_FARE + distance_km * settings.PER_KM_RATE, 2)


def is_valid_phone(phone: Optional[str]) -> bool:
    if not phone or not phone.strip():
        return False
    clean = re.sub(r"[\s\-()]", "", phone.strip())
    return PHONE_RE.fullmatch(clean) is not None


def is_valid_password(password: Optional[str]) -> bool:
    return password is not None and len(password) >= MIN_PASSWORD_LENGTH


def _now():
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------- users

async def get_user_by_email(conn, email: str) -> Optional[dict]:
    if not email or not email.strip():
        return None
    row = (await conn.execute(select(users).where(users.c.email == email.strip().lower()))).first()
    return dict(row._mapping) if row else None


async def get_user_by_id(conn, user_id: int) -> Optional[dict]:
    if user_id is None or user_id <= 0:
        return None
    row = (await conn.execute(select(users).where(users.c.id == user_id))).first()
    return dict(row._mapping) if row else None


async def list_users(conn, role: Optional[str] = None) -> List[dict]:
    sel = select(users).order_by(users.c.id)
    if role:
        sel = sel.where(users.c.role == role)
    return [dict(r._mapping) for r in await conn.execute(sel)]


async def email_exists(conn, email: str) -> bool:
    return await get_user_by_email(conn, email) is not None


async def create_user(conn, email: str, password: str, first_name: str, last_name: str,
                      phone: str, role: str, driver_profile: Optional[dict] = None) -> dict:
    """Insert the user, plus the driver profile when registering a driver."""
    if await email_exists(conn, email):
        raise InvalidRequest("Email already registered")
    res = await conn.execute(
        insert(users).returning(users.c.id).values(
            email=email.strip().lower(),
            password=get_password_hash(password),
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            phone=phone.strip(),
            role=role,
            active=True,
            created_at=_now(),
        )
    )
    user_id = res.scalar_one()
    if role == models.ROLE_DRIVER:
        profile = driver_profile or {}
        await conn.execute(
            insert(drivers).values(
                user_id=user_id,
                license_number=profile["license_number"].strip(),
                vehicle_plate=profile["vehicle_plate"].strip(),
                vehicle_model=profile["vehicle_model"].strip(),
                vehicle_year=profile.get("vehicle_year"),
                available=False,
            )
        )
    logger.info("create_user: user=%s role=%s", user_id, role)
    return await get_user_by_id(conn, user_id)


async def update_user(conn, user: dict, first_name: Optional[str] = None, last_name: Optional[str] = None,
                      phone: Optional[str] = None, password: Optional[str] = None) -> dict:
    changes = {}
    if first_name and first_name.strip() and first_name.strip() != user["first_name"]:
        changes["first_name"] = first_name.strip()
    if last_name and last_name.strip() and last_name.strip() != user["last_name"]:
        changes["last_name"] = last_name.strip()
    if phone and phone.strip() and phone.strip() != user["phone"]:
        if not is_valid_phone(phone):
            raise InvalidRequest("Invalid phone number format")
        changes["phone"] = phone.strip()
    if password:
        if not is_valid_password(password):
            raise InvalidRequest("Password must be at least %d characters" % MIN_PASSWORD_LENGTH)
        changes["password"] = get_password_hash(password)
    if not changes:
        return user
    await conn.execute(update(users).where(users.c.id == user["id"]).values(**changes))
    logger.info("update_user: user=%s fields=%s", user["id"], sorted(changes))
    return await get_user_by_id(conn, user["id"])


async def set_user_active(conn, user_id: int, active: bool) -> dict:
    if user_id is None or user_id <= 0:
        raise InvalidRequest("Invalid user id")
    user = await get_user_by_id(conn, user_id)
    if not user:
        raise NotFound("User not found")
    if user["active"] == active:
        return user
    await conn.execute(update(users).where(users.c.id == user_id).values(active=active))
    logger.info("set_user_active: user=%s active=%s", user_id, active)
    user["active"] = active
    return user


async def ensure_admin(conn, email: str, password: str) -> None:
    if await email_exists(conn, email):
        return
    await create_user(conn, email, password, "Admin", "FedoTaxi", "0000000", models.ROLE_ADMIN)
    logger.info("ensure_admin: created administrator %s", email)


# ---------------------------------------------------------------- drivers

async def get_driver(conn, driver_id: int) -> Optional[dict]:
    if driver_id is None or driver_id <= 0:
        return None
    row = (await conn.execute(matching.driver_select().where(drivers.c.id == driver_id))).first()
    return dict(row._mapping) if row else None


async def get_driver_by_user(conn, user_id: int) -> Optional[dict]:
    row = (await conn.execute(matching.driver_select().where(drivers.c.user_id == user_id))).first()
    return dict(row._mapping) if row else None


async def list_drivers(conn) -> List[dict]:
    res = await conn.execute(matching.driver_select().order_by(drivers.c.id))
    return [dict(r._mapping) for r in res]


async def list_available_drivers(conn) -> List[dict]:
    res = await conn.execute(
        matching.driver_select()
        .where(drivers.c.available.is_(True))
        .where(drivers.c.current_latitude.is_not(None))
        .where(drivers.c.current_longitude.is_not(None))
        .order_by(drivers.c.id)
    )
    return [dict(r._mapping) for r in res]


async def _require_driver(conn, user: dict) -> dict:
    driver = await get_driver_by_user(conn, user["id"])
    if not driver:
        raise NotFound("Driver not found for user " + user["email"])
    return driver


async def set_driver_availability(conn, user: dict, available: bool) -> dict:
    driver = await _require_driver(conn, user)
    if driver["available"] == available:
        return driver
    await conn.execute(update(drivers).where(drivers.c.id == driver["id"]).values(available=available))
    logger.info("set_driver_availability: driver=%s %s -> %s", driver["id"], driver["available"], available)
    driver["available"] = available
    return driver


async def update_driver_location(conn, user: dict, lat: float, lon: float) -> dict:
    if not is_valid_coordinate(lat, lon):
        raise InvalidRequest("Invalid location coordinates")
    driver = await _require_driver(conn, user)
    old_lat, old_lon = driver["current_latitude"], driver["current_longitude"]
    await conn.execute(
        update(drivers)
        .where(drivers.c.id == driver["id"])
        .values(current_latitude=lat, current_longitude=lon, location_updated_at=_now())
    )
    if old_lat is not None and old_lon is not None:
        moved = haversine_km((old_lat, old_lon), (lat, lon))
        logger.debug("update_driver_location: driver=%s moved_km=%.2f", driver["id"], moved)
    else:
        logger.info("update_driver_location: driver=%s first fix lat=%s lon=%s", driver["id"], lat, lon)
    driver.update(current_latitude=lat, current_longitude=lon)
    return driver


# ---------------------------------------------------------------- trips

def _trip_select():
    passenger = users.alias("passenger")
    driver_user = users.alias("driver_user")
    return select(
        trips,
        (passenger.c.first_name + " " + passenger.c.last_name).label("passenger_name"),
        driver_user.c.id.label("driver_user_id"),
        (driver_user.c.first_name + " " + driver_user.c.last_name).label("driver_name"),
        driver_user.c.phone.label("driver_phone"),
        drivers.c.vehicle_plate,
        drivers.c.vehicle_model,
    ).select_from(
        trips.join(passenger, trips.c.passenger_id == passenger.c.id)
        .join(drivers, trips.c.driver_id == drivers.c.id)
        .join(driver_user, drivers.c.user_id == driver_user.c.id)
    )


async def get_trip(conn, trip_id: int) -> Optional[dict]:
    if trip_id is None or trip_id <= 0:
        return None
    row = (await conn.execute(_trip_select().where(trips.c.id == trip_id))).first()
    return dict(row._mapping) if row else None


async def _trips_for(conn, user: dict, statuses=None) -> List[dict]:
    """Trips where `user` is the passenger or, for drivers, the assigned driver."""
    sel = _trip_select()
    if user["role"] == models.ROLE_PASSENGER:
        sel = sel.where(trips.c.passenger_id == user["id"])
    elif user["role"] == models.ROLE_DRIVER:
        driver = await _require_driver(conn, user)
        sel = sel.where(trips.c.driver_id == driver["id"])
    else:
        raise Forbidden("Role not allowed to have trips")
    if statuses:
        sel = sel.where(trips.c.status.in_(statuses))
    res = await conn.execute(sel.order_by(desc(trips.c.request_time), desc(trips.c.id)))
    return [dict(r._mapping) for r in res]


async def trips_for_user(conn, user: dict) -> List[dict]:
    return await _trips_for(conn, user)


async def active_trips_for_user(conn, user: dict) -> List[dict]:
    return await _trips_for(conn, user, models.ACTIVE_TRIP_STATUSES)


async def trip_history_for_user(conn, user: dict) -> List[dict]:
    return await _trips_for(conn, user, models.FINISHED_TRIP_STATUSES)


async def current_trip_for_user(conn, user: dict) -> Optional[dict]:
    active = await active_trips_for_user(conn, user)
    return active[0] if active else None


async def has_active_trip(conn, passenger_id: int) -> bool:
    sel = select(trips.c.id).where(
        and_(trips.c.passenger_id == passenger_id, trips.c.status.in_(models.ACTIVE_TRIP_STATUSES))
    )
    return (await conn.execute(sel.limit(1))).first() is not None


async def trip_statistics(conn, user: dict) -> dict:
    all_trips = await trips_for_user(conn, user)
    return {
        "total_trips": len(all_trips),
        "completed_trips": sum(1 for t in all_trips if t["status"] == models.TRIP_COMPLETED),
        "total_distance": round(sum(t["distance"] or 0.0 for t in all_trips), 3),
        "total_fare": round(sum(t["fare"] or 0.0 for t in all_trips), 2),
    }


def _validate_trip_request(req) -> float:
    if not is_valid_coordinate(req.origin_latitude, req.origin_longitude) or \
            not is_valid_coordinate(req.destination_latitude, req.destination_longitude):
        raise InvalidRequest("Invalid coordinates")
    if not (req.origin_address or "").strip() or not (req.destination_address or "").strip():
        raise InvalidRequest("Origin and destination addresses are required")
    distance = haversine_km(
        (req.origin_latitude, req.origin_longitude), (req.destination_latitude, req.destination_longitude)
    )
    if distance < settings.MIN_TRIP_DISTANCE_KM:
        raise InvalidRequest("Origin and destination are too close")
    if not in_service_area(req.origin_latitude, req.origin_longitude) or \
            not in_service_area(req.destination_latitude, req.destination_longitude):
        logger.warning("create_trip: coordinates outside service area origin=(%s,%s) destination=(%s,%s)",
                       req.origin_latitude, req.origin_longitude, req.destination_latitude, req.destination_longitude)
    return distance


async def _claim_driver(conn, driver_id: int) -> bool:
    """Flip the driver to unavailable only if still available; False if someone else got there first."""
    res = await conn.execute(
        update(drivers)
        .where(and_(drivers.c.id == driver_id, drivers.c.available.is_(True)))
        .values(available=False)
    )
    return res.rowcount == 1


async def create_trip(conn, passenger: dict, req) -> dict:
    distance = _validate_trip_request(req)
    if await has_active_trip(conn, passenger["id"]):
        raise InvalidRequest("You already have an active trip")

    lat, lon = req.origin_latitude, req.origin_longitude
    skipped = ()
    driver = None
    for _ in range(CLAIM_ATTEMPTS):
        candidate = await matching.find_best_driver(conn, lat, lon, exclude=skipped)
        if not candidate:
            break
        if await _claim_driver(conn, candidate["id"]):
            driver = candidate
            break
        logger.info("create_trip: driver=%s claimed concurrently, retrying", candidate["id"])
        skipped = skipped + (candidate["id"],)

    if not driver:
        report = await matching.zone_availability(conn, lat, lon)
        logger.warning("create_trip: no driver for passenger=%s origin=(%s,%s) report=%s", passenger["id"], lat, lon, report)
        raise NotFound("No drivers available within %s km. Try again later." % settings.max_radius_km)

    res = await conn.execute(
        insert(trips).returning(trips.c.id).values(
            passenger_id=passenger["id"],
            driver_id=driver["id"],
            origin_latitude=req.origin_latitude,
            origin_longitude=req.origin_longitude,
            destination_latitude=req.destination_latitude,
            destination_longitude=req.destination_longitude,
            origin_address=req.origin_address.strip(),
            destination_address=req.destination_address.strip(),
            request_time=_now(),
            distance=distance,
            fare=calculate_fare(distance),
            status=models.TRIP_REQUESTED,
        )
    )
    trip_id = res.scalar_one()
    logger.info("create_trip: trip=%s passenger=%s driver=%s distance_km=%.3f", trip_id, passenger["id"], driver["id"], distance)
    return await get_trip(conn, trip_id)


def is_participant(trip: dict, user: dict) -> bool:
    return user["id"] in (trip["passenger_id"], trip["driver_user_id"])


async def get_trip_for_user(conn, trip_id: int, user: dict) -> dict:
    trip = await get_trip(conn, trip_id)
    if not trip:
        raise NotFound("Trip not found")
    if user["role"] != models.ROLE_ADMIN and not is_participant(trip, user):
        raise Forbidden("You do not have permission to view this trip")
    return trip


async def update_trip_status(conn, trip_id: int, new_status: str, user: dict, reason: Optional[str] = None) -> dict:
    if trip_id is None or trip_id <= 0:
        raise InvalidRequest("Invalid trip id")
    trip = await get_trip(conn, trip_id)
    if not trip:
        raise NotFound("Trip not found")
    if not is_participant(trip, user):
        raise Forbidden("Only the trip's passenger or driver can change its status")
    current = trip["status"]
    if not is_valid_status_transition(current, new_status):
        raise InvalidRequest("Invalid status transition: %s -> %s" % (current, new_status))

    now = _now()
    values = {"status": new_status}
    free_driver = False
    if new_status == models.TRIP_ACCEPTED:
        values["accept_time"] = now
    elif new_status == models.TRIP_IN_PROGRESS:
        values["start_time"] = now
    elif new_status == models.TRIP_COMPLETED:
        values["end_time"] = now
        distance = haversine_km(
            (trip["origin_latitude"], trip["origin_longitude"]),
            (trip["destination_latitude"], trip["destination_longitude"]),
        )
        values["distance"] = distance
        values["fare"] = calculate_fare(distance)
        free_driver = True
    elif new_status == models.TRIP_CANCELLED:
        values["end_time"] = now
        values["cancel_reason"] = reason.strip() if reason and reason.strip() else None
        free_driver = True

    # guard on the old status so two concurrent updates cannot both apply
    res = await conn.execute(
        update(trips).where(and_(trips.c.id == trip_id, trips.c.status == current)).values(**values)
    )
    if res.rowcount != 1:
        raise InvalidRequest("Trip status changed concurrently, reload and retry")
    if free_driver:
        await conn.execute(update(drivers).where(drivers.c.id == trip["driver_id"]).values(available=True))
    logger.info("update_trip_status: trip=%s %s -> %s by user=%s", trip_id, current, new_status, user["id"])
    return await get_trip(conn, trip_id)
