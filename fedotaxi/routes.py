from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List, Optional
from . import models, services, matching, schemas
from .auth import get_conn, get_current_user, require_roles, create_access_token, verify_password
from .config import settings
from .errors import InvalidRequest
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

passenger_only = require_roles(models.ROLE_PASSENGER)
driver_only = require_roles(models.ROLE_DRIVER)
admin_only = require_roles(models.ROLE_ADMIN)
trip_participant = require_roles(models.ROLE_PASSENGER, models.ROLE_DRIVER)


def _trips_out(trips) -> List[schemas.TripOut]:
    return [schemas.TripOut.from_row(t) for t in trips]


@router.get("/health")
async def health():
    return {"status": "ok"}


# ---------------------------------------------------------------- auth

@router.post("/auth/register", response_model=schemas.AuthResponse)
async def register(req: schemas.RegisterRequest, conn=Depends(get_conn)):
    logger.info("register: email=%s role=%s", req.email, req.role.value)
    if req.role == schemas.Role.ADMIN:
        raise InvalidRequest("Administrator accounts cannot be self-registered")
    driver_profile = None
    if req.role == schemas.Role.DRIVER:
        missing = req.missing_driver_fields()
        if missing:
            raise InvalidRequest("Missing driver fields: " + ", ".join(missing))
        driver_profile = {
            "license_number": req.license_number,
            "vehicle_plate": req.vehicle_plate,
            "vehicle_model": req.vehicle_model,
            "vehicle_year": req.vehicle_year,
        }
    user = await services.create_user(
        conn, req.email, req.password, req.first_name, req.last_name, req.phone, req.role.value, driver_profile
    )
    token = create_access_token(user["email"], user["role"])
    return schemas.AuthResponse(jwt=token, role=user["role"], user_id=user["id"])


@router.post("/auth/login", response_model=schemas.AuthResponse)
async def login(req: schemas.LoginRequest, conn=Depends(get_conn)):
    user = await services.get_user_by_email(conn, req.email)
    if not user or not verify_password(req.password, user["password"]):
        logger.info("login_failed: email=%s", req.email)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user["active"]:
        logger.info("login_rejected: inactive user=%s", user["id"])
        raise HTTPException(status_code=401, detail="User is inactive")
    logger.info("login: user=%s role=%s", user["id"], user["role"])
    token = create_access_token(user["email"], user["role"])
    return schemas.AuthResponse(jwt=token, role=user["role"], user_id=user["id"])


# ---------------------------------------------------------------- users

@router.get("/users", response_model=List[schemas.UserOut])
async def list_users(role: Optional[schemas.Role] = None, admin=Depends(admin_only), conn=Depends(get_conn)):
    return await services.list_users(conn, role.value if role else None)


@router.get("/users/me", response_model=schemas.UserOut)
async def get_me(user=Depends(get_current_user)):
    return user


@router.put("/users/me", response_model=schemas.UserOut)
async def update_me(payload: schemas.UserUpdate, user=Depends(get_current_user), conn=Depends(get_conn)):
    return await services.update_user(
        conn, user, payload.first_name, payload.last_name, payload.phone, payload.password
    )


@router.get("/users/{user_id}", response_model=schemas.UserOut)
async def get_user(user_id: int, admin=Depends(admin_only), conn=Depends(get_conn)):
    user = await services.get_user_by_id(conn, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.put("/users/{user_id}/status", response_model=schemas.UserOut)
async def set_user_status(user_id: int, active: bool = Query(...), admin=Depends(admin_only), conn=Depends(get_conn)):
    logger.info("set_user_status: user=%s active=%s by admin=%s", user_id, active, admin["id"])
    return await services.set_user_active(conn, user_id, active)


# ---------------------------------------------------------------- drivers

@router.get("/drivers", response_model=List[schemas.DriverOut])
async def list_drivers(admin=Depends(admin_only), conn=Depends(get_conn)):
    return await services.list_drivers(conn)


@router.get("/drivers/me", response_model=schemas.DriverOut)
async def get_my_driver(user=Depends(driver_only), conn=Depends(get_conn)):
    driver = await services.get_driver_by_user(conn, user["id"])
    if not driver:
        raise HTTPException(status_code=404, detail="Driver not found for user " + user["email"])
    return driver


@router.put("/drivers/status", response_model=schemas.DriverOut)
async def update_driver_status(payload: schemas.DriverStatusUpdate, user=Depends(driver_only), conn=Depends(get_conn)):
    return await services.set_driver_availability(conn, user, payload.available)


@router.put("/drivers/location", response_model=schemas.DriverOut)
async def update_driver_location(payload: schemas.DriverLocationUpdate, user=Depends(driver_only), conn=Depends(get_conn)):
    return await services.update_driver_location(conn, user, payload.latitude, payload.longitude)


@router.get("/drivers/nearby", response_model=List[schemas.NearbyDriverOut])
async def nearby_drivers(
    latitude: float,
    longitude: float,
    radius: float = settings.NEARBY_DEFAULT_RADIUS_KM,
    user=Depends(get_current_user),
    conn=Depends(get_conn),
):
    return await matching.nearby_drivers(conn, latitude, longitude, radius)


@router.get("/drivers/available", response_model=List[schemas.DriverOut])
async def available_drivers(user=Depends(get_current_user), conn=Depends(get_conn)):
    return await services.list_available_drivers(conn)


@router.get("/drivers/availability", response_model=List[schemas.ZoneAvailability])
async def zone_availability(latitude: float, longitude: float, user=Depends(get_current_user), conn=Depends(get_conn)):
    return await matching.zone_availability(conn, latitude, longitude)


@router.get("/drivers/{driver_id}", response_model=schemas.DriverOut)
async def get_driver(driver_id: int, user=Depends(get_current_user), conn=Depends(get_conn)):
    driver = await services.get_driver(conn, driver_id)
    if not driver:
        raise HTTPException(status_code=404, detail="Driver not found")
    return driver


# ---------------------------------------------------------------- trips

@router.post("/trips/request", response_model=schemas.TripOut)
async def request_trip(req: schemas.TripRequest, user=Depends(passenger_only), conn=Depends(get_conn)):
    logger.info("request_trip: passenger=%s origin=(%s,%s)", user["id"], req.origin_latitude, req.origin_longitude)
    trip = await services.create_trip(conn, user, req)
    return schemas.TripOut.from_row(trip)


@router.get("/trips/my-trips", response_model=List[schemas.TripOut])
async def my_trips(user=Depends(get_current_user), conn=Depends(get_conn)):
    return _trips_out(await services.trips_for_user(conn, user))


@router.get("/trips/active", response_model=List[schemas.TripOut])
async def active_trips(user=Depends(driver_only), conn=Depends(get_conn)):
    return _trips_out(await services.active_trips_for_user(conn, user))


@router.get("/trips/current", response_model=Optional[schemas.TripOut])
async def current_trip(user=Depends(trip_participant), conn=Depends(get_conn)):
    trip = await services.current_trip_for_user(conn, user)
    return schemas.TripOut.from_row(trip) if trip else None


@router.get("/trips/history", response_model=List[schemas.TripOut])
async def trip_history(user=Depends(trip_participant), conn=Depends(get_conn)):
    return _trips_out(await services.trip_history_for_user(conn, user))


@router.get("/trips/statistics", response_model=schemas.TripStatistics)
async def trip_statistics(user=Depends(trip_participant), conn=Depends(get_conn)):
    return await services.trip_statistics(conn, user)


@router.get("/trips/{trip_id}", response_model=schemas.TripOut)
async def get_trip(trip_id: int, user=Depends(get_current_user), conn=Depends(get_conn)):
    return schemas.TripOut.from_row(await services.get_trip_for_user(conn, trip_id, user))


@router.put("/trips/{trip_id}/status", response_model=schemas.TripOut)
async def update_trip_status(trip_id: int, payload: schemas.TripStatusUpdate, user=Depends(trip_participant),
                             conn=Depends(get_conn)):
    logger.info("update_trip_status: trip=%s status=%s user=%s", trip_id, payload.status.value, user["id"])
    trip = await services.update_trip_status(conn, trip_id, payload.status.value, user, payload.reason)
    return schemas.TripOut.from_row(trip)
