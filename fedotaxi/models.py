from datetime import datetime, timezone
from sqlalchemy import (
    Table,
    Column,
    Integer,
    String,
    Float,
    DateTime,
    Boolean,
    ForeignKey,
    MetaData,
)


# Roles
ROLE_PASSENGER = "PASSENGER"
ROLE_DRIVER = "DRIVER"
ROLE_ADMIN = "ADMIN"

# Trip status constants
TRIP_REQUESTED = "REQUESTED"
TRIP_ACCEPTED = "ACCEPTED"
TRIP_IN_PROGRESS = "IN_PROGRESS"
TRIP_COMPLETED = "COMPLETED"
TRIP_CANCELLED = "CANCELLED"

ACTIVE_TRIP_STATUSES = (TRIP_REQUESTED, TRIP_ACCEPTED, TRIP_IN_PROGRESS)
FINISHED_TRIP_STATUSES = (TRIP_COMPLETED, TRIP_CANCELLED)


def _utcnow():
    return datetime.now(timezone.utc)


metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password", String(255), nullable=False),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("phone", String(20), nullable=False),
    Column("role", String(20), nullable=False, default=ROLE_PASSENGER),
    Column("active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime(timezone=True), default=_utcnow),
)

drivers = Table(
    "drivers",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
    Column("license_number", String(50), nullable=False),
    Column("vehicle_plate", String(20), nullable=False),
    Column("vehicle_model", String(100), nullable=True),
    Column("vehicle_year", String(4), nullable=True),
    Column("available", Boolean, nullable=False, default=False),
    Column("current_latitude", Float, nullable=True),
    Column("current_longitude", Float, nullable=True),
    Column("location_updated_at", DateTime(timezone=True), nullable=True),
)

trips = Table(
    "trips",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("passenger_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("driver_id", Integer, ForeignKey("drivers.id"), nullable=False),
    Column("origin_latitude", Float, nullable=False),
    Column("origin_longitude", Float, nullable=False),
    Column("destination_latitude", Float, nullable=False),
    Column("destination_longitude", Float, nullable=False),
    Column("origin_address", String(255), nullable=True),
    Column("destination_address", String(255), nullable=True),
    Column("request_time", DateTime(timezone=True), nullable=False, default=_utcnow),
    Column("accept_time", DateTime(timezone=True), nullable=True),
    Column("start_time", DateTime(timezone=True), nullable=True),
    Column("end_time", DateTime(timezone=True), nullable=True),
    Column("distance", Float, nullable=True),
    Column("fare", Float, nullable=True),
    Column("status", String(20), nullable=False, default=TRIP_REQUESTED),
    Column("cancel_reason", String(255), nullable=True),
)
