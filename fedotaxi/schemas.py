from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import List, Optional
from enum import Enum
from datetime import datetime


class CamelModel(BaseModel):
    """Wire format is camelCase, the shape the mobile frontend consumes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Role(str, Enum):
    PASSENGER = "PASSENGER"
    DRIVER = "DRIVER"
    ADMIN = "ADMIN"


class TripStatus(str, Enum):
    REQUESTED = "REQUESTED"
    ACCEPTED = "ACCEPTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# ---------------------------------------------------------------- auth

class RegisterRequest(CamelModel):
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=6, max_length=128)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., min_length=1, max_length=20)
    role: Role
    license_number: Optional[str] = Field(None, max_length=50)
    vehicle_plate: Optional[str] = Field(None, max_length=20)
    vehicle_model: Optional[str] = Field(None, max_length=100)
    vehicle_year: Optional[str] = Field(None, max_length=4)

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        v = v.strip()
        if "@" not in v or "." not in v:
            raise ValueError('email must contain "@" and "."')
        return v

    @field_validator('password')
    @classmethod
    def validate_password(cls, v):
        if not v.strip():
            raise ValueError('password must not be blank')
        return v

    @field_validator('first_name', 'last_name', 'phone')
    @classmethod
    def validate_not_blank(cls, v):
        if not v.strip():
            raise ValueError('must not be blank')
        return v

    def missing_driver_fields(self) -> List[str]:
        fields = {
            "licenseNumber": self.license_number,
            "vehiclePlate": self.vehicle_plate,
            "vehicleModel": self.vehicle_model,
        }
        return [name for name, value in fields.items() if not value or not value.strip()]


class LoginRequest(CamelModel):
    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)


class AuthResponse(CamelModel):
    jwt: str
    role: Role
    user_id: int


# ---------------------------------------------------------------- users

class UserOut(CamelModel):
    id: int
    email: str
    first_name: str
    last_name: str
    phone: str
    role: Role
    active: bool


class UserUpdate(CamelModel):
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    password: Optional[str] = Field(None, max_length=128)


# ---------------------------------------------------------------- drivers

class DriverOut(CamelModel):
    id: int
    user_id: int
    email: str
    first_name: str
    last_name: str
    phone: str
    license_number: str
    vehicle_plate: str
    vehicle_model: Optional[str] = None
    vehicle_year: Optional[str] = None
    available: bool
    current_latitude: Optional[float] = None
    current_longitude: Optional[float] = None


class NearbyDriverOut(DriverOut):
    distance_km: float


class DriverStatusUpdate(CamelModel):
    available: bool


class DriverLocationUpdate(CamelModel):
    latitude: float
    longitude: float


class ZoneAvailability(CamelModel):
    radius_km: float
    drivers: int


# ---------------------------------------------------------------- trips

class TripRequest(CamelModel):
    origin_latitude: float
    origin_longitude: float
    destination_latitude: float
    destination_longitude: float
    origin_address: str = Field(..., max_length=255)
    destination_address: str = Field(..., max_length=255)


class TripStatusUpdate(CamelModel):
    status: TripStatus
    reason: Optional[str] = Field(None, max_length=255)


class TripOut(CamelModel):
    id: int
    passenger_id: int
    passenger_name: str
    # the driver's user id, so clients can compare it with their own userId
    driver_id: int
    driver_profile_id: int
    driver_name: str
    driver_phone: str
    vehicle_plate: str
    vehicle_model: Optional[str] = None
    origin_address: Optional[str] = None
    destination_address: Optional[str] = None
    origin_latitude: float
    origin_longitude: float
    destination_latitude: float
    destination_longitude: float
    request_time: datetime
    accept_time: Optional[datetime] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    distance: Optional[float] = None
    fare: Optional[float] = None
    status: TripStatus
    cancel_reason: Optional[str] = None

    @classmethod
    def from_row(cls, trip: dict) -> "TripOut":
        data = dict(trip)
        data["driver_profile_id"] = trip["driver_id"]
        data["driver_id"] = trip["driver_user_id"]
        return cls.model_validate(data)


class TripStatistics(CamelModel):
    total_trips: int
    completed_trips: int
    total_distance: float
    total_fare: float
