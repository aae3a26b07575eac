from pydantic_settings import BaseSettings
from pathlib import Path
from typing import List, Optional
import os
import yaml


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+asyncpg://postgres@localhost:5432/fedotaxi"

    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = -1
    DB_ECHO: bool = False

    JWT_SECRET: str = "change-me-fedotaxi-development-secret-key"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRATION_MINUTES: int = 1440
    PASSWORD_HASH_ROUNDS: int = 12

    # urban, metro, extended, max
    MATCH_RADII_KM: List[float] = [5.0, 12.0, 25.0, 50.0]
    NEARBY_DEFAULT_RADIUS_KM: float = 25.0
    NEARBY_LIMIT: int = 20

    BASE_FARE: float = 2.50
    PER_KM_RATE: float = 0.80
    MIN_TRIP_DISTANCE_KM: float = 0.1

    SERVICE_AREA_MIN_LAT: float = -5.0
    SERVICE_AREA_MAX_LAT: float = 2.0
    SERVICE_AREA_MIN_LON: float = -92.0
    SERVICE_AREA_MAX_LON: float = -75.0

    ADMIN_EMAIL: Optional[str] = None
    ADMIN_PASSWORD: Optional[str] = None

    CORS_ORIGINS: List[str] = ["http://localhost:8100", "http://localhost:4200"]
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    # Load .env located next to this file (fedotaxi/.env) so defaults are overridden
    model_config = {"env_file": str(Path(__file__).resolve().parent / ".env")}

    @property
    def max_radius_km(self) -> float:
        return max(self.MATCH_RADII_KM)


def load_settings() -> Settings:
    """Load settings from application.yaml and merge with environment variables."""
    config_path = Path(__file__).resolve().parent / "application.yaml"

    config_dict = {}

    if config_path.exists():
        with open(config_path, "r") as f:
            yaml_config = yaml.safe_load(f)
            if yaml_config:
                # Map YAML structure to Settings fields
                if "database" in yaml_config:
                    db = yaml_config["database"]
                    config_dict["DATABASE_URL"] = db.get("url")
                    config_dict["DB_POOL_SIZE"] = db.get("pool_size")
                    config_dict["DB_MAX_OVERFLOW"] = db.get("max_overflow")
                    config_dict["DB_POOL_TIMEOUT"] = db.get("pool_timeout")
                    config_dict["DB_POOL_RECYCLE"] = db.get("pool_recycle")
                    config_dict["DB_ECHO"] = db.get("echo")

                if "jwt" in yaml_config:
                    jwt = yaml_config["jwt"]
                    config_dict["JWT_SECRET"] = jwt.get("secret")
                    config_dict["JWT_ALGORITHM"] = jwt.get("algorithm")
                    config_dict["JWT_EXPIRATION_MINUTES"] = jwt.get("expiration_minutes")

                if "matching" in yaml_config:
                    match = yaml_config["matching"]
                    config_dict["MATCH_RADII_KM"] = match.get("radii_km")
                    config_dict["NEARBY_DEFAULT_RADIUS_KM"] = match.get("nearby_default_radius_km")
                    config_dict["NEARBY_LIMIT"] = match.get("nearby_limit")

                if "fare" in yaml_config:
                    fare = yaml_config["fare"]
                    config_dict["BASE_FARE"] = fare.get("base")
                    config_dict["PER_KM_RATE"] = fare.get("per_km")
                    config_dict["MIN_TRIP_DISTANCE_KM"] = fare.get("min_distance_km")

                if "service_area" in yaml_config:
                    area = yaml_config["service_area"]
                    config_dict["SERVICE_AREA_MIN_LAT"] = area.get("min_lat")
                    config_dict["SERVICE_AREA_MAX_LAT"] = area.get("max_lat")
                    config_dict["SERVICE_AREA_MIN_LON"] = area.get("min_lon")
                    config_dict["SERVICE_AREA_MAX_LON"] = area.get("max_lon")

                if "cors" in yaml_config:
                    config_dict["CORS_ORIGINS"] = yaml_config["cors"].get("origins")

                if "logging" in yaml_config:
                    config_dict["LOG_LEVEL"] = yaml_config["logging"].get("level")
                    config_dict["LOG_FILE"] = yaml_config["logging"].get("file")

    # YAML values are passed as init kwargs, which pydantic-settings ranks above
    # env vars, so drop any key the environment already sets
    return Settings(**{k: v for k, v in config_dict.items() if v is not None and k not in os.environ})


settings = load_settings()
