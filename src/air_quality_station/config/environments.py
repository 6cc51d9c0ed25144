import os
from enum import Enum

from pydantic_settings import BaseSettings


class Environment(str, Enum):
    PRODUCTION = "production"
    DEVELOPMENT = "development"
    TESTING = "testing"


class Settings(BaseSettings):
    """Configuration settings for the air quality station."""

    # Environment
    ENVIRONMENT: Environment = Environment.DEVELOPMENT

    # Sample store (embedded SQLite file)
    DB_PATH: str = "airquality.db"
    DB_LOCK_TIMEOUT_SEC: float = 1.0

    # Sensor (SDS011 behind a CH340 USB-serial bridge)
    SERIAL_PORT: str = "/dev/ttyUSB0"
    SERIAL_BAUDRATE: int = 9600
    SERIAL_READ_TIMEOUT_SEC: float = 1.0
    SERIAL_IDLE_TIMEOUT_SEC: float = 60.0
    FRAME_READ_SIZE: int = 10
    READ_INTERVAL_SEC: float = 30.0

    # Query / API
    QUERY_DEFAULT_WINDOW_MIN: int = 15
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"


def get_settings() -> Settings:
    """Get settings based on environment."""
    env = os.getenv("AIR_QUALITY_ENV", "development").lower()

    if env == "production":
        return Settings(ENVIRONMENT=Environment.PRODUCTION, LOG_LEVEL="WARNING")
    elif env == "testing":
        return Settings(
            ENVIRONMENT=Environment.TESTING,
            DB_PATH="test_airquality.db",
            API_PORT=8001,
            READ_INTERVAL_SEC=1.0,
            SERIAL_IDLE_TIMEOUT_SEC=5.0,
            LOG_LEVEL="DEBUG",
        )
    else:
        return Settings(ENVIRONMENT=Environment.DEVELOPMENT, LOG_LEVEL="DEBUG")
