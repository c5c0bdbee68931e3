import logging
import os
from dataclasses import dataclass, field

import structlog

DEFAULT_REVERSE_GEOCODE_URL = "https://api.bigdatacloud.net/data/reverse-geocode-client"


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


@dataclass
class Settings:
    database_url: str = field(default_factory=lambda: os.getenv("DATABASE_URL", "mongodb://localhost:27017"))
    database_name: str = field(default_factory=lambda: os.getenv("DATABASE_NAME", "marketplace"))
    jwt_secret: str = field(default_factory=lambda: os.getenv("JWT_SECRET", "devsecret"))
    jwt_ttl_days: int = field(default_factory=lambda: int(os.getenv("JWT_TTL_DAYS", "7")))
    shipping_charge: float = field(default_factory=lambda: _env_float("SHIPPING_CHARGE", 99))
    geolocation_timeout: float = field(default_factory=lambda: _env_float("GEOLOCATION_TIMEOUT_SECONDS", 10))
    geolocation_max_age: float = field(default_factory=lambda: _env_float("GEOLOCATION_MAX_AGE_SECONDS", 60))
    reverse_geocode_url: str = field(default_factory=lambda: os.getenv("REVERSE_GEOCODE_URL", DEFAULT_REVERSE_GEOCODE_URL))
    reverse_geocode_timeout: float = field(default_factory=lambda: _env_float("REVERSE_GEOCODE_TIMEOUT_SECONDS", 5))
    public_base_url: str = field(default_factory=lambda: os.getenv("PUBLIC_BASE_URL", "http://localhost:8000"))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))


def configure_logging(level: str = "INFO") -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper(), logging.INFO)),
        cache_logger_on_first_use=True,
    )
