"""Runtime configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


ISOLATION_LEVELS = ("SERIALIZABLE", "READ_COMMITTED")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    database_path: Path
    database_isolation_level: str
    database_busy_timeout_seconds: float
    seed_demo_data: bool
    provisional_booking_ttl_hours: int
    resource_release_grace_hours: int
    system_actor_name: str


def validate_settings(settings: Settings) -> None:
    if settings.database_isolation_level not in ISOLATION_LEVELS:
        raise ValueError(
            f"database_isolation_level must be one of {', '.join(ISOLATION_LEVELS)}"
        )
    if settings.database_busy_timeout_seconds <= 0:
        raise ValueError("database_busy_timeout_seconds must be > 0")
    if settings.provisional_booking_ttl_hours <= 0:
        raise ValueError("provisional_booking_ttl_hours must be > 0")
    if settings.resource_release_grace_hours < 0:
        raise ValueError("resource_release_grace_hours must be >= 0")
    if not settings.system_actor_name.strip():
        raise ValueError("system_actor_name must be non-empty")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process; call ``get_settings.cache_clear()`` to reload."""
    settings = Settings(
        app_name=os.getenv("APP_NAME", "Venue Allocation Core"),
        app_version=os.getenv("APP_VERSION", "1.0.0"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        database_path=Path(os.getenv("DATABASE_PATH", "data/venue_allocation.db")),
        database_isolation_level=os.getenv("DATABASE_ISOLATION_LEVEL", "SERIALIZABLE").upper(),
        database_busy_timeout_seconds=float(os.getenv("DATABASE_BUSY_TIMEOUT_SECONDS", "30")),
        seed_demo_data=_env_bool("SEED_DEMO_DATA", True),
        provisional_booking_ttl_hours=int(os.getenv("PROVISIONAL_BOOKING_TTL_HOURS", "24")),
        resource_release_grace_hours=int(os.getenv("RESOURCE_RELEASE_GRACE_HOURS", "0")),
        system_actor_name=os.getenv("SYSTEM_ACTOR_NAME", "system"),
    )
    validate_settings(settings)
    return settings
