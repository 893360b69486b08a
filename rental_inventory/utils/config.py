"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv


PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {value!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_tuple(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = os.getenv(name)
    if value is None:
        return default
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    database_path: Path
    server_host: str
    server_port: int
    server_reload: bool

    ingestion_page_size: int
    ingestion_device_cap: int
    ingestion_reservation_cap: int
    ingestion_workers: int

    allocation_continuity_enabled: bool
    allocation_continuity_adjacency_days: int
    allocation_excluded_device_statuses: tuple[str, ...]

    inventory_max_window_days: int

    seed_demo_data: bool
    synthetic_random_seed: int
    synthetic_devices_per_category: int
    synthetic_reservation_count: int
    synthetic_seed_days: int
    synthetic_categories: tuple[str, ...]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process; call ``cache_clear`` to reload."""
    load_dotenv()
    database_path = Path(
        _env_str("DATABASE_PATH", str(PROJECT_ROOT / "data" / "rental_inventory.db"))
    )
    return Settings(
        app_name=_env_str("APP_NAME", "Rental Inventory Allocation Service"),
        app_version=_env_str("APP_VERSION", "1.0.0"),
        log_level=_env_str("LOG_LEVEL", "INFO"),
        database_path=database_path,
        server_host=_env_str("SERVER_HOST", "127.0.0.1"),
        server_port=_env_int("SERVER_PORT", 8000),
        server_reload=_env_bool("SERVER_RELOAD", True),
        ingestion_page_size=_env_int("INGESTION_PAGE_SIZE", 1000),
        ingestion_device_cap=_env_int("INGESTION_DEVICE_CAP", 10_000),
        ingestion_reservation_cap=_env_int("INGESTION_RESERVATION_CAP", 100_000),
        ingestion_workers=_env_int("INGESTION_WORKERS", 2),
        allocation_continuity_enabled=_env_bool("ALLOCATION_CONTINUITY_ENABLED", True),
        allocation_continuity_adjacency_days=_env_int(
            "ALLOCATION_CONTINUITY_ADJACENCY_DAYS", 1
        ),
        allocation_excluded_device_statuses=_env_tuple(
            "ALLOCATION_EXCLUDED_DEVICE_STATUSES", ("damaged", "lost")
        ),
        inventory_max_window_days=_env_int("INVENTORY_MAX_WINDOW_DAYS", 366),
        seed_demo_data=_env_bool("SEED_DEMO_DATA", True),
        synthetic_random_seed=_env_int("SYNTHETIC_RANDOM_SEED", 42),
        synthetic_devices_per_category=_env_int("SYNTHETIC_DEVICES_PER_CATEGORY", 4),
        synthetic_reservation_count=_env_int("SYNTHETIC_RESERVATION_COUNT", 60),
        synthetic_seed_days=_env_int("SYNTHETIC_SEED_DAYS", 30),
        synthetic_categories=_env_tuple(
            "SYNTHETIC_CATEGORIES", ("GP13", "GP12", "POCKET3", "S24", "INSTA360")
        ),
    )
