"""
app.py — FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires the repository and inventory service, registers routers, and runs
startup initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from rental_inventory.controllers.inventory_controller import router as inventory_router
from rental_inventory.repository.data_repository import DataRepository
from rental_inventory.services.inventory_service import InventoryService
from rental_inventory.utils.config import Settings, get_settings
from rental_inventory.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Services are created once here and handed to request handlers through
    app.state; per-request allocation state is never stored on them.
    """
    settings = settings or get_settings()

    # --- Repository (SQLite connection factory, reservation store) ---
    repository = DataRepository(settings)

    # --- Services ---
    inventory_service = InventoryService(
        repository=repository,
        settings=settings,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app, settings)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(inventory_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.repository = repository
    app.state.inventory_service = inventory_service

    return app


def _startup(app: FastAPI, settings: Settings) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Schema must exist before the demo fleet and reservation book are seeded;
    seeding is skipped when devices already exist.
    """
    repository: DataRepository = app.state.repository

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if settings.seed_demo_data:
        logger.info("Startup: seeding demo devices and reservations (skipped if not empty)")
        repository.seed_synthetic_data()

    logger.info(
        "Startup complete | devices=%s | reservations=%s",
        repository.count_devices(),
        repository.count_reservations(),
    )


# Module-level app object for uvicorn
app = create_app()
