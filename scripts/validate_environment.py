#!/usr/bin/env python3
"""Check that this machine can run the inventory service end to end.

Every check runs against a throwaway SQLite file; the configured database is
never touched. Exit status is 0 only when all checks pass.
"""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from datetime import date, timedelta
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Callable

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from rental_inventory.repository.data_repository import DataRepository
from rental_inventory.services.inventory_service import InventoryService
from rental_inventory.utils.config import Settings, get_settings

RULE = "=" * 48
QUERY_HALF_WINDOW_DAYS = 7

# (import name, distribution name)
REQUIRED_PACKAGES = (
    ("fastapi", "fastapi"),
    ("uvicorn", "uvicorn"),
    ("pydantic", "pydantic"),
    ("pandas", "pandas"),
    ("dotenv", "python-dotenv"),
    ("httpx", "httpx"),
    ("pytest", "pytest"),
)


class CheckFailed(Exception):
    pass


def check_python() -> str:
    found = sys.version.split()[0]
    if sys.version_info < (3, 10):
        raise CheckFailed(f"Python >= 3.10 required, found {found}")
    return f"Python {found}"


def check_packages() -> str:
    missing = []
    for module_name, dist_name in REQUIRED_PACKAGES:
        try:
            importlib.import_module(module_name)
            version(dist_name)
        except (ImportError, PackageNotFoundError) as exc:
            missing.append(f"{dist_name} ({exc})")
    if missing:
        raise CheckFailed("missing or unimportable: " + "; ".join(missing))
    return f"{len(REQUIRED_PACKAGES)} packages importable"


def check_schema(repository: DataRepository) -> str:
    repository.initialize_database()
    return f"schema ready at {repository.database_path.name}"


def check_seed(repository: DataRepository, settings: Settings, today: date) -> str:
    written = repository.seed_synthetic_data(today=today)
    if written != settings.synthetic_reservation_count:
        raise CheckFailed(
            f"expected {settings.synthetic_reservation_count} reservations, got {written}"
        )
    return f"{repository.count_devices()} devices, {written} reservations"


def check_query(repository: DataRepository, settings: Settings, today: date) -> str:
    service = InventoryService(repository=repository, settings=settings)
    result = service.query_inventory(
        start_date=today - timedelta(days=QUERY_HALF_WINDOW_DAYS),
        end_date=today + timedelta(days=QUERY_HALF_WINDOW_DAYS),
        as_of=today,
    )
    expected_slots = 2 * QUERY_HALF_WINDOW_DAYS + 1
    if len(result.time_slots) != expected_slots:
        raise CheckFailed(f"expected {expected_slots} time slots, got {len(result.time_slots)}")
    no_capacity = len(result.no_capacity_reservation_ids)
    return f"{len(result.decisions) - no_capacity} assigned, {no_capacity} without capacity"


def _run(name: str, check: Callable[[], str]) -> tuple[bool, str]:
    try:
        return True, f"[PASS] {name}: {check()}"
    except Exception as exc:
        return False, f"[FAIL] {name}: {exc}"


def main() -> int:
    temp_dir = Path(tempfile.mkdtemp(prefix="rental-inventory-env-"))
    today = date.today()
    outcomes = [_run("Interpreter", check_python), _run("Packages", check_packages)]

    try:
        settings = replace(get_settings(), database_path=temp_dir / "validation.db")
        repository = DataRepository(settings)
        outcomes.append(_run("Database", lambda: check_schema(repository)))
        outcomes.append(_run("Demo data", lambda: check_seed(repository, settings, today)))
        outcomes.append(_run("Inventory query", lambda: check_query(repository, settings, today)))
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(RULE)
    print(" Rental inventory environment check")
    print(RULE)
    for _, line in outcomes:
        print(f" {line}")
    print(RULE)
    if all(passed for passed, _ in outcomes):
        print(" Environment is ready.")
        return 0
    print(" One or more checks failed.")
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
