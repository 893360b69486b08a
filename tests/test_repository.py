from __future__ import annotations

from dataclasses import replace
from datetime import date

import pytest

from rental_inventory.domain.models import DeviceCategory, DeviceStatus, ReservationStatus
from rental_inventory.repository.data_repository import (
    AssignmentConflictError,
    DataRepository,
    ReservationNotFoundError,
)
from rental_inventory.services.conflict_index import reservation_interval
from rental_inventory.services.inventory_service import InventoryService
from rental_inventory.utils.config import get_settings


TODAY = date(2024, 6, 15)


def _build_test_settings(tmp_path, filename: str):
    base = get_settings()
    return replace(base, database_path=tmp_path / filename, synthetic_random_seed=42)


def _seeded_repository(tmp_path, filename: str) -> tuple[DataRepository, object]:
    settings = _build_test_settings(tmp_path, filename)
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.seed_synthetic_data(today=TODAY)
    return repository, settings


def test_seed_is_idempotent(tmp_path):
    settings = _build_test_settings(tmp_path, "seed_once.db")
    repository = DataRepository(settings)
    repository.initialize_database()

    first = repository.seed_synthetic_data(today=TODAY)
    second = repository.seed_synthetic_data(today=TODAY)

    assert first == settings.synthetic_reservation_count
    assert second == 0
    assert repository.count_reservations() == settings.synthetic_reservation_count
    assert repository.count_devices() == (
        len(settings.synthetic_categories) * settings.synthetic_devices_per_category
    )


def test_seed_is_deterministic_for_same_seed(tmp_path):
    first, _ = _seeded_repository(tmp_path / "a", "seed.db")
    second, _ = _seeded_repository(tmp_path / "b", "seed.db")

    window = (date(2024, 1, 1), date(2024, 12, 31))
    assert first.list_reservations_page(*window, 1000, 0) == second.list_reservations_page(
        *window, 1000, 0
    )


def test_seeded_tags_never_overlap(tmp_path):
    repository, _ = _seeded_repository(tmp_path, "seed_overlap.db")

    reservations = repository.list_reservations_page(date(2024, 1, 1), date(2024, 12, 31), 1000, 0)
    by_tag: dict[str, list] = {}
    for reservation in reservations:
        if reservation.assigned_tag is not None:
            by_tag.setdefault(reservation.assigned_tag, []).append(
                reservation_interval(reservation, TODAY)
            )

    assert by_tag
    for tag, intervals in by_tag.items():
        for position, first in enumerate(intervals):
            for second in intervals[position + 1:]:
                assert not first.overlaps(second), (tag, first, second)


def test_query_over_seeded_book_keeps_devices_single_booked(tmp_path):
    repository, settings = _seeded_repository(tmp_path, "seed_query.db")
    service = InventoryService(repository=repository, settings=settings)

    result = service.query_inventory(
        start_date=date(2024, 6, 1),
        end_date=date(2024, 6, 30),
        as_of=TODAY,
    )

    assert len(result.time_slots) == 30
    for slot in result.time_slots:
        tags = [item.assigned_tag for item in slot.reservations if item.assigned_tag is not None]
        assert len(tags) == len(set(tags)), slot.date


def test_assign_device_tag_rejects_overwrite(tmp_path):
    settings = _build_test_settings(tmp_path, "assign.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.create_device("GP13-1", DeviceCategory.GP13)
    repository.create_device("GP13-2", DeviceCategory.GP13)
    reservation_id = repository.create_reservation(
        DeviceCategory.GP13,
        date(2024, 7, 1),
        date(2024, 7, 2),
        device_tag_name="GP13-1",
    )

    with pytest.raises(AssignmentConflictError):
        repository.assign_device_tag(reservation_id, "GP13-2", as_of=TODAY)
    assert repository.assign_device_tag(reservation_id, "GP13-1", as_of=TODAY) is False
    assert repository.get_reservation(reservation_id).reservation_code == f"RSV-{reservation_id:06d}"


def test_update_reservation_status(tmp_path):
    settings = _build_test_settings(tmp_path, "status_update.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.create_device("S24-1", DeviceCategory.S24, status=DeviceStatus.AVAILABLE)
    reservation_id = repository.create_reservation(
        DeviceCategory.S24, date(2024, 7, 1), date(2024, 7, 2)
    )

    repository.update_reservation_status(reservation_id, ReservationStatus.RETURNED)

    assert repository.get_reservation(reservation_id).is_returned
    with pytest.raises(ReservationNotFoundError):
        repository.update_reservation_status(9999, "returned")
