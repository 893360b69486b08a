from __future__ import annotations

from dataclasses import replace
from datetime import date

import pytest

from rental_inventory.domain.constraints import IngestionLimits
from rental_inventory.domain.models import (
    Device,
    DeviceCategory,
    Reservation,
    ReservationStatus,
)
from rental_inventory.repository.data_repository import DataRepository
from rental_inventory.services.ingestion_service import (
    DeviceCatalog,
    IngestionFailure,
    ReservationIngestor,
    ingest_inventory,
)
from rental_inventory.utils.config import get_settings


def _build_test_settings(tmp_path, filename: str):
    base = get_settings()
    return replace(base, database_path=tmp_path / filename, seed_demo_data=False)


class _FakeStore:
    """In-memory store that records every page request."""

    def __init__(self, devices=(), reservations=(), fail_on_offset=None):
        self.devices = list(devices)
        self.reservations = list(reservations)
        self.fail_on_offset = fail_on_offset
        self.device_calls: list[tuple[int, int]] = []
        self.reservation_calls: list[tuple[int, int]] = []

    def list_devices_page(self, categories, limit, offset):
        self.device_calls.append((limit, offset))
        if self.fail_on_offset is not None and offset == self.fail_on_offset:
            raise ConnectionError("store unavailable")
        rows = [
            device for device in self.devices
            if not categories or device.category in categories
        ]
        return rows[offset:offset + limit]

    def list_reservations_page(self, start_date, end_date, limit, offset):
        self.reservation_calls.append((limit, offset))
        if self.fail_on_offset is not None and offset == self.fail_on_offset:
            raise ConnectionError("store unavailable")
        return self.reservations[offset:offset + limit]


def _limits(**overrides) -> IngestionLimits:
    values = {"page_size": 1000, "device_cap": 10_000, "reservation_cap": 100_000, "workers": 2}
    values.update(overrides)
    return IngestionLimits(**values)


def _devices(count: int) -> list[Device]:
    return [Device(tag=f"GP13-{number:05d}", category=DeviceCategory.GP13) for number in range(count)]


def _reservations(count: int) -> list[Reservation]:
    return [
        Reservation(
            id=number,
            category=DeviceCategory.GP13,
            pickup_date=date(2024, 5, 1),
            return_date=date(2024, 5, 2),
        )
        for number in range(1, count + 1)
    ]


def test_catalog_reads_every_page_until_short_page():
    store = _FakeStore(devices=_devices(2500))

    devices = DeviceCatalog(store, _limits()).load()

    assert len(devices) == 2500
    assert len({device.tag for device in devices}) == 2500
    assert store.device_calls == [(1000, 0), (1000, 1000), (1000, 2000)]


def test_catalog_issues_trailing_request_when_last_page_is_full():
    store = _FakeStore(devices=_devices(2000))

    devices = DeviceCatalog(store, _limits()).load()

    assert len(devices) == 2000
    assert len(store.device_calls) == 3


def test_catalog_over_cap_fails_instead_of_truncating():
    store = _FakeStore(devices=_devices(300))

    with pytest.raises(IngestionFailure) as excinfo:
        DeviceCatalog(store, _limits(page_size=100, device_cap=250)).load()

    assert excinfo.value.kind == "catalog_too_large"


def test_reservations_over_cap_fail_with_their_own_kind():
    store = _FakeStore(reservations=_reservations(30))

    with pytest.raises(IngestionFailure) as excinfo:
        ReservationIngestor(store, _limits(page_size=10, reservation_cap=20)).load(
            date(2024, 5, 1), date(2024, 5, 31)
        )

    assert excinfo.value.kind == "reservations_too_large"


def test_page_error_fails_the_whole_read():
    store = _FakeStore(devices=_devices(250), fail_on_offset=100)

    with pytest.raises(IngestionFailure) as excinfo:
        DeviceCatalog(store, _limits(page_size=100, device_cap=1000)).load()

    assert excinfo.value.kind == "device_fetch_failed"
    assert isinstance(excinfo.value.__cause__, ConnectionError)


def test_ingest_inventory_returns_both_sides_concurrently():
    store = _FakeStore(devices=_devices(3), reservations=_reservations(4))

    ingested = ingest_inventory(
        store,
        _limits(),
        start_date=date(2024, 5, 1),
        end_date=date(2024, 5, 31),
    )

    assert len(ingested.devices) == 3
    assert [item.id for item in ingested.reservations] == [1, 2, 3, 4]


def test_ingest_inventory_propagates_reservation_failure():
    store = _FakeStore(devices=_devices(3), reservations=_reservations(4), fail_on_offset=0)

    with pytest.raises(IngestionFailure):
        ingest_inventory(
            store,
            _limits(workers=1),
            start_date=date(2024, 5, 1),
            end_date=date(2024, 5, 31),
        )


class _DeviceOutageStore(_FakeStore):
    """Device reads fail while reservation reads keep working."""

    def list_devices_page(self, categories, limit, offset):
        self.device_calls.append((limit, offset))
        raise ConnectionError("device table locked")


def test_concurrent_ingest_fails_when_only_device_read_fails():
    store = _DeviceOutageStore(devices=_devices(3), reservations=_reservations(4))

    with pytest.raises(IngestionFailure) as excinfo:
        ingest_inventory(
            store,
            _limits(workers=2),
            start_date=date(2024, 5, 1),
            end_date=date(2024, 5, 31),
        )

    assert excinfo.value.kind == "device_fetch_failed"
    assert isinstance(excinfo.value.__cause__, ConnectionError)
    assert store.reservation_calls == [(1000, 0)]


def test_invalid_limits_are_rejected_before_reading():
    store = _FakeStore(devices=_devices(3))

    with pytest.raises(ValueError):
        DeviceCatalog(store, _limits(page_size=0))
    assert store.device_calls == []


def test_index_by_category_groups_and_sorts_by_tag():
    devices = [
        Device("S24-2", DeviceCategory.S24),
        Device("GP13-2", DeviceCategory.GP13),
        Device("GP13-1", DeviceCategory.GP13),
    ]

    grouped = DeviceCatalog.index_by_category(devices)

    assert [device.tag for device in grouped[DeviceCategory.GP13]] == ["GP13-1", "GP13-2"]
    assert [device.tag for device in grouped[DeviceCategory.S24]] == ["S24-2"]


def test_repository_window_keeps_unreturned_reservations_outside_window(tmp_path):
    settings = _build_test_settings(tmp_path, "ingestion_window.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.create_device("GP13-1", DeviceCategory.GP13)

    overdue_id = repository.create_reservation(
        DeviceCategory.GP13,
        date(2024, 1, 1),
        date(2024, 1, 3),
        status=ReservationStatus.PICKED_UP,
        device_tag_name="GP13-1",
    )
    returned_outside_id = repository.create_reservation(
        DeviceCategory.GP13,
        date(2024, 1, 1),
        date(2024, 1, 3),
        status=ReservationStatus.RETURNED,
    )
    returned_inside_id = repository.create_reservation(
        DeviceCategory.GP13,
        date(2024, 1, 9),
        date(2024, 1, 11),
        status=ReservationStatus.RETURNED,
    )

    ingested = ingest_inventory(
        repository,
        _limits(page_size=1),
        start_date=date(2024, 1, 10),
        end_date=date(2024, 1, 12),
    )
    ids = {reservation.id for reservation in ingested.reservations}

    assert overdue_id in ids
    assert returned_inside_id in ids
    assert returned_outside_id not in ids
    assert [device.tag for device in ingested.devices] == ["GP13-1"]
