"""Batched reads of the device catalog and the reservation book."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional, Sequence, TypeVar

from rental_inventory.domain.constraints import IngestionLimits, validate_ingestion_limits
from rental_inventory.domain.models import Device, DeviceCategory, Reservation
from rental_inventory.repository.data_repository import InventoryStore
from rental_inventory.utils.logger import get_logger


logger = get_logger(__name__)

T = TypeVar("T")


class IngestionFailure(Exception):
    """Raised when the inventory cannot be read completely.

    ``kind`` is machine-readable; the message is meant for operators.
    """

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind


@dataclass(frozen=True)
class IngestedInventory:
    devices: list[Device]
    reservations: list[Reservation]


def _fetch_all_pages(
    fetch_page: Callable[[int, int], list[T]],
    *,
    page_size: int,
    cap: int,
    label: str,
    too_large_kind: str,
    failure_kind: str,
) -> list[T]:
    """Read pages until a short page arrives; abort past ``cap`` rows."""
    rows: list[T] = []
    offset = 0
    pages = 0
    while True:
        try:
            page = fetch_page(page_size, offset)
        except Exception as exc:
            raise IngestionFailure(
                failure_kind,
                f"{label} page fetch failed at offset {offset}: {exc}",
            ) from exc
        pages += 1
        rows.extend(page)
        logger.debug(
            "Page fetched | source=%s | page=%s | rows=%s | total=%s",
            label,
            pages,
            len(page),
            len(rows),
        )
        if len(rows) > cap:
            raise IngestionFailure(
                too_large_kind,
                f"{label} exceeds the safety cap of {cap} rows",
            )
        if len(page) < page_size:
            break
        offset += page_size

    logger.info("Ingestion completed | source=%s | pages=%s | rows=%s", label, pages, len(rows))
    return rows


class DeviceCatalog:
    """Loads the full device inventory and indexes it by category."""

    def __init__(self, store: InventoryStore, limits: IngestionLimits) -> None:
        validate_ingestion_limits(limits)
        self._store = store
        self._limits = limits

    def load(self, categories: Optional[Sequence[DeviceCategory]] = None) -> list[Device]:
        category_filter = sorted(categories, key=lambda item: item.value) if categories else None
        return _fetch_all_pages(
            lambda limit, offset: self._store.list_devices_page(category_filter, limit, offset),
            page_size=self._limits.page_size,
            cap=self._limits.device_cap,
            label="devices",
            too_large_kind="catalog_too_large",
            failure_kind="device_fetch_failed",
        )

    @staticmethod
    def index_by_category(devices: Sequence[Device]) -> dict[DeviceCategory, list[Device]]:
        """Group devices per category, each group sorted by tag name."""
        grouped: dict[DeviceCategory, list[Device]] = {}
        for device in devices:
            grouped.setdefault(device.category, []).append(device)
        for members in grouped.values():
            members.sort(key=lambda device: device.tag)
        return grouped


class ReservationIngestor:
    """Loads every reservation that could occupy a device inside a window."""

    def __init__(self, store: InventoryStore, limits: IngestionLimits) -> None:
        validate_ingestion_limits(limits)
        self._store = store
        self._limits = limits

    def load(self, start_date: date, end_date: date) -> list[Reservation]:
        return _fetch_all_pages(
            lambda limit, offset: self._store.list_reservations_page(
                start_date, end_date, limit, offset
            ),
            page_size=self._limits.page_size,
            cap=self._limits.reservation_cap,
            label="reservations",
            too_large_kind="reservations_too_large",
            failure_kind="reservation_fetch_failed",
        )


def ingest_inventory(
    store: InventoryStore,
    limits: IngestionLimits,
    *,
    start_date: date,
    end_date: date,
    categories: Optional[Sequence[DeviceCategory]] = None,
) -> IngestedInventory:
    """Run both batched reads, concurrently when more than one worker is allowed.

    Either read failing fails the whole ingestion; no partial inventory is
    returned.
    """
    catalog = DeviceCatalog(store, limits)
    ingestor = ReservationIngestor(store, limits)

    if limits.workers == 1:
        devices = catalog.load(categories)
        reservations = ingestor.load(start_date, end_date)
        return IngestedInventory(devices=devices, reservations=reservations)

    with ThreadPoolExecutor(max_workers=min(limits.workers, 2)) as executor:
        devices_future = executor.submit(catalog.load, categories)
        reservations_future = executor.submit(ingestor.load, start_date, end_date)
        devices = devices_future.result()
        reservations = reservations_future.result()
    return IngestedInventory(devices=devices, reservations=reservations)
