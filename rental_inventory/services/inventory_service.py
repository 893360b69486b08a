"""Inventory query pipeline: ingest, index, allocate, lay out on a timeline."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from typing import Iterable, Optional, Sequence

import pandas as pd

from rental_inventory.domain.constraints import (
    AllocationPolicyConfig,
    IngestionLimits,
    parse_device_statuses,
)
from rental_inventory.domain.models import (
    AllocationOutcome,
    CategoryInventoryStatus,
    Device,
    DeviceAvailability,
    DeviceCategory,
    DeviceStatus,
    Interval,
    InventoryResult,
    InventoryWindow,
    Reservation,
    ReservationStatus,
)
from rental_inventory.repository.data_repository import (
    AssignmentConflictError,
    DataRepository,
    DeviceNotFoundError,
    InventoryStore,
    ReservationNotFoundError,
)
from rental_inventory.services.allocation_service import AllocationEngine
from rental_inventory.services.conflict_index import ConflictIndex, reservation_interval
from rental_inventory.services.ingestion_service import (
    DeviceCatalog,
    ReservationIngestor,
    ingest_inventory,
)
from rental_inventory.services.timeline_service import build_timeline
from rental_inventory.utils.config import Settings, get_settings
from rental_inventory.utils.logger import get_logger, log_stage


logger = get_logger(__name__)


_STATUS_BUCKETS = {
    DeviceStatus.AVAILABLE.value: "available",
    DeviceStatus.RESERVED.value: "rented",
    DeviceStatus.RENTED.value: "rented",
    DeviceStatus.IN_USE.value: "rented",
    DeviceStatus.PENDING_RETURN.value: "rented",
    DeviceStatus.MAINTENANCE.value: "maintenance",
    DeviceStatus.UNDER_INSPECTION.value: "maintenance",
    DeviceStatus.UNDER_REPAIR.value: "maintenance",
}


class InventoryValidationError(Exception):
    """Raised before any I/O when query inputs are invalid."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field


class InvalidWindowError(InventoryValidationError):
    """Raised for unparseable, inverted or oversized date windows."""


class UnknownCategoryError(InventoryValidationError):
    """Raised when a category filter names an unknown device category."""


@dataclass(frozen=True)
class AssignmentWriteResult:
    reservation_id: int
    tag: str
    status: str
    detail: str


def _parse_date(value: date | str | None, field: str) -> date:
    if isinstance(value, date):
        return value
    if value is None or not str(value).strip():
        raise InvalidWindowError(field, f"{field} is required")
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as exc:
        raise InvalidWindowError(
            field, f"{field} must follow YYYY-MM-DD format, got {value!r}"
        ) from exc


def parse_category(value: DeviceCategory | str, field: str = "category") -> DeviceCategory:
    try:
        return DeviceCategory(str(getattr(value, "value", value)).strip().upper())
    except ValueError as exc:
        raise UnknownCategoryError(field, f"unknown device category {value!r}") from exc


def parse_categories(
    values: Optional[Iterable[DeviceCategory | str]],
) -> Optional[frozenset[DeviceCategory]]:
    if values is None:
        return None
    categories = frozenset(
        parse_category(value, field="categories")
        for value in values
        if str(getattr(value, "value", value)).strip()
    )
    return categories or None


def parse_window(
    start_date: date | str | None,
    end_date: date | str | None,
    categories: Optional[Iterable[DeviceCategory | str]] = None,
    max_window_days: Optional[int] = None,
) -> InventoryWindow:
    start = _parse_date(start_date, "start_date")
    end = _parse_date(end_date, "end_date")
    if start > end:
        raise InvalidWindowError(
            "start_date",
            f"start_date {start.isoformat()} is after end_date {end.isoformat()}",
        )
    window = InventoryWindow(
        start_date=start,
        end_date=end,
        categories=parse_categories(categories),
    )
    if max_window_days is not None and window.days > max_window_days:
        raise InvalidWindowError(
            "end_date",
            f"window spans {window.days} days, the limit is {max_window_days}",
        )
    return window


def filter_for_categories(
    devices: Sequence[Device],
    reservations: Sequence[Reservation],
    categories: Optional[frozenset[DeviceCategory]],
) -> tuple[list[Device], list[Reservation]]:
    """Keep devices in the filter and the reservations that concern them.

    A tagged reservation follows its device (and takes the device's category);
    an untagged one is kept when the category it requests is in the filter.
    Tagged reservations whose device is not in the catalog are dropped.
    """
    kept_devices = [
        device for device in devices
        if categories is None or device.category in categories
    ]
    category_by_tag = {device.tag: device.category for device in kept_devices}

    kept_reservations: list[Reservation] = []
    for reservation in reservations:
        if reservation.assigned_tag is not None:
            device_category = category_by_tag.get(reservation.assigned_tag)
            if device_category is None:
                continue
            if device_category != reservation.category:
                reservation = replace(reservation, category=device_category)
            kept_reservations.append(reservation)
        elif categories is None or reservation.category in categories:
            kept_reservations.append(reservation)
    return kept_devices, kept_reservations


class InventoryService:
    """Business logic orchestration for the per-request inventory pipeline.

    Every call rebuilds its state from the store; nothing is cached between
    requests.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        store: Optional[InventoryStore] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._store: InventoryStore = store or self._repository

    def _ingestion_limits(self) -> IngestionLimits:
        return IngestionLimits(
            page_size=self._settings.ingestion_page_size,
            device_cap=self._settings.ingestion_device_cap,
            reservation_cap=self._settings.ingestion_reservation_cap,
            workers=self._settings.ingestion_workers,
        )

    def _allocation_policy(self) -> AllocationPolicyConfig:
        return AllocationPolicyConfig(
            continuity_enabled=self._settings.allocation_continuity_enabled,
            continuity_adjacency_days=self._settings.allocation_continuity_adjacency_days,
            excluded_device_statuses=parse_device_statuses(
                self._settings.allocation_excluded_device_statuses
            ),
        )

    def query_inventory(
        self,
        *,
        start_date: date | str | None,
        end_date: date | str | None,
        categories: Optional[Iterable[DeviceCategory | str]] = None,
        as_of: Optional[date] = None,
    ) -> InventoryResult:
        window = parse_window(
            start_date,
            end_date,
            categories,
            max_window_days=self._settings.inventory_max_window_days,
        )
        reference_date = as_of or date.today()
        category_filter = (
            sorted(window.categories, key=lambda item: item.value)
            if window.categories
            else None
        )

        with log_stage(logger, "ingest"):
            ingested = ingest_inventory(
                self._store,
                self._ingestion_limits(),
                start_date=window.start_date,
                end_date=window.end_date,
                categories=category_filter,
            )
        devices, reservations = filter_for_categories(
            ingested.devices,
            ingested.reservations,
            window.categories,
        )

        with log_stage(logger, "allocate", reservations=len(reservations)):
            index = ConflictIndex.build(devices, reservations, as_of=reference_date)
            engine = AllocationEngine(self._allocation_policy())
            run = engine.allocate_all(devices, reservations, index)
        with log_stage(logger, "timeline", days=window.days):
            time_slots = build_timeline(
                window.start_date,
                window.end_date,
                run.reservations,
                as_of=reference_date,
            )

        ordered_devices = sorted(devices, key=lambda device: (device.category.value, device.tag))
        no_capacity = sum(
            1 for decision in run.decisions
            if decision.outcome == AllocationOutcome.NO_CAPACITY
        )
        logger.info(
            (
                "Inventory query completed | window=%s~%s | devices=%s | reservations=%s | "
                "assigned=%s | no_capacity=%s | slots=%s"
            ),
            window.start_date.isoformat(),
            window.end_date.isoformat(),
            len(ordered_devices),
            len(run.reservations),
            run.assigned_count,
            no_capacity,
            len(time_slots),
        )
        return InventoryResult(
            devices=[device.tag for device in ordered_devices],
            time_slots=time_slots,
            decisions=run.decisions,
        )

    def check_availability(
        self,
        *,
        category: DeviceCategory | str,
        pickup_date: date | str | None,
        return_date: date | str | None,
        exclude_reservation_id: Optional[int] = None,
        as_of: Optional[date] = None,
    ) -> list[DeviceAvailability]:
        """Report, per device of a category, whether it is free for a date range.

        Returned reservations no longer hold their device, matching the
        write path in ``DataRepository.assign_device_tag``.
        """
        resolved_category = parse_category(category)
        pickup = _parse_date(pickup_date, "pickup_date")
        returned_by = _parse_date(return_date, "return_date")
        if pickup > returned_by:
            raise InvalidWindowError(
                "pickup_date",
                f"pickup_date {pickup.isoformat()} is after return_date {returned_by.isoformat()}",
            )

        ingested = ingest_inventory(
            self._store,
            self._ingestion_limits(),
            start_date=pickup,
            end_date=returned_by,
            categories=[resolved_category],
        )
        devices, reservations = filter_for_categories(
            ingested.devices,
            [
                reservation for reservation in ingested.reservations
                if reservation.id != exclude_reservation_id and not reservation.is_returned
            ],
            frozenset({resolved_category}),
        )
        index = ConflictIndex.build(devices, reservations, as_of=as_of or date.today())
        candidate = Interval(start=pickup, end=returned_by)

        availability: list[DeviceAvailability] = []
        for device in sorted(devices, key=lambda item: item.tag):
            conflicting = sorted(
                interval.reservation_id
                for interval in index.conflicts(device.tag, candidate)
                if interval.reservation_id is not None
            )
            availability.append(
                DeviceAvailability(
                    tag=device.tag,
                    status=device.status,
                    is_available=device.status == DeviceStatus.AVAILABLE and not conflicting,
                    conflicting_reservation_ids=conflicting,
                )
            )
        return availability

    def inventory_status(
        self,
        category: DeviceCategory | str | None = None,
    ) -> list[CategoryInventoryStatus]:
        """Summarise device statuses per category."""
        categories = [parse_category(category)] if category else None
        devices = DeviceCatalog(self._store, self._ingestion_limits()).load(categories)
        if not devices:
            return []

        frame = pd.DataFrame(
            [
                {"category": device.category.value, "status": device.status.value}
                for device in devices
            ]
        )
        frame["bucket"] = frame["status"].map(_STATUS_BUCKETS).fillna("other")
        counts = pd.crosstab(frame["category"], frame["bucket"]).reindex(
            columns=["available", "rented", "maintenance", "other"],
            fill_value=0,
        )
        counts["total"] = counts.sum(axis=1)

        summary: list[CategoryInventoryStatus] = []
        for category_value, row in counts.sort_index().iterrows():
            total = int(row["total"])
            rented = int(row["rented"])
            summary.append(
                CategoryInventoryStatus(
                    category=DeviceCategory(category_value),
                    total_devices=total,
                    available_devices=int(row["available"]),
                    rented_devices=rented,
                    maintenance_devices=int(row["maintenance"]),
                    utilization_rate=(rented / total) * 100.0 if total > 0 else 0.0,
                )
            )
        return summary

    def persist_assignments(
        self,
        assignments: Sequence[tuple[int, str]],
        as_of: Optional[date] = None,
    ) -> list[AssignmentWriteResult]:
        """Write decided tags back through the store's optimistic write path.

        Each item is written independently; a conflict on one does not stop
        the others.
        """
        results: list[AssignmentWriteResult] = []
        for reservation_id, tag in assignments:
            try:
                changed = self._repository.assign_device_tag(reservation_id, tag, as_of=as_of)
            except AssignmentConflictError as exc:
                logger.warning(
                    "Assignment rejected | reservation_id=%s | tag=%s | reason=%s",
                    reservation_id,
                    tag,
                    exc,
                )
                results.append(AssignmentWriteResult(reservation_id, tag, "conflict", str(exc)))
                continue
            except (ReservationNotFoundError, DeviceNotFoundError) as exc:
                results.append(AssignmentWriteResult(reservation_id, tag, "not_found", str(exc)))
                continue
            status = "persisted" if changed else "unchanged"
            results.append(AssignmentWriteResult(reservation_id, tag, status, ""))

        logger.info(
            "Assignments written | requested=%s | persisted=%s",
            len(assignments),
            sum(1 for item in results if item.status == "persisted"),
        )
        return results

    def overdue_reservations(self, as_of: date | str | None = None) -> list[Reservation]:
        """Reservations whose device is still out after the return date.

        These are exactly the reservations that occupy their device with no
        upper bound, ordered by how long they have been overdue.
        """
        reference_date = _parse_date(as_of, "as_of") if as_of else date.today()
        reservations = ReservationIngestor(self._store, self._ingestion_limits()).load(
            reference_date, reference_date
        )
        overdue = [
            reservation for reservation in reservations
            if reservation_interval(reservation, reference_date).open_ended
        ]
        overdue.sort(key=lambda item: (item.return_date, item.id))
        logger.info(
            "Overdue reservations listed | as_of=%s | count=%s",
            reference_date.isoformat(),
            len(overdue),
        )
        return overdue

    def complete_return(self, reservation_id: int) -> Reservation:
        """Mark a reservation returned and put its device back in service."""
        self._repository.update_reservation_status(reservation_id, ReservationStatus.RETURNED)
        reservation = self._repository.get_reservation(reservation_id)
        if reservation is None:
            raise ReservationNotFoundError(f"reservation {reservation_id} not found")
        if reservation.assigned_tag is not None:
            self._repository.update_device_status(reservation.assigned_tag, DeviceStatus.AVAILABLE)
        logger.info(
            "Return completed | reservation_id=%s | tag=%s",
            reservation_id,
            reservation.assigned_tag,
        )
        return reservation
