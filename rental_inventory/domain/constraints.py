"""Domain-level validation rules for ingestion and allocation tunables."""

from __future__ import annotations

from dataclasses import dataclass

from rental_inventory.domain.models import DeviceStatus


@dataclass(frozen=True)
class IngestionLimits:
    page_size: int
    device_cap: int
    reservation_cap: int
    workers: int


@dataclass(frozen=True)
class AllocationPolicyConfig:
    continuity_enabled: bool
    continuity_adjacency_days: int
    excluded_device_statuses: frozenset[DeviceStatus]


def validate_ingestion_limits(limits: IngestionLimits) -> None:
    if limits.page_size <= 0:
        raise ValueError("page_size must be > 0")
    if limits.device_cap < limits.page_size:
        raise ValueError("device_cap must be >= page_size")
    if limits.reservation_cap < limits.page_size:
        raise ValueError("reservation_cap must be >= page_size")
    if limits.workers <= 0:
        raise ValueError("workers must be > 0")


def validate_allocation_policy(config: AllocationPolicyConfig) -> None:
    if config.continuity_adjacency_days < 0:
        raise ValueError("continuity_adjacency_days must be >= 0")
    for status in config.excluded_device_statuses:
        if not isinstance(status, DeviceStatus):
            raise ValueError(f"excluded device status {status!r} is not a DeviceStatus")
    if DeviceStatus.AVAILABLE in config.excluded_device_statuses:
        raise ValueError("available devices cannot be excluded from allocation")


def parse_device_statuses(values: tuple[str, ...]) -> frozenset[DeviceStatus]:
    """Map configured status names onto the enum, rejecting unknown names."""
    statuses = set()
    for value in values:
        try:
            statuses.add(DeviceStatus(value))
        except ValueError as exc:
            raise ValueError(f"unknown device status {value!r}") from exc
    return frozenset(statuses)
