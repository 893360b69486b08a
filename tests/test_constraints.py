"""Tests for ingestion and allocation tunable validation."""

from __future__ import annotations

import pytest

from rental_inventory.domain.constraints import (
    AllocationPolicyConfig,
    IngestionLimits,
    parse_device_statuses,
    validate_allocation_policy,
    validate_ingestion_limits,
)
from rental_inventory.domain.models import DeviceStatus


def valid_limits(**overrides) -> IngestionLimits:
    """Return valid baseline IngestionLimits, optionally overriding fields."""
    defaults = {
        "page_size": 1000,
        "device_cap": 10_000,
        "reservation_cap": 100_000,
        "workers": 2,
    }
    defaults.update(overrides)
    return IngestionLimits(**defaults)


def valid_policy(**overrides) -> AllocationPolicyConfig:
    defaults = {
        "continuity_enabled": True,
        "continuity_adjacency_days": 1,
        "excluded_device_statuses": frozenset({DeviceStatus.LOST, DeviceStatus.DAMAGED}),
    }
    defaults.update(overrides)
    return AllocationPolicyConfig(**defaults)


# --- Baseline pass ---

def test_valid_limits_pass() -> None:
    validate_ingestion_limits(valid_limits())


def test_valid_policy_passes() -> None:
    validate_allocation_policy(valid_policy())


# --- page_size ---

def test_page_size_zero_raises() -> None:
    with pytest.raises(ValueError):
        validate_ingestion_limits(valid_limits(page_size=0))


def test_page_size_negative_raises() -> None:
    with pytest.raises(ValueError):
        validate_ingestion_limits(valid_limits(page_size=-10))


# --- caps ---

def test_device_cap_below_page_size_raises() -> None:
    with pytest.raises(ValueError):
        validate_ingestion_limits(valid_limits(device_cap=999))


def test_reservation_cap_below_page_size_raises() -> None:
    with pytest.raises(ValueError):
        validate_ingestion_limits(valid_limits(reservation_cap=10))


def test_caps_equal_to_page_size_pass() -> None:
    """Exact lower boundary must pass."""
    validate_ingestion_limits(valid_limits(device_cap=1000, reservation_cap=1000))


# --- workers ---

def test_workers_zero_raises() -> None:
    with pytest.raises(ValueError):
        validate_ingestion_limits(valid_limits(workers=0))


# --- continuity ---

def test_negative_adjacency_raises() -> None:
    with pytest.raises(ValueError):
        validate_allocation_policy(valid_policy(continuity_adjacency_days=-1))


def test_zero_adjacency_passes() -> None:
    validate_allocation_policy(valid_policy(continuity_adjacency_days=0))


# --- excluded statuses ---

def test_excluding_available_raises() -> None:
    with pytest.raises(ValueError):
        validate_allocation_policy(
            valid_policy(excluded_device_statuses=frozenset({DeviceStatus.AVAILABLE}))
        )


def test_excluded_statuses_must_be_enum_members() -> None:
    with pytest.raises(ValueError):
        validate_allocation_policy(valid_policy(excluded_device_statuses=frozenset({"lost"})))


def test_parse_device_statuses_maps_names() -> None:
    assert parse_device_statuses(("lost", "damaged")) == frozenset(
        {DeviceStatus.LOST, DeviceStatus.DAMAGED}
    )


def test_parse_device_statuses_rejects_unknown_name() -> None:
    with pytest.raises(ValueError):
        parse_device_statuses(("broken",))
