"""Domain models for device inventory allocation."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date
from typing import Optional


class DeviceCategory(str, enum.Enum):
    GP13 = "GP13"
    GP12 = "GP12"
    GP11 = "GP11"
    GP8 = "GP8"
    POCKET3 = "POCKET3"
    ACTION5 = "ACTION5"
    S23 = "S23"
    S24 = "S24"
    PS5 = "PS5"
    GLAMPAM = "GLAMPAM"
    AIRWRAP = "AIRWRAP"
    AIRSTRAIGHT = "AIRSTRAIGHT"
    INSTA360 = "INSTA360"
    STROLLER = "STROLLER"
    WAGON = "WAGON"
    MINIEVO = "MINIEVO"
    ETC = "ETC"


class DeviceStatus(str, enum.Enum):
    AVAILABLE = "available"
    RESERVED = "reserved"
    IN_USE = "in_use"
    MAINTENANCE = "maintenance"
    DAMAGED = "damaged"
    LOST = "lost"
    RENTED = "rented"
    PENDING_RETURN = "pending_return"
    UNDER_INSPECTION = "under_inspection"
    UNDER_REPAIR = "under_repair"


class ReservationStatus(str, enum.Enum):
    PENDING = "pending"
    PICKED_UP = "picked_up"
    NOT_PICKED_UP = "not_picked_up"
    RETURNED = "returned"
    OVERDUE = "overdue"
    PROBLEM = "problem"


# Statuses meaning the physical device is out with the renter.
DEVICE_OUT_STATUSES = frozenset(
    {
        ReservationStatus.PICKED_UP,
        ReservationStatus.OVERDUE,
        ReservationStatus.PROBLEM,
    }
)


class AllocationOutcome(str, enum.Enum):
    ASSIGNED = "assigned"
    NO_CAPACITY = "no_capacity"


@dataclass(frozen=True)
class Device:
    tag: str
    category: DeviceCategory
    status: DeviceStatus = DeviceStatus.AVAILABLE


@dataclass(frozen=True)
class Reservation:
    id: int
    category: DeviceCategory
    pickup_date: date
    return_date: date
    status: ReservationStatus = ReservationStatus.PENDING
    assigned_tag: Optional[str] = None
    pickup_time: str = ""
    return_time: str = ""
    reservation_code: str = ""
    renter_name: str = ""
    renter_phone: str = ""
    renter_email: Optional[str] = None

    @property
    def is_returned(self) -> bool:
        return self.status == ReservationStatus.RETURNED


@dataclass(frozen=True)
class Interval:
    """Occupancy window a reservation imposes on a device tag.

    Both bounds are inclusive calendar days. An open-ended interval has no
    upper bound: ``end`` keeps the nominal return date for display only.
    """

    start: date
    end: date
    open_ended: bool = False
    reservation_id: Optional[int] = field(default=None, compare=False)

    @property
    def effective_end(self) -> date:
        return date.max if self.open_ended else self.end

    def overlaps(self, other: Interval) -> bool:
        return self.start <= other.effective_end and other.start <= self.effective_end


@dataclass(frozen=True)
class AllocationDecision:
    reservation_id: int
    tag: Optional[str]
    outcome: AllocationOutcome
    reason: str


@dataclass(frozen=True)
class TimeSlot:
    date: date
    reservations: list[Reservation]


@dataclass(frozen=True)
class InventoryWindow:
    start_date: date
    end_date: date
    categories: Optional[frozenset[DeviceCategory]] = None

    @property
    def days(self) -> int:
        return (self.end_date - self.start_date).days + 1


@dataclass(frozen=True)
class InventoryResult:
    devices: list[str]
    time_slots: list[TimeSlot]
    decisions: list[AllocationDecision]

    @property
    def no_capacity_reservation_ids(self) -> list[int]:
        return [
            decision.reservation_id
            for decision in self.decisions
            if decision.outcome == AllocationOutcome.NO_CAPACITY
        ]


@dataclass(frozen=True)
class DeviceAvailability:
    tag: str
    status: DeviceStatus
    is_available: bool
    conflicting_reservation_ids: list[int]


@dataclass(frozen=True)
class CategoryInventoryStatus:
    category: DeviceCategory
    total_devices: int
    available_devices: int
    rented_devices: int
    maintenance_devices: int
    utilization_rate: float
