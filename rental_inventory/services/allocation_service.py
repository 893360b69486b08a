"""Greedy tag-priority allocation of physical devices to reservations."""

from __future__ import annotations

import re
from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import date
from typing import AbstractSet, Iterable, Optional, Protocol, Sequence

from rental_inventory.domain.constraints import (
    AllocationPolicyConfig,
    validate_allocation_policy,
)
from rental_inventory.domain.models import (
    AllocationDecision,
    AllocationOutcome,
    Device,
    DeviceCategory,
    Interval,
    Reservation,
)
from rental_inventory.services.conflict_index import ConflictIndex
from rental_inventory.services.ingestion_service import DeviceCatalog
from rental_inventory.utils.logger import get_logger


logger = get_logger(__name__)


class TagPreferencePolicy(Protocol):
    """Soft preference consulted before first-fit.

    ``preferred_tag`` returns ``(tag, reason)`` only for a tag that is free for
    ``interval``; ``record`` is told about every tag the engine commits.
    """

    def preferred_tag(
        self,
        reservation: Reservation,
        interval: Interval,
        index: ConflictIndex,
        candidate_tags: AbstractSet[str],
    ) -> Optional[tuple[str, str]]:
        ...

    def record(self, reservation: Reservation, tag: str) -> None:
        ...


class NoTagPreference:
    """Pure first-fit: never expresses a preference."""

    def preferred_tag(
        self,
        reservation: Reservation,
        interval: Interval,
        index: ConflictIndex,
        candidate_tags: AbstractSet[str],
    ) -> Optional[tuple[str, str]]:
        return None

    def record(self, reservation: Reservation, tag: str) -> None:
        return None


def renter_key(reservation: Reservation) -> Optional[str]:
    """Identity used to link a renter's bookings: phone digits, else e-mail."""
    digits = re.sub(r"\D", "", reservation.renter_phone or "")
    if digits:
        return f"phone:{digits}"
    email = (reservation.renter_email or "").strip().lower()
    if email:
        return f"email:{email}"
    return None


@dataclass(frozen=True)
class _Booking:
    reservation_id: int
    tag: str
    pickup_date: date
    return_date: date


class RenterContinuityPolicy:
    """Prefer the tag a renter used in a booking adjacent to this one.

    Adjacent means the other booking ends 1..``adjacency_days`` days before
    this pickup, or starts 1..``adjacency_days`` days after this return, and
    nobody else's booking of that tag starts in between.
    """

    def __init__(self, adjacency_days: int) -> None:
        self._adjacency_days = adjacency_days
        self._bookings: dict[str, list[_Booking]] = defaultdict(list)

    @classmethod
    def from_reservations(
        cls,
        reservations: Iterable[Reservation],
        adjacency_days: int,
    ) -> RenterContinuityPolicy:
        policy = cls(adjacency_days)
        for reservation in reservations:
            if reservation.assigned_tag is not None:
                policy.record(reservation, reservation.assigned_tag)
        return policy

    def record(self, reservation: Reservation, tag: str) -> None:
        key = renter_key(reservation)
        if key is None:
            return
        self._bookings[key].append(
            _Booking(
                reservation_id=reservation.id,
                tag=tag,
                pickup_date=reservation.pickup_date,
                return_date=reservation.return_date,
            )
        )

    def preferred_tag(
        self,
        reservation: Reservation,
        interval: Interval,
        index: ConflictIndex,
        candidate_tags: AbstractSet[str],
    ) -> Optional[tuple[str, str]]:
        key = renter_key(reservation)
        if key is None or self._adjacency_days <= 0:
            return None

        options: list[tuple[int, str, int, date, date]] = []
        for booking in self._bookings.get(key, ()):
            if booking.reservation_id == reservation.id or booking.tag not in candidate_tags:
                continue
            gap_before = (reservation.pickup_date - booking.return_date).days
            gap_after = (booking.pickup_date - reservation.return_date).days
            if 1 <= gap_before <= self._adjacency_days:
                options.append(
                    (gap_before, booking.tag, booking.reservation_id,
                     booking.return_date, reservation.pickup_date)
                )
            elif 1 <= gap_after <= self._adjacency_days:
                options.append(
                    (gap_after, booking.tag, booking.reservation_id,
                     reservation.return_date, booking.pickup_date)
                )

        for _, tag, booking_id, after, before in sorted(options):
            if index.has_booking_between(tag, after, before, exclude_reservation_id=booking_id):
                continue
            if not index.is_free(tag, interval):
                continue
            return tag, f"continuity: renter used {tag} for adjacent reservation {booking_id}"
        return None


@dataclass(frozen=True)
class AllocationRun:
    decisions: list[AllocationDecision]
    reservations: list[Reservation]

    @property
    def assigned_count(self) -> int:
        return sum(
            1 for decision in self.decisions
            if decision.outcome == AllocationOutcome.ASSIGNED
        )


def processing_order(reservations: Iterable[Reservation]) -> list[Reservation]:
    """Ascending pickup date, reservation id as tie-break."""
    return sorted(reservations, key=lambda item: (item.pickup_date, item.id))


def _describe_interval(interval: Interval) -> str:
    end = "open" if interval.open_ended else interval.end.isoformat()
    return f"{interval.start.isoformat()}~{end}"


class AllocationEngine:
    """Assigns a free, category-matching tag to every untagged reservation.

    Each chosen tag is committed to the index before the next reservation is
    examined, so processing order decides who wins a contested device.
    """

    def __init__(self, config: AllocationPolicyConfig) -> None:
        validate_allocation_policy(config)
        self._config = config

    def candidate_tags(self, devices: Iterable[Device]) -> list[str]:
        return sorted(
            device.tag
            for device in devices
            if device.status not in self._config.excluded_device_statuses
        )

    def build_preference(self, reservations: Iterable[Reservation]) -> TagPreferencePolicy:
        if not self._config.continuity_enabled:
            return NoTagPreference()
        return RenterContinuityPolicy.from_reservations(
            reservations,
            adjacency_days=self._config.continuity_adjacency_days,
        )

    def allocate(
        self,
        category: DeviceCategory,
        unassigned_reservations: Sequence[Reservation],
        index: ConflictIndex,
        candidate_tags: Sequence[str],
        preference: Optional[TagPreferencePolicy] = None,
    ) -> list[AllocationDecision]:
        policy = preference or NoTagPreference()
        tags = sorted(set(candidate_tags))
        tag_set = frozenset(tags)

        decisions: list[AllocationDecision] = []
        for reservation in processing_order(unassigned_reservations):
            if reservation.category != category:
                raise ValueError(
                    f"reservation {reservation.id} requests {reservation.category.value}, "
                    f"not {category.value}"
                )
            if reservation.assigned_tag is not None:
                raise ValueError(f"reservation {reservation.id} already carries a tag")

            interval = index.interval_for(reservation)
            chosen: Optional[str] = None
            reason = ""

            preferred = policy.preferred_tag(reservation, interval, index, tag_set)
            if preferred is not None:
                chosen, reason = preferred
            else:
                for tag in tags:
                    if index.is_free(tag, interval):
                        chosen = tag
                        reason = f"first-fit: first free {category.value} device by tag name"
                        break

            if chosen is None:
                if tags:
                    reason = (
                        f"all {len(tags)} devices in category {category.value} are booked "
                        f"for {_describe_interval(interval)}"
                    )
                else:
                    reason = f"no assignable devices in category {category.value}"
                logger.warning(
                    "No capacity | reservation_id=%s | category=%s | window=%s",
                    reservation.id,
                    category.value,
                    _describe_interval(interval),
                )
                decisions.append(
                    AllocationDecision(
                        reservation_id=reservation.id,
                        tag=None,
                        outcome=AllocationOutcome.NO_CAPACITY,
                        reason=reason,
                    )
                )
                continue

            index.commit(chosen, interval)
            policy.record(reservation, chosen)
            decisions.append(
                AllocationDecision(
                    reservation_id=reservation.id,
                    tag=chosen,
                    outcome=AllocationOutcome.ASSIGNED,
                    reason=reason,
                )
            )
        return decisions

    def allocate_all(
        self,
        devices: Sequence[Device],
        reservations: Sequence[Reservation],
        index: ConflictIndex,
    ) -> AllocationRun:
        """Allocate every category in turn and apply the decided tags."""
        devices_by_category = DeviceCatalog.index_by_category(devices)

        unassigned_by_category: dict[DeviceCategory, list[Reservation]] = defaultdict(list)
        for reservation in reservations:
            if reservation.assigned_tag is None:
                unassigned_by_category[reservation.category].append(reservation)

        preference = self.build_preference(reservations)
        decisions: list[AllocationDecision] = []
        for category in sorted(unassigned_by_category, key=lambda item: item.value):
            category_decisions = self.allocate(
                category,
                unassigned_by_category[category],
                index,
                self.candidate_tags(devices_by_category.get(category, ())),
                preference=preference,
            )
            decisions.extend(category_decisions)
            logger.info(
                "Category allocated | category=%s | assigned=%s | no_capacity=%s",
                category.value,
                sum(1 for item in category_decisions if item.tag is not None),
                sum(1 for item in category_decisions if item.tag is None),
            )

        tag_by_reservation = {
            decision.reservation_id: decision.tag
            for decision in decisions
            if decision.tag is not None
        }
        updated = [
            replace(reservation, assigned_tag=tag_by_reservation[reservation.id])
            if reservation.id in tag_by_reservation
            else reservation
            for reservation in reservations
        ]
        return AllocationRun(decisions=decisions, reservations=updated)
