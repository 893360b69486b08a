"""Per-tag occupancy index used to keep devices from being double-booked."""

from __future__ import annotations

from collections import defaultdict
from datetime import date
from typing import Iterable, Optional, Sequence

from rental_inventory.domain.models import (
    DEVICE_OUT_STATUSES,
    Device,
    Interval,
    Reservation,
)


def reservation_interval(reservation: Reservation, as_of: date) -> Interval:
    """Occupancy a reservation imposes on its device.

    A device that went out and has not come back by ``as_of`` stays occupied
    with no upper bound, even once the nominal return date has passed.
    """
    open_ended = (
        reservation.status in DEVICE_OUT_STATUSES
        and reservation.return_date < as_of
    )
    return Interval(
        start=reservation.pickup_date,
        end=reservation.return_date,
        open_ended=open_ended,
        reservation_id=reservation.id,
    )


class ConflictIndex:
    """Mapping of device tag to the intervals that tag is committed to.

    One instance is built per request and discarded afterwards. Intervals are
    only ever appended; lists stay unsorted since every check is pairwise.
    """

    def __init__(self, as_of: date, tags: Iterable[str] = ()) -> None:
        self._as_of = as_of
        self._intervals: dict[str, list[Interval]] = defaultdict(list)
        for tag in tags:
            self._intervals.setdefault(tag, [])

    @classmethod
    def build(
        cls,
        devices: Sequence[Device],
        reservations: Iterable[Reservation],
        as_of: date,
    ) -> ConflictIndex:
        index = cls(as_of=as_of, tags=(device.tag for device in devices))
        for reservation in reservations:
            if reservation.assigned_tag is None:
                continue
            index.commit(reservation.assigned_tag, index.interval_for(reservation))
        return index

    @property
    def as_of(self) -> date:
        return self._as_of

    def interval_for(self, reservation: Reservation) -> Interval:
        return reservation_interval(reservation, self._as_of)

    def tags(self) -> list[str]:
        return sorted(self._intervals)

    def intervals(self, tag: str) -> tuple[Interval, ...]:
        return tuple(self._intervals.get(tag, ()))

    def conflicts(self, tag: str, candidate: Interval) -> list[Interval]:
        return [
            interval
            for interval in self._intervals.get(tag, ())
            if interval.overlaps(candidate)
        ]

    def is_free(self, tag: str, candidate: Interval) -> bool:
        return not any(
            interval.overlaps(candidate)
            for interval in self._intervals.get(tag, ())
        )

    def commit(self, tag: str, interval: Interval) -> None:
        self._intervals[tag].append(interval)

    def has_booking_between(
        self,
        tag: str,
        after: date,
        before: date,
        exclude_reservation_id: Optional[int] = None,
    ) -> bool:
        """True when ``tag`` has a booking starting strictly between two days."""
        return any(
            after < interval.start < before
            for interval in self._intervals.get(tag, ())
            if exclude_reservation_id is None
            or interval.reservation_id != exclude_reservation_id
        )
