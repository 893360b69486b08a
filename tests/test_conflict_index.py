from __future__ import annotations

from datetime import date

from rental_inventory.domain.models import (
    Device,
    DeviceCategory,
    Interval,
    Reservation,
    ReservationStatus,
)
from rental_inventory.services.conflict_index import ConflictIndex, reservation_interval


AS_OF = date(2024, 1, 10)


def _reservation(
    reservation_id: int,
    pickup: date,
    return_date: date,
    *,
    tag: str | None = None,
    status: ReservationStatus = ReservationStatus.PENDING,
) -> Reservation:
    return Reservation(
        id=reservation_id,
        category=DeviceCategory.GP13,
        pickup_date=pickup,
        return_date=return_date,
        status=status,
        assigned_tag=tag,
    )


def test_bounded_intervals_overlap_inclusively():
    first = Interval(date(2024, 2, 1), date(2024, 2, 3))
    touching = Interval(date(2024, 2, 3), date(2024, 2, 5))
    disjoint = Interval(date(2024, 2, 4), date(2024, 2, 6))

    assert first.overlaps(touching)
    assert touching.overlaps(first)
    assert not first.overlaps(disjoint)
    assert not disjoint.overlaps(first)


def test_open_ended_interval_overlaps_any_later_candidate():
    open_interval = Interval(date(2024, 1, 1), date(2024, 1, 3), open_ended=True)

    assert open_interval.overlaps(Interval(date(2024, 6, 1), date(2024, 6, 2)))
    assert open_interval.overlaps(Interval(date(2024, 1, 1), date(2024, 1, 1)))
    assert not open_interval.overlaps(Interval(date(2023, 12, 20), date(2023, 12, 31)))


def test_reservation_interval_is_open_ended_only_for_unreturned_devices_past_due():
    overdue = _reservation(1, date(2024, 1, 1), date(2024, 1, 3), status=ReservationStatus.PICKED_UP)
    still_due = _reservation(2, date(2024, 1, 8), date(2024, 1, 12), status=ReservationStatus.PICKED_UP)
    never_collected = _reservation(3, date(2024, 1, 1), date(2024, 1, 3))
    returned = _reservation(4, date(2024, 1, 1), date(2024, 1, 3), status=ReservationStatus.RETURNED)

    assert reservation_interval(overdue, AS_OF).open_ended
    assert not reservation_interval(still_due, AS_OF).open_ended
    assert not reservation_interval(never_collected, AS_OF).open_ended
    assert not reservation_interval(returned, AS_OF).open_ended
    assert reservation_interval(overdue, AS_OF).reservation_id == 1


def test_build_seeds_only_tagged_reservations():
    devices = [Device("A", DeviceCategory.GP13), Device("B", DeviceCategory.GP13)]
    reservations = [
        _reservation(1, date(2024, 2, 1), date(2024, 2, 3), tag="A"),
        _reservation(2, date(2024, 2, 2), date(2024, 2, 4)),
    ]

    index = ConflictIndex.build(devices, reservations, as_of=AS_OF)

    assert index.tags() == ["A", "B"]
    assert [item.reservation_id for item in index.intervals("A")] == [1]
    assert index.intervals("B") == ()
    assert not index.is_free("A", Interval(date(2024, 2, 2), date(2024, 2, 4)))
    assert index.is_free("B", Interval(date(2024, 2, 2), date(2024, 2, 4)))


def test_commit_makes_tag_busy_for_overlapping_candidates():
    index = ConflictIndex(as_of=AS_OF, tags=["A"])
    index.commit("A", Interval(date(2024, 3, 1), date(2024, 3, 5), reservation_id=9))

    assert not index.is_free("A", Interval(date(2024, 3, 5), date(2024, 3, 7)))
    assert index.is_free("A", Interval(date(2024, 3, 6), date(2024, 3, 7)))
    assert [item.reservation_id for item in index.conflicts("A", Interval(date(2024, 3, 2), date(2024, 3, 2)))] == [9]


def test_overdue_tag_stays_busy_after_nominal_return():
    devices = [Device("A", DeviceCategory.GP13)]
    overdue = _reservation(1, date(2024, 1, 1), date(2024, 1, 3), tag="A", status=ReservationStatus.PICKED_UP)

    index = ConflictIndex.build(devices, [overdue], as_of=AS_OF)

    assert not index.is_free("A", Interval(date(2024, 1, 10), date(2024, 1, 12)))
    assert not index.is_free("A", Interval(date(2025, 1, 1), date(2025, 1, 2)))


def test_has_booking_between_ignores_excluded_reservation():
    index = ConflictIndex(as_of=AS_OF)
    index.commit("A", Interval(date(2024, 3, 1), date(2024, 3, 2), reservation_id=1))
    index.commit("A", Interval(date(2024, 3, 4), date(2024, 3, 4), reservation_id=2))

    assert index.has_booking_between("A", date(2024, 3, 2), date(2024, 3, 6))
    assert not index.has_booking_between(
        "A", date(2024, 3, 2), date(2024, 3, 6), exclude_reservation_id=2
    )
    assert not index.has_booking_between("A", date(2024, 3, 4), date(2024, 3, 6))
