from __future__ import annotations

from datetime import date

import pytest

from rental_inventory.domain.models import DeviceCategory, Reservation, ReservationStatus
from rental_inventory.services.timeline_service import build_timeline


def _reservation(reservation_id, pickup, return_date, status=ReservationStatus.PENDING):
    return Reservation(
        id=reservation_id,
        category=DeviceCategory.GP13,
        pickup_date=pickup,
        return_date=return_date,
        status=status,
        assigned_tag="GP13-1",
    )


def test_one_slot_per_day_inclusive():
    slots = build_timeline(date(2024, 2, 1), date(2024, 2, 7), [], as_of=date(2024, 1, 1))

    assert len(slots) == 7
    assert slots[0].date == date(2024, 2, 1)
    assert slots[-1].date == date(2024, 2, 7)
    assert all(slot.reservations == [] for slot in slots)


def test_single_day_window_has_one_slot():
    slots = build_timeline(date(2024, 2, 1), date(2024, 2, 1), [], as_of=date(2024, 1, 1))

    assert [slot.date for slot in slots] == [date(2024, 2, 1)]


def test_reservation_appears_on_each_covered_day_inside_window():
    reservation = _reservation(1, date(2024, 1, 30), date(2024, 2, 2))

    slots = build_timeline(date(2024, 2, 1), date(2024, 2, 4), [reservation], as_of=date(2024, 1, 1))

    assert [len(slot.reservations) for slot in slots] == [1, 1, 0, 0]


def test_overdue_rental_keeps_appearing_after_return_date():
    overdue = _reservation(
        1, date(2024, 1, 1), date(2024, 1, 3), status=ReservationStatus.PICKED_UP
    )

    slots = build_timeline(date(2024, 1, 8), date(2024, 1, 12), [overdue], as_of=date(2024, 1, 10))

    assert all(slot.reservations == [overdue] for slot in slots)


def test_returned_and_uncollected_reservations_stay_bounded():
    returned = _reservation(1, date(2024, 1, 1), date(2024, 1, 3), status=ReservationStatus.RETURNED)
    uncollected = _reservation(2, date(2024, 1, 1), date(2024, 1, 3))

    slots = build_timeline(
        date(2024, 1, 2), date(2024, 1, 5), [returned, uncollected], as_of=date(2024, 1, 10)
    )

    assert [len(slot.reservations) for slot in slots] == [2, 2, 0, 0]


def test_slot_preserves_input_order():
    first = _reservation(9, date(2024, 2, 1), date(2024, 2, 1))
    second = _reservation(2, date(2024, 2, 1), date(2024, 2, 1))

    slots = build_timeline(date(2024, 2, 1), date(2024, 2, 1), [first, second], as_of=date(2024, 1, 1))

    assert [item.id for item in slots[0].reservations] == [9, 2]


def test_inverted_window_is_rejected():
    with pytest.raises(ValueError):
        build_timeline(date(2024, 2, 2), date(2024, 2, 1), [], as_of=date(2024, 1, 1))
