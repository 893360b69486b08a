"""Day-indexed occupancy grid built from the allocated reservation set."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Iterable

from rental_inventory.domain.models import Reservation, TimeSlot
from rental_inventory.services.conflict_index import reservation_interval


def build_timeline(
    start_date: date,
    end_date: date,
    reservations: Iterable[Reservation],
    as_of: date,
) -> list[TimeSlot]:
    """Return one slot per calendar day in ``[start_date, end_date]``.

    A reservation lands on every day its interval covers. Unreturned devices
    whose return date has passed keep appearing on each later day, so the
    overdue backlog stays visible. Slot order preserves input order.
    """
    if start_date > end_date:
        raise ValueError("start_date must not be after end_date")

    day_count = (end_date - start_date).days + 1
    buckets: list[list[Reservation]] = [[] for _ in range(day_count)]

    for reservation in reservations:
        interval = reservation_interval(reservation, as_of)
        first = max(interval.start, start_date)
        last = min(interval.effective_end, end_date)
        if first > last:
            continue
        for offset in range((first - start_date).days, (last - start_date).days + 1):
            buckets[offset].append(reservation)

    return [
        TimeSlot(date=start_date + timedelta(days=offset), reservations=bucket)
        for offset, bucket in enumerate(buckets)
    ]
