"""
Availability engine.

Pure functions: callers fetch booths, non-cancelled bookings and blocking holds
(see ``app.crud``) and pass them in. Every interval is converted to absolute
minutes so that an overnight booking on the previous date still blocks the
early slots of the requested one.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from typing import Any
from uuid import UUID

from app.schemas import BlockedBy, SlotAvailability, VenueSlot
from app.timeutils import (
    MINUTES_PER_DAY,
    absolute_interval,
    minutes_to_time,
    normalized_interval,
    overlaps,
    within_operating_hours,
)

DEFAULT_GRANULARITY = 60
MIN_GRANULARITY = 15
DEFAULT_OPEN = "10:00"
DEFAULT_CLOSE = "23:00"


@dataclass(frozen=True)
class Busy:
    """An occupied interval on one booth, in absolute minutes."""

    booth_id: UUID
    start: int
    end: int
    cause: BlockedBy


def clamp_granularity(minutes: int | None) -> int:
    return max(MIN_GRANULARITY, minutes or DEFAULT_GRANULARITY)


def operating_window(booth: Any) -> tuple[str, str]:
    return (
        (booth.operating_hours_start or DEFAULT_OPEN)[:5],
        (booth.operating_hours_end or DEFAULT_CLOSE)[:5],
    )


def busy_intervals(
    bookings: Iterable[Any], holds: Iterable[Any]
) -> dict[UUID, list[Busy]]:
    """Group bookings and holds into per-booth busy lists. Callers pre-filter status."""
    by_booth: dict[UUID, list[Busy]] = defaultdict(list)
    for b in bookings:
        if b.booth_id is None or not b.start_time or not b.end_time:
            continue
        start, end = absolute_interval(b.booking_date, b.start_time, b.end_time)
        by_booth[b.booth_id].append(Busy(b.booth_id, start, end, BlockedBy.BOOKING))
    for h in holds:
        start, end = absolute_interval(h.booking_date, h.start_time, h.end_time)
        by_booth[h.booth_id].append(Busy(h.booth_id, start, end, BlockedBy.HOLD))
    return by_booth


def first_conflict(start: int, end: int, busy: Iterable[Busy]) -> Busy | None:
    """First busy interval overlapping ``[start, end)``; bookings win over holds."""
    hit: Busy | None = None
    for item in busy:
        if overlaps(start, end, item.start, item.end):
            if item.cause == BlockedBy.BOOKING:
                return item
            hit = hit or item
    return hit


def booth_slots(
    booth: Any,
    day: date,
    granularity: int,
    busy: list[Busy],
) -> list[SlotAvailability]:
    """Slot grid for a single booth across its operating hours."""
    open_time, close_time = operating_window(booth)
    open_min, close_min = normalized_interval(open_time, close_time)

    slots: list[SlotAvailability] = []
    cursor = open_min
    while cursor + granularity <= close_min:
        start, end = minutes_to_time(cursor), minutes_to_time(cursor + granularity)
        # a (date, start, end) triple always means absolute_interval(date, ...)
        blocker = first_conflict(*absolute_interval(day, start, end), busy)
        slots.append(
            SlotAvailability(
                start_time=start,
                end_time=end,
                available=blocker is None,
                blocked_by=blocker.cause if blocker else None,
            )
        )
        cursor += granularity
    return slots


def venue_slots(
    booths: list[Any],
    day: date,
    granularity: int,
    busy_by_booth: dict[UUID, list[Busy]],
) -> list[VenueSlot]:
    """
    Whole-day grid aggregated over ``booths``. A slot is available if any
    booth is free; slots outside every booth's hours are left out.
    """
    slots: list[VenueSlot] = []
    for start_min in range(0, MINUTES_PER_DAY - granularity + 1, granularity):
        start, end = minutes_to_time(start_min), minutes_to_time(start_min + granularity)
        in_hours = [b for b in booths if within_operating_hours(start, end, *operating_window(b))]
        if not in_hours:
            continue

        slot_start, slot_end = absolute_interval(day, start, end)
        capacities = {
            b.capacity
            for b in in_hours
            if first_conflict(slot_start, slot_end, busy_by_booth.get(b.id, [])) is None
        }
        slots.append(
            VenueSlot(
                start_time=start,
                end_time=end,
                available=bool(capacities),
                capacities=sorted(capacities),
            )
        )
    return slots


def free_booths(
    booths: list[Any],
    day: date,
    start_time: str,
    end_time: str,
    busy_by_booth: dict[UUID, list[Busy]],
) -> list[Any]:
    """Booths open for and not blocked during exactly ``start_time``-``end_time``."""
    start, end = absolute_interval(day, start_time, end_time)
    return [
        b
        for b in booths
        if within_operating_hours(start_time, end_time, *operating_window(b))
        and first_conflict(start, end, busy_by_booth.get(b.id, [])) is None
    ]
