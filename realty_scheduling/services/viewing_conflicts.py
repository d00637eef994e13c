"""Overlap and capacity rules for a broker's viewings on one date."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TypeVar

from realty_scheduling.services.viewing_models import AvailabilitySlot, ViewingInterval, intervals_overlap

IntervalT = TypeVar("IntervalT", bound=ViewingInterval)


def is_same_viewing_group(interval: ViewingInterval, *, property_id: str, start_minute: int) -> bool:
    return interval.property_id == property_id and interval.start_minute == start_minute


def find_conflicting_interval(
    intervals: Iterable[IntervalT],
    *,
    property_id: str,
    start_minute: int,
    end_minute: int,
) -> IntervalT | None:
    for interval in sorted(intervals, key=lambda item: (item.start_minute, item.end_minute)):
        if is_same_viewing_group(interval, property_id=property_id, start_minute=start_minute):
            continue
        if intervals_overlap(start_minute, end_minute, interval.start_minute, interval.end_minute):
            return interval
    return None


def count_viewing_group(
    intervals: Iterable[ViewingInterval],
    *,
    property_id: str,
    start_minute: int,
) -> int:
    return sum(
        1
        for interval in intervals
        if is_same_viewing_group(interval, property_id=property_id, start_minute=start_minute)
    )


def select_capacity_slot(slots: Iterable[AvailabilitySlot], start_minute: int) -> AvailabilitySlot | None:
    """Pick the slot that governs capacity for a viewing starting at ``start_minute``.

    The narrowest open slot containing the start wins; ties go to the latest
    start, then to the lowest id, so the choice does not depend on store order.
    """
    candidates = [slot for slot in slots if slot.is_available and slot.contains_start(start_minute)]
    if not candidates:
        return None
    candidates.sort(
        key=lambda slot: (
            slot.end_minute - slot.start_minute,
            -slot.start_minute,
            slot.id,
        ),
    )
    return candidates[0]
