"""Same-day time conflict detection between shifts."""

from __future__ import annotations

from collections.abc import Iterable

from .models import ShiftSlot
from .time_utils import time_overlap


def shifts_overlap(a: ShiftSlot, b: ShiftSlot) -> bool:
    """Two shifts conflict iff they share a date and their `[start, end)` intersect."""
    return a.date == b.date and time_overlap(a.start, a.end, b.start, b.end)


def find_conflict(user_id: str, candidate: ShiftSlot, other_shifts: Iterable[ShiftSlot]) -> ShiftSlot | None:
    """Return the first shift `user_id` already works that overlaps `candidate`."""
    for other in other_shifts:
        if other.id == candidate.id:
            continue
        if not other.has_user(user_id):
            continue
        if shifts_overlap(candidate, other):
            return other
    return None
