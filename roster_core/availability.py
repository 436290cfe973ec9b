"""Free-time index built from per-user, per-date availability declarations."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable

from .models import AvailabilityInterval
from .time_utils import interval_minutes


def _merge_overlapping(spans: list[tuple[int, int]]) -> list[tuple[int, int]]:
    """Fold duplicate and overlapping spans together; spans that only touch stay apart."""
    merged: list[tuple[int, int]] = []
    for start, end in sorted(spans):
        if merged and start < merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


class AvailabilityIndex:
    """Merged free intervals keyed by `(user_id, date)`, ordered by start.

    Overlapping declarations are merged. Containment is strict: a shift is
    only covered when one merged interval spans all of it, so back-to-back
    declarations do not combine.
    """

    def __init__(self, by_user_date: dict[tuple[str, str], list[tuple[int, int]]]):
        self._by_user_date = by_user_date
        week_totals: dict[str, int] = defaultdict(int)
        for (user_id, _), spans in by_user_date.items():
            week_totals[user_id] += sum(end - start for start, end in spans)
        self._week_totals = dict(week_totals)

    @classmethod
    def build(cls, records: Iterable[AvailabilityInterval]) -> AvailabilityIndex:
        grouped: dict[tuple[str, str], list[tuple[int, int]]] = defaultdict(list)
        for rec in records:
            span = interval_minutes(rec.start, rec.end)
            if span is None:
                raise ValueError(
                    f"invalid availability interval for {rec.user_id} on {rec.date}: "
                    f"{rec.start}-{rec.end}"
                )
            grouped[(rec.user_id, rec.date)].append(span)
        return cls({key: _merge_overlapping(spans) for key, spans in grouped.items()})

    def intervals(self, user_id: str, date: str) -> list[tuple[int, int]]:
        return list(self._by_user_date.get((user_id, date), []))

    def is_available(self, user_id: str, date: str, start: str, end: str) -> bool:
        wanted = interval_minutes(start, end)
        if wanted is None:
            return False
        return any(s <= wanted[0] and wanted[1] <= e for s, e in self._by_user_date.get((user_id, date), []))

    def free_minutes(self, user_id: str, date: str) -> int:
        return sum(e - s for s, e in self._by_user_date.get((user_id, date), []))

    def week_free_minutes(self, user_id: str) -> int:
        return self._week_totals.get(user_id, 0)

    def users(self) -> set[str]:
        return {user_id for user_id, _ in self._by_user_date}
