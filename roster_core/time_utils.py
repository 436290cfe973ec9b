"""Shared time utilities used by availability, conflict and scoring logic."""

from __future__ import annotations

from datetime import date, timedelta

DAY_MINUTES = 24 * 60


def parse_hhmm_to_minutes(value: str | None) -> int | None:
    """Parse HH:MM into minutes after midnight."""
    if not value or ":" not in str(value):
        return None
    try:
        hh, mm = str(value).split(":", 1)
        h = int(hh)
        m = int(mm)
    except (TypeError, ValueError):
        return None
    if h < 0 or h > 24 or m < 0 or m > 59 or (h == 24 and m != 0):
        return None
    return h * 60 + m


def interval_minutes(start: str | None, end: str | None) -> tuple[int, int] | None:
    """Return `(start, end)` minutes; an end at or before start runs past midnight."""
    s = parse_hhmm_to_minutes(start)
    e = parse_hhmm_to_minutes(end)
    if s is None or e is None:
        return None
    if e <= s:
        e += DAY_MINUTES
    return s, e


def duration_minutes(start: str | None, end: str | None) -> int:
    span = interval_minutes(start, end)
    if span is None:
        return 0
    return span[1] - span[0]


def calc_shift_hours(start: str | None, end: str | None) -> float:
    """Calculate duration for a shift in decimal hours."""
    return duration_minutes(start, end) / 60.0


def time_overlap(start_a: str, end_a: str, start_b: str, end_b: str) -> bool:
    """Return True if two same-day `[start, end)` ranges intersect."""
    a = interval_minutes(start_a, end_a)
    b = interval_minutes(start_b, end_b)
    if a is None or b is None:
        return False
    return a[0] < b[1] and b[0] < a[1]


def week_id_for(datum: str | date) -> str:
    """Week id as stored by the schedule collection, e.g. `2025-W2`."""
    d = date.fromisoformat(datum) if isinstance(datum, str) else datum
    year, week, _ = d.isocalendar()
    return f"{year}-W{week}"


def week_range(week_id: str) -> tuple[date, date]:
    """Return the Monday and Sunday of an ISO week id like `2025-W2`."""
    try:
        year_part, week_part = week_id.split("-W", 1)
        year = int(year_part)
        week = int(week_part)
    except ValueError as exc:
        raise ValueError(f"invalid week id: {week_id!r}") from exc
    monday = date.fromisocalendar(year, week, 1)
    return monday, monday + timedelta(days=6)


def format_date_vn(iso_date: str) -> str:
    """`2025-01-06` -> `06/01/2025`."""
    parts = (iso_date or "").split("-")
    if len(parts) != 3:
        return iso_date or ""
    y, m, d = parts
    return f"{d}/{m}/{y}"
