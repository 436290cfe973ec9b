from __future__ import annotations

import re
from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

from roster_core.time_utils import week_id_for, week_range

UTC = timezone.utc


def to_iso_datetime(d: date, tz: str, *, end_of_day: bool = False) -> str:
    """Start (or end) of a local day as an RFC 3339 UTC timestamp."""
    t = time(23, 59, 59) if end_of_day else time(0, 0, 0)
    local = datetime.combine(d, t, tzinfo=ZoneInfo(tz))
    return local.astimezone(UTC).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    text = value.replace("Z", "+00:00")
    # Firestore timestamps carry nanoseconds; datetime keeps microseconds.
    text = re.sub(r"\.(\d{6})\d+", r".\1", text)
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def local_date(value: datetime | None, tz: str) -> str:
    """Calendar date of a stored timestamp in the restaurant's timezone."""
    if value is None:
        return ""
    return value.astimezone(ZoneInfo(tz)).strftime("%Y-%m-%d")


def now_utc_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def ensure_week_id(value: str) -> str:
    """Validate and canonicalize a week id; `2025-W02` becomes `2025-W2`."""
    monday, _ = week_range(value)
    return week_id_for(monday)
