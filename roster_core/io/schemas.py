"""CSV column layouts for input directories and plan exports, plus cell codecs."""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Input CSV column names
# ---------------------------------------------------------------------------

EMPLOYEES_COLS = [
    "user_id",
    "display_name",
    "role",
    "secondary_roles",
    "is_test_account",
]

SHIFTS_COLS = [
    "shift_id",
    "template_id",
    "date",
    "start",
    "end",
    "role",
    "label",
    "min_users",
    "assigned_user_ids",
    "assigned_roles",
]

AVAILABILITY_COLS = [
    "user_id",
    "date",
    "start",
    "end",
]

# ---------------------------------------------------------------------------
# Output CSV column names
# ---------------------------------------------------------------------------

SCORE_COMPONENTS = [
    "forced",
    "priority",
    "proportional",
]

ASSIGNMENTS_COLS = [
    "shift_id",
    "date",
    "start",
    "end",
    "label",
    "user_id",
    "employee_name",
    "role",
    "score",
    "forced",
    "retained",
]

UNFILLED_COLS = [
    "shift_id",
    "date",
    "start",
    "end",
    "label",
    "remaining",
    "by_role",
]

WORKLOAD_COLS = [
    "user_id",
    "employee_name",
    "assigned_shifts",
    "assigned_hours",
    "min_shifts",
    "max_shifts",
    "min_hours",
    "max_hours",
    "within_limits",
]

EVAL_MATRIX_COLS = [
    "unit_id",
    "shift_id",
    "user_id",
    "employee_name",
    "match",
    "blocked",
    "blocked_reasons",
    "overrides",
    "score",
    *[f"score_{c}" for c in SCORE_COMPONENTS],
    "selected",
]

# Multi-valued cells (secondary roles, assignees) use "|" as separator.
PIPE = "|"

_TRUTHY = frozenset({"TRUE", "1", "YES"})


def _blank(value: object) -> bool:
    return value is None or not str(value).strip()


def pipe_join(values: list | tuple | None) -> str:
    return PIPE.join(str(v) for v in values or () if not _blank(v))


def pipe_split(value: str | None) -> list[str]:
    """`"u-1| u-2"` -> `["u-1", "u-2"]`; blank parts are dropped."""
    if _blank(value):
        return []
    return [part.strip() for part in str(value).split(PIPE) if part.strip()]


def role_counts_join(by_role: dict[str, int] | None) -> str:
    """{"Phục vụ": 2} -> "Phục vụ=2"."""
    return pipe_join([f"{role}={count}" for role, count in sorted((by_role or {}).items())])


def to_int(value: str | None, default: int = 0) -> int:
    """Read a count cell; blank or unparsable cells give `default`. "2.0" reads as 2."""
    if _blank(value):
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def to_bool(value: str | None) -> bool:
    return not _blank(value) and str(value).strip().upper() in _TRUTHY


def fmt_bool(value: bool) -> str:
    return "TRUE" if value else "FALSE"


def fmt_optional(value: float | int | None) -> str:
    return "" if value is None else str(value)
