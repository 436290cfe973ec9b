"""Value types exchanged with the allocation engine.

Dates are ISO `YYYY-MM-DD` strings and times are `HH:MM` strings, as they are
stored in the schedule documents.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from .roles import ANY_ROLE
from .time_utils import duration_minutes


@dataclass(frozen=True)
class Employee:
    id: str
    display_name: str
    role: str
    secondary_roles: tuple[str, ...] = ()
    is_test_account: bool = False


@dataclass(frozen=True)
class AssignedUser:
    user_id: str
    user_name: str
    role: str


@dataclass(frozen=True)
class ShiftSlot:
    id: str
    template_id: str
    date: str
    start: str
    end: str
    role: str = ANY_ROLE
    label: str = ""
    min_users: int = 0
    assigned: tuple[AssignedUser, ...] = ()

    @property
    def minutes(self) -> int:
        return duration_minutes(self.start, self.end)

    @property
    def hours(self) -> float:
        return self.minutes / 60.0

    def has_user(self, user_id: str) -> bool:
        return any(a.user_id == user_id for a in self.assigned)

    def describe(self) -> str:
        name = self.label or self.template_id
        return f"{name} ({self.date} {self.start}-{self.end})"


@dataclass(frozen=True)
class AvailabilityInterval:
    user_id: str
    date: str
    start: str
    end: str


@dataclass(frozen=True)
class Assignment:
    shift_id: str
    user_id: str
    role: str
    score: float = 0.0
    forced: bool = False
    retained: bool = False


@dataclass(frozen=True)
class UnfilledShift:
    shift_id: str
    remaining: int
    by_role: dict[str, int] = field(default_factory=dict)


@dataclass
class ScheduleRunResult:
    assignments: list[Assignment] = field(default_factory=list)
    unfilled: list[UnfilledShift] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    evaluation_matrix: dict[str, list[dict[str, Any]]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "assignments": [asdict(a) for a in self.assignments],
            "unfilled": [asdict(u) for u in self.unfilled],
            "warnings": list(self.warnings),
            "errors": list(self.errors),
            "evaluation_matrix": self.evaluation_matrix,
        }


@dataclass(frozen=True)
class WeekInput:
    """Everything one engine run needs, as read from a snapshot."""

    week_id: str
    shifts: tuple[ShiftSlot, ...]
    employees: tuple[Employee, ...]
    availability: tuple[AvailabilityInterval, ...]
    conditions: tuple[dict[str, Any], ...] = ()


def result_from_dict(data: dict[str, Any]) -> ScheduleRunResult:
    """Rebuild a result from `ScheduleRunResult.to_dict()` output."""
    return ScheduleRunResult(
        assignments=[Assignment(**row) for row in data.get("assignments", [])],
        unfilled=[
            UnfilledShift(
                shift_id=row["shift_id"],
                remaining=int(row["remaining"]),
                by_role=dict(row.get("by_role") or {}),
            )
            for row in data.get("unfilled", [])
        ],
        warnings=list(data.get("warnings", [])),
        errors=list(data.get("errors", [])),
        evaluation_matrix=dict(data.get("evaluation_matrix") or {}),
    )


# ---- dict -> model ---------------------------------------------------------

def employee_from_dict(row: dict[str, Any]) -> Employee:
    return Employee(
        id=str(row["id"]),
        display_name=str(row.get("display_name") or row["id"]),
        role=str(row["role"]),
        secondary_roles=tuple(str(r) for r in row.get("secondary_roles") or ()),
        is_test_account=bool(row.get("is_test_account", False)),
    )


def shift_from_dict(row: dict[str, Any]) -> ShiftSlot:
    assigned = tuple(
        AssignedUser(
            user_id=str(a["user_id"]),
            user_name=str(a.get("user_name") or a["user_id"]),
            role=str(a.get("role") or ANY_ROLE),
        )
        for a in row.get("assigned") or ()
    )
    return ShiftSlot(
        id=str(row["id"]),
        template_id=str(row.get("template_id") or row["id"]),
        date=str(row["date"]),
        start=str(row["start"]),
        end=str(row["end"]),
        role=str(row.get("role") or ANY_ROLE),
        label=str(row.get("label") or ""),
        min_users=int(row.get("min_users") or 0),
        assigned=assigned,
    )


def availability_from_dict(row: dict[str, Any]) -> AvailabilityInterval:
    return AvailabilityInterval(
        user_id=str(row["user_id"]),
        date=str(row["date"]),
        start=str(row["start"]),
        end=str(row["end"]),
    )
