"""Constraint normalization, validation and post-hoc auditing.

`ConstraintRegistry.normalize` folds the raw condition list into lookup views
used by the allocator. `validate` reports blocking contradictions; the engine
refuses to run while any are present. `audit_assignments` re-checks an
edited proposal against the same rules and classifies each violation as
obligatory (never acceptable) or soft (acceptable when deliberately forced).
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from .availability import AvailabilityIndex
from .conditions import (
    LINK_BAN,
    LINK_FORCE,
    SCOPE_GLOBAL,
    AvailabilityStrictness,
    ConditionError,
    DailyShiftLimit,
    ScheduleCondition,
    ShiftStaffing,
    StaffExclusion,
    StaffPriority,
    StaffShiftLink,
    WorkloadLimit,
    parse_conditions,
)
from .conflicts import shifts_overlap
from .models import Assignment, AvailabilityInterval, Employee, ShiftSlot
from .roles import role_match

MIN_PRIORITY_WEIGHT = 0
MAX_PRIORITY_WEIGHT = 5

# ---- Violation categories --------------------------------------------------

OBLIGATORY_VIOLATIONS = frozenset({
    "unknown_shift",
    "unknown_user",
    "duplicate_assignment",
    "role_mismatch",
    "banned_pair",
    "excluded_pair",
    "overlap_same_day",
})

SOFT_VIOLATIONS = frozenset({
    "unavailable",
    "weekly_shift_limit",
    "weekly_hours_limit",
    "daily_shift_limit",
})


def is_obligatory(reason: str) -> bool:
    return reason in OBLIGATORY_VIOLATIONS


def is_soft(reason: str) -> bool:
    return reason in SOFT_VIOLATIONS


def pair_key(a: str, b: str) -> tuple[str, str]:
    return (a, b) if a <= b else (b, a)


@dataclass(frozen=True)
class WorkloadCaps:
    """Effective weekly limits for one employee; None means unbounded."""

    source_id: str | None = None
    min_shifts: int | None = None
    max_shifts: int | None = None
    min_hours: float | None = None
    max_hours: float | None = None


NO_CAPS = WorkloadCaps()


@dataclass
class ConstraintRegistry:
    conditions: list[ScheduleCondition] = field(default_factory=list)
    workload_global: WorkloadLimit | None = None
    workload_by_user: dict[str, WorkloadLimit] = field(default_factory=dict)
    staffing_by_template: dict[str, dict[str, ShiftStaffing]] = field(default_factory=dict)
    priority_by_template_user: dict[tuple[str, str], StaffPriority] = field(default_factory=dict)
    links_by_template_user: dict[tuple[str, str], str] = field(default_factory=dict)
    daily_limit_global: DailyShiftLimit | None = None
    daily_limit_by_user: dict[str, DailyShiftLimit] = field(default_factory=dict)
    exclusions: dict[str | None, set[tuple[str, str]]] = field(default_factory=dict)
    strict_availability: bool = False
    _link_values: dict[tuple[str, str], set[str]] = field(default_factory=dict, repr=False)

    @classmethod
    def normalize(cls, conditions: Iterable[Any]) -> ConstraintRegistry:
        """Build the lookup views from typed conditions or stored records.

        Disabled conditions are dropped. Later records win over earlier ones
        targeting the same key.
        """
        parsed = [c for c in parse_conditions(list(conditions)) if c.enabled]
        reg = cls(conditions=parsed)
        link_values: dict[tuple[str, str], set[str]] = defaultdict(set)

        for c in parsed:
            if isinstance(c, WorkloadLimit):
                if c.scope == SCOPE_GLOBAL:
                    reg.workload_global = c
                else:
                    reg.workload_by_user[c.user_id] = c
            elif isinstance(c, DailyShiftLimit):
                if c.user_id:
                    reg.daily_limit_by_user[c.user_id] = c
                else:
                    reg.daily_limit_global = c
            elif isinstance(c, ShiftStaffing):
                reg.staffing_by_template.setdefault(c.template_id, {})[c.role] = c
            elif isinstance(c, StaffPriority):
                reg.priority_by_template_user[(c.template_id, c.user_id)] = c
            elif isinstance(c, StaffShiftLink):
                link_values[(c.template_id, c.user_id)].add(c.link)
            elif isinstance(c, StaffExclusion):
                scope = reg.exclusions.setdefault(c.template_id, set())
                for blocked in c.blocked_user_ids:
                    if blocked != c.user_id:
                        scope.add(pair_key(c.user_id, blocked))
            elif isinstance(c, AvailabilityStrictness):
                reg.strict_availability = c.strict
            else:
                raise ConditionError(f"unsupported condition value: {c!r}")

        for key, values in link_values.items():
            # A contradictory pair is a validation error; ban is kept meanwhile.
            reg.links_by_template_user[key] = LINK_BAN if LINK_BAN in values else LINK_FORCE
        reg._link_values = dict(link_values)
        return reg

    # ---- validation ----------------------------------------------------

    def validate(self) -> list[str]:
        errors: list[str] = []
        exclusion_seen: dict[str | None, set[tuple[str, str]]] = defaultdict(set)

        for c in self.conditions:
            if isinstance(c, WorkloadLimit):
                who = "global" if c.scope == SCOPE_GLOBAL else f"user {c.user_id}"
                if _exceeds(c.min_shifts_per_week, c.max_shifts_per_week):
                    errors.append(
                        f"Workload limit {c.id} ({who}): minimum shifts per week "
                        f"({c.min_shifts_per_week}) is greater than maximum ({c.max_shifts_per_week})."
                    )
                if _exceeds(c.min_hours_per_week, c.max_hours_per_week):
                    errors.append(
                        f"Workload limit {c.id} ({who}): minimum hours per week "
                        f"({c.min_hours_per_week}) is greater than maximum ({c.max_hours_per_week})."
                    )
            elif isinstance(c, DailyShiftLimit):
                if c.max_per_day is not None and c.max_per_day < 1:
                    errors.append(f"Daily shift limit {c.id}: maximum per day must be at least 1.")
            elif isinstance(c, ShiftStaffing):
                if c.count < 0:
                    errors.append(f"Shift staffing {c.id}: count for role {c.role} cannot be negative.")
            elif isinstance(c, StaffPriority):
                if not MIN_PRIORITY_WEIGHT <= c.weight <= MAX_PRIORITY_WEIGHT:
                    errors.append(
                        f"Staff priority {c.id}: weight {c.weight} is outside "
                        f"{MIN_PRIORITY_WEIGHT}-{MAX_PRIORITY_WEIGHT}."
                    )
            elif isinstance(c, StaffExclusion):
                if not c.blocked_user_ids:
                    errors.append(f"Staff exclusion {c.id}: at least one blocked user is required.")
                    continue
                for blocked in c.blocked_user_ids:
                    if blocked == c.user_id:
                        errors.append(f"Staff exclusion {c.id}: user {c.user_id} cannot be excluded from themselves.")
                        continue
                    key = pair_key(c.user_id, blocked)
                    if key in exclusion_seen[c.template_id]:
                        scope = f" (template {c.template_id})" if c.template_id else ""
                        errors.append(
                            f"Staff exclusion {c.id}: duplicate exclusion between {key[0]} and {key[1]}{scope}."
                        )
                    else:
                        exclusion_seen[c.template_id].add(key)

        for (template_id, user_id), values in sorted(self._link_values.items()):
            if len(values) > 1:
                errors.append(
                    f"Conflicting link for user {user_id} on template {template_id}: "
                    f"both force and ban are set."
                )
        return errors

    # ---- lookups -------------------------------------------------------

    def effective_workload(self, user_id: str) -> WorkloadCaps:
        """User-scoped limits replace the global record entirely."""
        rec = self.workload_by_user.get(user_id) or self.workload_global
        if rec is None:
            return NO_CAPS
        return WorkloadCaps(
            source_id=rec.id,
            min_shifts=rec.min_shifts_per_week,
            max_shifts=rec.max_shifts_per_week,
            min_hours=rec.min_hours_per_week,
            max_hours=rec.max_hours_per_week,
        )

    def effective_daily_limit(self, user_id: str) -> int | None:
        rec = self.daily_limit_by_user.get(user_id) or self.daily_limit_global
        return rec.max_per_day if rec else None

    def staffing(self, template_id: str) -> dict[str, ShiftStaffing]:
        return self.staffing_by_template.get(template_id, {})

    def link(self, template_id: str, user_id: str) -> str | None:
        return self.links_by_template_user.get((template_id, user_id))

    def priority(self, template_id: str, user_id: str) -> StaffPriority | None:
        return self.priority_by_template_user.get((template_id, user_id))

    def is_banned(self, template_id: str, user_id: str) -> bool:
        return self.link(template_id, user_id) == LINK_BAN

    def is_forced(self, template_id: str, user_id: str) -> bool:
        """A `force` link or a mandatory priority."""
        if self.link(template_id, user_id) == LINK_FORCE:
            return True
        prio = self.priority(template_id, user_id)
        return bool(prio and prio.mandatory)

    def forced_pairs(self) -> list[tuple[str, str]]:
        pairs = {k for k, v in self.links_by_template_user.items() if v == LINK_FORCE}
        pairs |= {k for k, p in self.priority_by_template_user.items() if p.mandatory}
        return sorted(p for p in pairs if not self.is_banned(*p))

    def is_excluded(self, template_id: str, user_a: str, user_b: str) -> bool:
        key = pair_key(user_a, user_b)
        return key in self.exclusions.get(None, ()) or key in self.exclusions.get(template_id, ())


def _exceeds(low: float | None, high: float | None) -> bool:
    return low is not None and high is not None and low > high


def validate_conditions(conditions: Iterable[Any]) -> list[str]:
    return ConstraintRegistry.normalize(conditions).validate()


# ---- Post-hoc audit --------------------------------------------------------

def audit_assignments(
    assignments: Iterable[Assignment],
    shifts: Iterable[ShiftSlot],
    employees: Iterable[Employee],
    availability: Iterable[AvailabilityInterval],
    conditions: Iterable[Any],
) -> list[dict[str, Any]]:
    """Check a (possibly hand-edited) proposal against the scheduling rules.

    Returns one violation dict per problem:
        {shift_id, user_id, violation, detail}
    """
    shift_by_id = {s.id: s for s in shifts}
    employee_by_id = {e.id: e for e in employees}
    index = AvailabilityIndex.build(availability)
    registry = ConstraintRegistry.normalize(conditions)

    violations: list[dict[str, Any]] = []

    def add(shift_id: str, user_id: str, violation: str, detail: str) -> None:
        violations.append({"shift_id": shift_id, "user_id": user_id, "violation": violation, "detail": detail})

    seen: set[tuple[str, str]] = set()
    by_shift: dict[str, list[str]] = defaultdict(list)
    by_user: dict[str, list[ShiftSlot]] = defaultdict(list)

    for a in assignments:
        shift = shift_by_id.get(a.shift_id)
        emp = employee_by_id.get(a.user_id)
        if shift is None:
            add(a.shift_id, a.user_id, "unknown_shift", f"Shift {a.shift_id} is not in this week")
            continue
        if emp is None:
            add(a.shift_id, a.user_id, "unknown_user", f"User {a.user_id} is not on the roster")
            continue
        if (a.shift_id, a.user_id) in seen:
            add(a.shift_id, a.user_id, "duplicate_assignment", f"{emp.display_name} appears twice on {shift.describe()}")
            continue
        seen.add((a.shift_id, a.user_id))

        wanted_role = a.role or shift.role
        if role_match(emp, wanted_role) is None:
            add(a.shift_id, a.user_id, "role_mismatch", f"{emp.display_name} ({emp.role}) cannot cover role {wanted_role}")
        if registry.is_banned(shift.template_id, emp.id):
            add(a.shift_id, a.user_id, "banned_pair", f"{emp.display_name} is banned from template {shift.template_id}")
        for other in by_shift[shift.id]:
            if registry.is_excluded(shift.template_id, emp.id, other):
                add(a.shift_id, a.user_id, "excluded_pair", f"{emp.display_name} may not work with {other}")
        for other_shift in by_user[emp.id]:
            if shifts_overlap(shift, other_shift):
                add(a.shift_id, a.user_id, "overlap_same_day", f"Overlaps {other_shift.describe()}")
        if not index.is_available(emp.id, shift.date, shift.start, shift.end):
            forced = " (forced)" if registry.is_forced(shift.template_id, emp.id) else ""
            add(a.shift_id, a.user_id, "unavailable", f"{emp.display_name} did not declare {shift.describe()} free{forced}")

        by_shift[shift.id].append(emp.id)
        by_user[emp.id].append(shift)

    for user_id, worked in sorted(by_user.items()):
        caps = registry.effective_workload(user_id)
        last = worked[-1]
        if caps.max_shifts is not None and len(worked) > caps.max_shifts:
            add(last.id, user_id, "weekly_shift_limit", f"{len(worked)} shifts > max {caps.max_shifts}")
        hours = sum(s.hours for s in worked)
        if caps.max_hours is not None and hours > caps.max_hours:
            add(last.id, user_id, "weekly_hours_limit", f"{hours:.1f}h > max {caps.max_hours}h")
        daily_cap = registry.effective_daily_limit(user_id)
        if daily_cap is not None:
            per_day: dict[str, list[ShiftSlot]] = defaultdict(list)
            for s in worked:
                per_day[s.date].append(s)
            for day, day_shifts in sorted(per_day.items()):
                if len(day_shifts) > daily_cap:
                    add(day_shifts[-1].id, user_id, "daily_shift_limit", f"{len(day_shifts)} shifts on {day} > max {daily_cap}")

    return violations
