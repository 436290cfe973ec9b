from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Collection, Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from .apply import MERGE, REPLACE, apply_result, check_strategy
from .availability import AvailabilityIndex
from .conditions import LINK_FORCE
from .conflicts import find_conflict
from .constraints import MAX_PRIORITY_WEIGHT, ConstraintRegistry
from .io.reader import inputs_from_snapshot
from .models import (
    Assignment,
    AssignedUser,
    AvailabilityInterval,
    Employee,
    ScheduleRunResult,
    ShiftSlot,
    UnfilledShift,
)
from .roles import ANY_ROLE, PRIMARY, role_match

logger = logging.getLogger(__name__)

UTC = timezone.utc


def now_utc_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


SCORING = {
    "forced_weight": 1000,
    "priority_weight": 100,
    "proportional_max": 99,
}

LIMIT_OVERRIDES = ("weekly_shift_limit", "weekly_hours_limit", "daily_shift_limit")


@dataclass(frozen=True)
class RequirementUnit:
    shift_id: str
    template_id: str
    date: str
    start: str
    role: str
    index: int
    mandatory: bool = False

    @property
    def unit_id(self) -> str:
        return f"{self.shift_id}#{self.role}#{self.index}"

    def sort_key(self) -> tuple[Any, ...]:
        return (self.date, self.start, self.template_id, self.role, self.shift_id, self.index)


@dataclass
class CandidateEvaluation:
    user_id: str
    employee_name: str
    match: str
    score: float
    blocked: bool
    forced: bool
    priority_weight: float
    blocked_reasons: list[str]
    overrides: list[str]
    score_detail: dict[str, float]

    def sort_key(self) -> tuple[Any, ...]:
        """Unblocked first, then higher score.

        Equal scores go to a primary-role match before a secondary one, and
        only then to the lower user id.
        """
        return (1 if self.blocked else 0, -self.score, 0 if self.match == PRIMARY else 1, self.user_id)

    def as_row(self, selected: bool = False) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "employee_name": self.employee_name,
            "match": self.match,
            "score": self.score,
            "blocked": self.blocked,
            "forced": self.forced,
            "blocked_reasons": self.blocked_reasons,
            "overrides": self.overrides,
            "score_detail": self.score_detail,
            "selected": selected,
        }


@dataclass
class RunState:
    shifts: dict[str, ShiftSlot]
    week_shifts: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    week_minutes: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    day_shifts: dict[tuple[str, str], int] = field(default_factory=lambda: defaultdict(int))
    new_by_shift: dict[str, list[Assignment]] = field(default_factory=lambda: defaultdict(list))
    warnings: list[str] = field(default_factory=list)

    def on_date(self, datum: str) -> list[ShiftSlot]:
        return [s for s in self.shifts.values() if s.date == datum]

    def count(self, user_id: str, shift: ShiftSlot) -> None:
        self.week_shifts[user_id] += 1
        self.week_minutes[user_id] += shift.minutes
        self.day_shifts[(user_id, shift.date)] += 1


def _shift_sort_key(shift: ShiftSlot) -> tuple[str, str, str, str]:
    return (shift.date, shift.start, shift.template_id, shift.id)


def _initial_state(shifts: list[ShiftSlot], strategy: str) -> RunState:
    if strategy == REPLACE:
        state = RunState(shifts={s.id: replace(s, assigned=()) for s in shifts})
    else:
        state = RunState(shifts={s.id: s for s in shifts})
    for shift in state.shifts.values():
        for a in shift.assigned:
            state.count(a.user_id, shift)
    return state


def _open_counts(shift: ShiftSlot, targets: dict[str, int]) -> dict[str, int]:
    """Subtract current assignees from per-role targets.

    Assignees are matched to their exact role first; anyone left over counts
    toward an `ANY_ROLE` target.
    """
    remaining = dict(targets)
    leftovers = 0
    for a in shift.assigned:
        if a.role != ANY_ROLE and remaining.get(a.role, 0) > 0:
            remaining[a.role] -= 1
        else:
            leftovers += 1
    if ANY_ROLE in remaining:
        remaining[ANY_ROLE] = max(0, remaining[ANY_ROLE] - leftovers)
    return {role: n for role, n in remaining.items() if n > 0}


def _shift_targets(shift: ShiftSlot, registry: ConstraintRegistry) -> dict[str, tuple[int, bool]]:
    staffing = registry.staffing(shift.template_id)
    if staffing:
        return {role: (rec.count, rec.mandatory) for role, rec in staffing.items()}
    return {shift.role: (shift.min_users, False)}


def _expand_units(shift: ShiftSlot, registry: ConstraintRegistry) -> list[RequirementUnit]:
    targets = _shift_targets(shift, registry)
    open_counts = _open_counts(shift, {role: n for role, (n, _) in targets.items()})
    units = []
    for role in sorted(open_counts):
        for i in range(open_counts[role]):
            units.append(
                RequirementUnit(
                    shift_id=shift.id,
                    template_id=shift.template_id,
                    date=shift.date,
                    start=shift.start,
                    role=role,
                    index=i,
                    mandatory=targets[role][1],
                )
            )
    return units


def _score_candidate(
    *,
    employee: Employee,
    match: str,
    unit: RequirementUnit,
    state: RunState,
    registry: ConstraintRegistry,
    index: AvailabilityIndex,
    weights: dict[str, float],
    lift_availability: bool,
) -> CandidateEvaluation:
    shift = state.shifts[unit.shift_id]
    user_id = employee.id
    forced = registry.is_forced(unit.template_id, user_id)

    blocked_reasons: list[str] = []
    overrides: list[str] = []

    if shift.has_user(user_id):
        blocked_reasons.append("already_assigned")
    if registry.is_banned(unit.template_id, user_id):
        blocked_reasons.append("banned")
    if any(registry.is_excluded(unit.template_id, user_id, other.user_id) for other in shift.assigned):
        blocked_reasons.append("excluded_pair")
    if find_conflict(user_id, shift, state.on_date(shift.date)) is not None:
        blocked_reasons.append("time_conflict")

    if not index.is_available(user_id, shift.date, shift.start, shift.end):
        if lift_availability or (forced and not registry.strict_availability):
            overrides.append("unavailable")
        else:
            blocked_reasons.append("unavailable")

    over_limit: list[str] = []
    caps = registry.effective_workload(user_id)
    if caps.max_shifts is not None and state.week_shifts[user_id] + 1 > caps.max_shifts:
        over_limit.append("weekly_shift_limit")
    if caps.max_hours is not None and (state.week_minutes[user_id] + shift.minutes) / 60.0 > caps.max_hours:
        over_limit.append("weekly_hours_limit")
    daily_cap = registry.effective_daily_limit(user_id)
    if daily_cap is not None and state.day_shifts[(user_id, shift.date)] + 1 > daily_cap:
        over_limit.append("daily_shift_limit")
    if forced:
        overrides.extend(over_limit)
    else:
        blocked_reasons.extend(over_limit)

    prio = registry.priority(unit.template_id, user_id)
    weight = float(prio.weight) if prio else 0.0
    if registry.link(unit.template_id, user_id) == LINK_FORCE:
        weight = max(weight, float(MAX_PRIORITY_WEIGHT))

    free = index.week_free_minutes(user_id)
    projected = state.week_minutes[user_id] + shift.minutes
    proportional = weights["proportional_max"] / (1 + projected / free) if free > 0 else 0.0

    score_detail = {
        "forced": round(float(weights["forced_weight"]) if forced else 0.0, 4),
        "priority": round(weights["priority_weight"] * weight, 4),
        "proportional": round(proportional, 4),
    }

    return CandidateEvaluation(
        user_id=user_id,
        employee_name=employee.display_name,
        match=match,
        score=round(sum(score_detail.values()), 4),
        blocked=bool(blocked_reasons),
        forced=forced,
        priority_weight=weight,
        blocked_reasons=blocked_reasons,
        overrides=overrides,
        score_detail=score_detail,
    )


def _evaluate_unit(
    unit: RequirementUnit,
    roster: list[Employee],
    state: RunState,
    registry: ConstraintRegistry,
    index: AvailabilityIndex,
    weights: dict[str, float],
    *,
    busy_pass: bool = False,
    busy_exclusions: Collection[str] = (),
) -> list[CandidateEvaluation]:
    evals = []
    for emp in roster:
        match = role_match(emp, unit.role)
        if match is None:
            continue
        evals.append(
            _score_candidate(
                employee=emp,
                match=match,
                unit=unit,
                state=state,
                registry=registry,
                index=index,
                weights=weights,
                lift_availability=busy_pass and emp.id not in busy_exclusions,
            )
        )
    evals.sort(key=CandidateEvaluation.sort_key)
    return evals


def _commit(state: RunState, unit: RequirementUnit, best: CandidateEvaluation) -> None:
    shift = state.shifts[unit.shift_id]
    state.shifts[shift.id] = replace(
        shift,
        assigned=shift.assigned + (AssignedUser(best.user_id, best.employee_name, unit.role),),
    )
    state.count(best.user_id, shift)
    state.new_by_shift[shift.id].append(
        Assignment(
            shift_id=shift.id,
            user_id=best.user_id,
            role=unit.role,
            score=best.score,
            forced=best.forced,
        )
    )

    if "unavailable" in best.overrides:
        state.warnings.append(f"{best.employee_name} assigned despite unavailability: {shift.describe()}")
    exceeded = [o for o in best.overrides if o in LIMIT_OVERRIDES]
    if exceeded:
        state.warnings.append(
            f"{best.employee_name} exceeded workload limit due to mandatory assignment: "
            f"{shift.describe()} ({', '.join(exceeded)})"
        )
    logger.debug("assigned %s to %s as %s (score %s)", best.user_id, unit.unit_id, unit.role, best.score)


def _allocate(
    units: list[RequirementUnit],
    roster: list[Employee],
    state: RunState,
    registry: ConstraintRegistry,
    index: AvailabilityIndex,
    weights: dict[str, float],
    matrix: dict[str, list[dict[str, Any]]],
    *,
    forced_only: bool = False,
    **pass_options: Any,
) -> list[RequirementUnit]:
    """Fill `units` in order and return those left open.

    With `forced_only`, a unit is only filled by an unblocked forced pair and
    is otherwise handed back untouched for the regular pass.
    """
    still_open = []
    for unit in units:
        evals = _evaluate_unit(unit, roster, state, registry, index, weights, **pass_options)
        if forced_only:
            best = next((e for e in evals if e.forced and not e.blocked), None)
        else:
            best = evals[0] if evals and not evals[0].blocked else None
        if best is None:
            if not forced_only:
                matrix[unit.unit_id] = [e.as_row() for e in evals]
            still_open.append(unit)
            continue
        matrix[unit.unit_id] = [e.as_row(selected=e is best) for e in evals]
        _commit(state, unit, best)
    return still_open


def _forced_pair_reason(
    user_id: str,
    shift: ShiftSlot,
    employee_by_id: dict[str, Employee],
    registry: ConstraintRegistry,
    matrix: dict[str, list[dict[str, Any]]],
) -> str:
    emp = employee_by_id.get(user_id)
    if emp is None or emp.is_test_account:
        return "user is not on the roster"
    roles = _shift_targets(shift, registry)
    if not any(role_match(emp, role) for role in roles):
        return f"role {emp.role} does not match the shift"
    reasons: list[str] = []
    for unit_id, rows in matrix.items():
        if not unit_id.startswith(f"{shift.id}#"):
            continue
        for row in rows:
            if row["user_id"] == user_id:
                reasons.extend(r for r in row["blocked_reasons"] if r not in reasons)
    if reasons:
        return ", ".join(reasons)
    return "no open slot left on the shift"


def generate_schedule(
    shifts: Iterable[ShiftSlot],
    employees: Iterable[Employee],
    availability: AvailabilityIndex | Iterable[AvailabilityInterval],
    conditions: Iterable[Any],
    *,
    strategy: str = MERGE,
    scoring: dict[str, float] | None = None,
    include_busy_users: bool = False,
    busy_exclusion_ids: Collection[str] = (),
) -> ScheduleRunResult:
    check_strategy(strategy)
    registry = ConstraintRegistry.normalize(conditions)
    errors = registry.validate()
    if errors:
        logger.info("schedule run aborted by %d validation error(s)", len(errors))
        return ScheduleRunResult(errors=errors)

    weights = {**SCORING, **(scoring or {})}
    unknown = set(weights) - set(SCORING)
    if unknown:
        raise ValueError(f"Unknown scoring keys: {sorted(unknown)}")

    index = availability if isinstance(availability, AvailabilityIndex) else AvailabilityIndex.build(availability)
    employees = list(employees)
    employee_by_id = {e.id: e for e in employees}
    roster = sorted((e for e in employees if not e.is_test_account), key=lambda e: e.id)

    ordered = sorted(shifts, key=_shift_sort_key)
    seen_ids: set[str] = set()
    for shift in ordered:
        if shift.id in seen_ids:
            raise ValueError(f"duplicate shift id: {shift.id}")
        seen_ids.add(shift.id)

    state = _initial_state(ordered, strategy)
    units = sorted(
        (u for shift in state.shifts.values() for u in _expand_units(shift, registry)),
        key=RequirementUnit.sort_key,
    )
    matrix: dict[str, list[dict[str, Any]]] = {}
    logger.debug("allocating %d requirement unit(s) across %d shift(s)", len(units), len(ordered))

    # Forced pairs claim their units before anyone else is placed.
    open_units = _allocate(units, roster, state, registry, index, weights, matrix, forced_only=True)
    open_units = _allocate(open_units, roster, state, registry, index, weights, matrix)
    if include_busy_users and open_units:
        open_units = _allocate(
            open_units,
            roster,
            state,
            registry,
            index,
            weights,
            matrix,
            busy_pass=True,
            busy_exclusions=frozenset(busy_exclusion_ids),
        )
    matrix = {u.unit_id: matrix[u.unit_id] for u in units if u.unit_id in matrix}

    # Unfilled units, grouped per shift.
    open_by_shift: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
    mandatory_roles: set[tuple[str, str]] = set()
    for unit in open_units:
        open_by_shift[unit.shift_id][unit.role] += 1
        if unit.mandatory:
            mandatory_roles.add((unit.shift_id, unit.role))

    unfilled: list[UnfilledShift] = []
    for shift in ordered:
        by_role = open_by_shift.get(shift.id)
        if not by_role:
            continue
        unfilled.append(UnfilledShift(shift_id=shift.id, remaining=sum(by_role.values()), by_role=dict(sorted(by_role.items()))))
        for role, missing in sorted(by_role.items()):
            if (shift.id, role) in mandatory_roles:
                state.warnings.append(
                    f"Mandatory staffing shortfall: {shift.describe()} is missing {missing} x {role}"
                )
            else:
                state.warnings.append(f"Unfilled: {shift.describe()} is missing {missing} x {role}")

    # Forced pairings that did not make it into the schedule.
    for template_id, user_id in registry.forced_pairs():
        for shift in ordered:
            if shift.template_id != template_id or state.shifts[shift.id].has_user(user_id):
                continue
            reason = _forced_pair_reason(user_id, shift, employee_by_id, registry, matrix)
            name = employee_by_id[user_id].display_name if user_id in employee_by_id else user_id
            state.warnings.append(f"Could not honor forced assignment of {name} to {shift.describe()}: {reason}")

    for emp in roster:
        caps = registry.effective_workload(emp.id)
        assigned_shifts = state.week_shifts[emp.id]
        assigned_hours = state.week_minutes[emp.id] / 60.0
        if caps.min_shifts is not None and assigned_shifts < caps.min_shifts:
            state.warnings.append(
                f"{emp.display_name} is below the minimum of {caps.min_shifts} shift(s) per week "
                f"({assigned_shifts} assigned)"
            )
        if caps.min_hours is not None and assigned_hours < caps.min_hours:
            state.warnings.append(
                f"{emp.display_name} is below the minimum of {caps.min_hours}h per week "
                f"({assigned_hours:.1f}h assigned)"
            )

    assignments: list[Assignment] = []
    for shift in ordered:
        new = state.new_by_shift.get(shift.id)
        if not new:
            continue
        if strategy == MERGE:
            assignments.extend(
                Assignment(shift_id=shift.id, user_id=a.user_id, role=a.role, retained=True)
                for a in shift.assigned
            )
        assignments.extend(new)

    logger.debug(
        "schedule run: %d new assignment(s), %d unfilled shift(s), %d warning(s)",
        sum(1 for a in assignments if not a.retained),
        len(unfilled),
        len(state.warnings),
    )
    return ScheduleRunResult(
        assignments=assignments,
        unfilled=unfilled,
        warnings=state.warnings,
        evaluation_matrix=matrix,
    )


# ---- Reporting ---------------------------------------------------------------

def workload_overview(
    result: ScheduleRunResult,
    shifts: Iterable[ShiftSlot],
    employees: Iterable[Employee],
    conditions: Iterable[Any],
    *,
    strategy: str = MERGE,
) -> list[dict[str, Any]]:
    """Per-employee shifts and hours in the schedule the run would produce."""
    registry = ConstraintRegistry.normalize(conditions)
    employees = [e for e in employees if not e.is_test_account]
    schedule = apply_result(shifts, result, strategy, employees=employees)

    shift_count: dict[str, int] = defaultdict(int)
    minutes: dict[str, int] = defaultdict(int)
    for shift in schedule:
        for a in shift.assigned:
            shift_count[a.user_id] += 1
            minutes[a.user_id] += shift.minutes

    rows = []
    for emp in employees:
        caps = registry.effective_workload(emp.id)
        hours = minutes[emp.id] / 60.0
        within = True
        if caps.max_shifts is not None and shift_count[emp.id] > caps.max_shifts:
            within = False
        if caps.max_hours is not None and hours > caps.max_hours:
            within = False
        rows.append(
            {
                "user_id": emp.id,
                "employee_name": emp.display_name,
                "assigned_shifts": shift_count[emp.id],
                "assigned_hours": round(hours, 2),
                "min_shifts": caps.min_shifts,
                "max_shifts": caps.max_shifts,
                "min_hours": caps.min_hours,
                "max_hours": caps.max_hours,
                "within_limits": within,
            }
        )
    rows.sort(key=lambda row: (-row["assigned_hours"], row["user_id"]))
    return rows


def explain_assignment(result: ScheduleRunResult, shift_id: str, user_id: str) -> dict[str, Any]:
    for a in result.assignments:
        if a.shift_id != shift_id or a.user_id != user_id:
            continue
        if a.retained:
            return {
                "shift_id": shift_id,
                "user_id": user_id,
                "role": a.role,
                "retained": True,
                "score": None,
                "score_detail": {},
                "overrides": [],
                "alternatives": [],
            }
        for unit_id, rows in result.evaluation_matrix.items():
            if not unit_id.startswith(f"{shift_id}#"):
                continue
            chosen = next((r for r in rows if r.get("selected") and r.get("user_id") == user_id), None)
            if chosen is None:
                continue
            alternatives = [
                {
                    "user_id": r["user_id"],
                    "employee_name": r["employee_name"],
                    "score": r["score"],
                    "blocked": r["blocked"],
                    "blocked_reasons": r["blocked_reasons"],
                    "score_detail": r["score_detail"],
                }
                for r in rows
                if r is not chosen
            ]
            return {
                "shift_id": shift_id,
                "user_id": user_id,
                "employee_name": chosen["employee_name"],
                "role": a.role,
                "retained": False,
                "unit_id": unit_id,
                "score": chosen["score"],
                "forced": chosen["forced"],
                "score_detail": chosen["score_detail"],
                "overrides": chosen["overrides"],
                "alternatives": alternatives[:5],
            }
    raise KeyError(f"assignment not found: {shift_id} / {user_id}")


def plan_from_snapshot(
    snapshot: dict[str, Any],
    *,
    strategy: str = MERGE,
    scoring: dict[str, float] | None = None,
    include_busy_users: bool = False,
    busy_exclusion_ids: Collection[str] = (),
) -> dict[str, Any]:
    """Run the engine on a snapshot dict and wrap the result as a plan artifact."""
    week = inputs_from_snapshot(snapshot)
    result = generate_schedule(
        week.shifts,
        week.employees,
        week.availability,
        week.conditions,
        strategy=strategy,
        scoring=scoring,
        include_busy_users=include_busy_users,
        busy_exclusion_ids=busy_exclusion_ids,
    )

    new_count = sum(1 for a in result.assignments if not a.retained)
    open_count = sum(u.remaining for u in result.unfilled)
    total_units = new_count + open_count
    fill_rate = round((new_count / total_units) * 100, 1) if total_units else 100.0

    plan = {
        "plan_id": f"plan-{uuid4().hex[:12]}",
        "generated_at": now_utc_iso(),
        "snapshot_id": snapshot.get("snapshot_id"),
        "week_id": week.week_id,
        "range": snapshot.get("range") or {},
        "strategy": strategy,
        "scoring": {**SCORING, **(scoring or {})},
        "result": result.to_dict(),
        "metrics": {
            "ok": result.ok,
            "open_units": total_units,
            "assigned_units": new_count,
            "unfilled_units": open_count,
            "retained_assignments": len(result.assignments) - new_count,
            "forced_assignments": sum(1 for a in result.assignments if a.forced),
            "fill_rate": fill_rate,
            "warnings": len(result.warnings),
            "errors": len(result.errors),
        },
        "workload": workload_overview(result, week.shifts, week.employees, week.conditions, strategy=strategy)
        if result.ok
        else [],
        "shifts": {
            s.id: {
                "template_id": s.template_id,
                "date": s.date,
                "start": s.start,
                "end": s.end,
                "label": s.label,
                "role": s.role,
            }
            for s in week.shifts
        },
        "employees": {e.id: e.display_name for e in week.employees},
    }
    return plan
