"""Commit a proposal into a baseline schedule with a merge or replace strategy."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Collection, Iterable
from dataclasses import replace

from .models import AssignedUser, Employee, ScheduleRunResult, ShiftSlot
from .roles import resolve_role

MERGE = "merge"
REPLACE = "replace"
STRATEGIES = (MERGE, REPLACE)


def check_strategy(strategy: str) -> str:
    if strategy not in STRATEGIES:
        raise ValueError(f"Unknown strategy: {strategy!r}. Choose from {STRATEGIES}")
    return strategy


def apply_result(
    shifts: Iterable[ShiftSlot],
    result: ScheduleRunResult,
    strategy: str = MERGE,
    *,
    employees: Iterable[Employee] = (),
    selected: Collection[tuple[str, str]] | None = None,
) -> list[ShiftSlot]:
    """Return the schedule after committing `result`; `shifts` is left as is.

    merge:   shifts named by the proposal get exactly the proposal's assignees,
             every other shift is returned unchanged.
    replace: every shift is cleared and only the proposal is written back.

    `selected` restricts the commit to the `(shift_id, user_id)` pairs the
    reviewer kept; a shift whose proposal was entirely deselected counts as
    untouched under merge.
    """
    check_strategy(strategy)
    if result.errors:
        raise ValueError("cannot apply a run that failed validation")

    employee_by_id = {e.id: e for e in employees}
    proposed: dict[str, list[AssignedUser]] = defaultdict(list)
    for a in result.assignments:
        if selected is not None and (a.shift_id, a.user_id) not in selected:
            continue
        if any(u.user_id == a.user_id for u in proposed[a.shift_id]):
            continue
        emp = employee_by_id.get(a.user_id)
        proposed[a.shift_id].append(
            AssignedUser(
                user_id=a.user_id,
                user_name=emp.display_name if emp else a.user_id,
                role=resolve_role(emp, a.role),
            )
        )

    out: list[ShiftSlot] = []
    for shift in shifts:
        users = proposed.get(shift.id)
        if users:
            out.append(replace(shift, assigned=tuple(users)))
        elif strategy == REPLACE:
            out.append(replace(shift, assigned=()))
        else:
            out.append(shift)
    return out
