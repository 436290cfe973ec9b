"""Weekly staff shift allocation core."""

from .allocator import explain_assignment, generate_schedule, plan_from_snapshot, workload_overview
from .apply import MERGE, REPLACE, apply_result
from .availability import AvailabilityIndex
from .conditions import ConditionError, parse_condition, parse_conditions
from .conflicts import find_conflict, shifts_overlap
from .constraints import ConstraintRegistry, audit_assignments, validate_conditions
from .models import (
    Assignment,
    AssignedUser,
    AvailabilityInterval,
    Employee,
    ScheduleRunResult,
    ShiftSlot,
    UnfilledShift,
    WeekInput,
)

from .io import extract_from_snapshot, inputs_from_snapshot, load_input, write_output

__all__ = [
    "MERGE",
    "REPLACE",
    "Assignment",
    "AssignedUser",
    "AvailabilityIndex",
    "AvailabilityInterval",
    "ConditionError",
    "ConstraintRegistry",
    "Employee",
    "ScheduleRunResult",
    "ShiftSlot",
    "UnfilledShift",
    "WeekInput",
    "apply_result",
    "audit_assignments",
    "explain_assignment",
    "extract_from_snapshot",
    "find_conflict",
    "generate_schedule",
    "inputs_from_snapshot",
    "load_input",
    "parse_condition",
    "parse_conditions",
    "plan_from_snapshot",
    "shifts_overlap",
    "validate_conditions",
    "workload_overview",
    "write_output",
]
