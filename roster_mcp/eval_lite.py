"""Lightweight plan evaluation.

Computes key quality metrics from a plan dict. All functions are pure
dict-in / dict-out.
"""

from __future__ import annotations

import statistics
from collections import Counter, defaultdict
from typing import Any

from roster_core.io.schemas import SCORE_COMPONENTS

# Warning prefixes/fragments -> kind, checked in order.
_WARNING_KINDS = (
    ("assigned despite unavailability", "availability_override"),
    ("exceeded workload limit", "workload_override"),
    ("Mandatory staffing shortfall", "mandatory_shortfall"),
    ("Unfilled:", "unfilled"),
    ("Could not honor forced assignment", "forced_not_honored"),
    ("below the minimum", "below_minimum"),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _gini(values: list[float]) -> float:
    """Gini coefficient for a list of non-negative values."""
    if not values or all(v == 0 for v in values):
        return 0.0
    sorted_vals = sorted(values)
    n = len(sorted_vals)
    cumulative = sum((i + 1) * v for i, v in enumerate(sorted_vals))
    total = sum(sorted_vals)
    return (2 * cumulative) / (n * total) - (n + 1) / n


def _stats(values: list[float]) -> dict[str, float]:
    """Basic distribution statistics."""
    if not values:
        return {"mean": 0, "median": 0, "std": 0, "min": 0, "max": 0}
    return {
        "mean": round(statistics.mean(values), 2),
        "median": round(statistics.median(values), 2),
        "std": round(statistics.stdev(values), 2) if len(values) > 1 else 0.0,
        "min": round(min(values), 2),
        "max": round(max(values), 2),
    }


def warning_kind(message: str) -> str:
    for fragment, kind in _WARNING_KINDS:
        if fragment in message:
            return kind
    return "other"


# ---------------------------------------------------------------------------
# Metric functions
# ---------------------------------------------------------------------------


def _scoring_distribution(plan: dict[str, Any]) -> dict[str, Any]:
    """Overall score spread of new assignments and per-component spread of selected candidates."""
    result = plan.get("result", {})
    scores = [float(a.get("score", 0)) for a in result.get("assignments", []) if not a.get("retained")]

    selected = [
        row
        for rows in result.get("evaluation_matrix", {}).values()
        for row in rows
        if row.get("selected")
    ]
    per_component: dict[str, dict[str, float]] = {}
    for key in SCORE_COMPONENTS:
        vals = [float(row.get("score_detail", {}).get(key, 0)) for row in selected]
        if any(v != 0 for v in vals):
            per_component[key] = _stats(vals)

    return {"overall": _stats(scores), "per_component": per_component}


def _blocking_analysis(plan: dict[str, Any]) -> dict[str, Any]:
    """Why candidates were turned away, over every evaluated requirement unit."""
    matrix = plan.get("result", {}).get("evaluation_matrix", {})
    blocked: Counter[str] = Counter()
    overrides: Counter[str] = Counter()
    empty_pool = 0
    for rows in matrix.values():
        if not any(row.get("selected") for row in rows):
            empty_pool += 1
        for row in rows:
            blocked.update(row.get("blocked_reasons", []))
            if row.get("selected"):
                overrides.update(row.get("overrides", []))
    return {
        "units_evaluated": len(matrix),
        "units_without_candidate": empty_pool,
        "blocked_reasons": dict(blocked.most_common()),
        "overrides": dict(overrides.most_common()),
    }


def _unfilled_analysis(plan: dict[str, Any]) -> dict[str, Any]:
    unfilled = plan.get("result", {}).get("unfilled", [])
    if not unfilled:
        return {"count": 0}
    shifts = plan.get("shifts", {})
    by_role: Counter[str] = Counter()
    by_date: Counter[str] = Counter()
    for u in unfilled:
        by_role.update(u.get("by_role", {}))
        by_date[shifts.get(u["shift_id"], {}).get("date", "unknown")] += int(u.get("remaining", 0))
    return {
        "count": len(unfilled),
        "open_units": sum(int(u.get("remaining", 0)) for u in unfilled),
        "by_role": dict(by_role.most_common()),
        "by_date": dict(sorted(by_date.items())),
    }


def _fairness(plan: dict[str, Any]) -> dict[str, Any]:
    """Gini, std_dev and per-employee hours from the workload overview."""
    workload = plan.get("workload", [])
    hours_list = [float(w.get("assigned_hours", 0)) for w in workload]
    working = [h for h in hours_list if h > 0]

    per_employee = [
        {
            "employee": w.get("employee_name") or w.get("user_id"),
            "assigned_shifts": w.get("assigned_shifts", 0),
            "assigned_hours": w.get("assigned_hours", 0.0),
            "within_limits": w.get("within_limits", True),
        }
        for w in workload
    ]
    return {
        "gini": round(_gini(hours_list), 4),
        "gini_working": round(_gini(working), 4),
        "hours": _stats(hours_list),
        "employee_count": len(workload),
        "working_count": len(working),
        "per_employee": per_employee,
    }


def _coverage_by_day(plan: dict[str, Any]) -> list[dict[str, Any]]:
    shifts = plan.get("shifts", {})
    result = plan.get("result", {})
    grid: dict[str, dict[str, int]] = defaultdict(lambda: {"assigned": 0, "open": 0})
    for a in result.get("assignments", []):
        if a.get("retained"):
            continue
        grid[shifts.get(a["shift_id"], {}).get("date", "unknown")]["assigned"] += 1
    for u in result.get("unfilled", []):
        grid[shifts.get(u["shift_id"], {}).get("date", "unknown")]["open"] += int(u.get("remaining", 0))
    return [{"date": d, **counts} for d, counts in sorted(grid.items())]


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------


def evaluate_plan_lite(plan: dict[str, Any]) -> dict[str, Any]:
    """Compute quality metrics for a plan dict.

    Returns a flat result dict suitable for MCP tool output.
    """
    result = plan.get("result", {})
    metrics = plan.get("metrics", {})
    assignments = result.get("assignments", [])
    new = [a for a in assignments if not a.get("retained")]
    unfilled_units = sum(int(u.get("remaining", 0)) for u in result.get("unfilled", []))
    total = len(new) + unfilled_units

    return {
        "meta": {
            "plan_id": plan.get("plan_id"),
            "snapshot_id": plan.get("snapshot_id"),
            "week_id": plan.get("week_id"),
            "range": plan.get("range"),
            "strategy": plan.get("strategy"),
            "generated_at": plan.get("generated_at"),
        },
        "ok": not result.get("errors"),
        "errors": list(result.get("errors", [])),
        "fill_rate": {
            "open_units": total,
            "assigned": len(new),
            "unfilled": unfilled_units,
            "fill_rate_pct": metrics.get("fill_rate", round(len(new) / total * 100, 1) if total else 100.0),
        },
        "assignments": {
            "new": len(new),
            "retained": len(assignments) - len(new),
            "forced": sum(1 for a in new if a.get("forced")),
        },
        "warnings_by_kind": dict(Counter(warning_kind(w) for w in result.get("warnings", [])).most_common()),
        "scoring_distribution": _scoring_distribution(plan),
        "blocking_analysis": _blocking_analysis(plan),
        "unfilled_analysis": _unfilled_analysis(plan),
        "coverage_by_day": _coverage_by_day(plan),
        "fairness": _fairness(plan),
    }
