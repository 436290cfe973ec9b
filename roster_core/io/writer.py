"""Write plan artifacts from plan_from_snapshot() output.

plan.json holds the full plan. assignments.csv, unfilled.csv and
warnings.txt are flat views for review. metrics.json carries aggregated
KPIs (fill by weekday, hour spread) for reports.
"""

from __future__ import annotations

import csv
import json
from datetime import date
from pathlib import Path
from typing import Any

from .schemas import (
    ASSIGNMENTS_COLS,
    UNFILLED_COLS,
    fmt_bool,
    role_counts_join,
)

_WEEKDAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


def _gini(values: list[float]) -> float:
    """Gini coefficient: 0 = perfect equality, 1 = total concentration."""
    if not values or all(v == 0 for v in values):
        return 0.0
    s = sorted(values)
    n = len(s)
    total = sum(s)
    cum = sum((i + 1) * v for i, v in enumerate(s))
    return round((2 * cum) / (n * total) - (n + 1) / n, 4)


def _weekday(datum: str) -> str:
    try:
        return _WEEKDAYS[date.fromisoformat(datum).weekday()]
    except ValueError:
        return "?"


# ---------------------------------------------------------------------------
# Row views shared with the workbook renderer
# ---------------------------------------------------------------------------

def assignment_rows(plan: dict) -> list[dict[str, Any]]:
    shifts = plan.get("shifts", {})
    names = plan.get("employees", {})
    rows = []
    for a in plan.get("result", {}).get("assignments", []):
        shift = shifts.get(a["shift_id"], {})
        rows.append({
            "shift_id": a["shift_id"],
            "date": shift.get("date", ""),
            "start": shift.get("start", ""),
            "end": shift.get("end", ""),
            "label": shift.get("label", ""),
            "user_id": a["user_id"],
            "employee_name": names.get(a["user_id"], a["user_id"]),
            "role": a.get("role", ""),
            "score": a.get("score", 0.0),
            "forced": a.get("forced", False),
            "retained": a.get("retained", False),
        })
    return rows


def unfilled_rows(plan: dict) -> list[dict[str, Any]]:
    shifts = plan.get("shifts", {})
    rows = []
    for u in plan.get("result", {}).get("unfilled", []):
        shift = shifts.get(u["shift_id"], {})
        rows.append({
            "shift_id": u["shift_id"],
            "date": shift.get("date", ""),
            "start": shift.get("start", ""),
            "end": shift.get("end", ""),
            "label": shift.get("label", ""),
            "remaining": u.get("remaining", 0),
            "by_role": u.get("by_role", {}),
        })
    return rows


# ---------------------------------------------------------------------------
# Aggregated metrics
# ---------------------------------------------------------------------------

def _build_metrics(plan: dict) -> dict:
    m = plan.get("metrics", {})
    assignments = assignment_rows(plan)
    unfilled = unfilled_rows(plan)
    workload = plan.get("workload", [])

    by_weekday: dict[str, dict[str, int]] = {}
    for a in assignments:
        if a["retained"]:
            continue
        bucket = by_weekday.setdefault(_weekday(a["date"]), {"assigned": 0, "open": 0})
        bucket["assigned"] += 1
    for u in unfilled:
        bucket = by_weekday.setdefault(_weekday(u["date"]), {"assigned": 0, "open": 0})
        bucket["open"] += int(u["remaining"])
    ordered_by_weekday = {wd: by_weekday[wd] for wd in _WEEKDAYS if wd in by_weekday}

    hours = [float(w.get("assigned_hours") or 0) for w in workload]
    busiest = max(workload, key=lambda w: w.get("assigned_hours") or 0, default=None)

    return {
        "plan_id": plan.get("plan_id", ""),
        "generated_at": plan.get("generated_at", ""),
        "snapshot_id": plan.get("snapshot_id", ""),
        "week_id": plan.get("week_id", ""),
        "range_from": plan.get("range", {}).get("from", ""),
        "range_to": plan.get("range", {}).get("to", ""),
        "strategy": plan.get("strategy", ""),
        "fill_rate": {
            "pct": m.get("fill_rate", 0.0),
            "assigned": m.get("assigned_units", 0),
            "open": m.get("unfilled_units", 0),
            "total": m.get("open_units", 0),
            "by_weekday": ordered_by_weekday,
        },
        "workload": {
            "employees": len(workload),
            "working": sum(1 for h in hours if h > 0),
            "total_hours": round(sum(hours), 2),
            "gini_hours": _gini(hours),
            "busiest_employee": busiest.get("employee_name") if busiest else None,
            "busiest_hours": busiest.get("assigned_hours") if busiest else 0.0,
            "over_limit": [w["user_id"] for w in workload if not w.get("within_limits", True)],
        },
        "forced_assignments": m.get("forced_assignments", 0),
        "warnings": m.get("warnings", 0),
        "errors": m.get("errors", 0),
    }


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def _write_csv(path: Path, columns: list[str], rows: list[dict[str, Any]]) -> Path:
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=columns)
        writer.writeheader()
        writer.writerows(rows)
    return path


def write_output(plan: dict, directory: Path) -> dict[str, Path]:
    """Write plan.json, assignments.csv, unfilled.csv, warnings.txt and metrics.json."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    written: dict[str, Path] = {}

    plan_path = directory / "plan.json"
    plan_path.write_text(json.dumps(plan, indent=2, ensure_ascii=False, default=str) + "\n", encoding="utf-8")
    written["plan.json"] = plan_path

    assignment_csv = [
        {**row, "forced": fmt_bool(row["forced"]), "retained": fmt_bool(row["retained"])}
        for row in assignment_rows(plan)
    ]
    written["assignments.csv"] = _write_csv(directory / "assignments.csv", ASSIGNMENTS_COLS, assignment_csv)

    unfilled_csv = [{**row, "by_role": role_counts_join(row["by_role"])} for row in unfilled_rows(plan)]
    written["unfilled.csv"] = _write_csv(directory / "unfilled.csv", UNFILLED_COLS, unfilled_csv)

    result = plan.get("result", {})
    lines = [f"ERROR: {e}" for e in result.get("errors", [])]
    lines.extend(result.get("warnings", []))
    warnings_path = directory / "warnings.txt"
    warnings_path.write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")
    written["warnings.txt"] = warnings_path

    metrics_path = directory / "metrics.json"
    metrics_path.write_text(
        json.dumps(_build_metrics(plan), indent=2, ensure_ascii=False, default=str) + "\n",
        encoding="utf-8",
    )
    written["metrics.json"] = metrics_path

    return written
