"""Render a plan to a multi-sheet XLSX review workbook."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from roster_core.constraints import SOFT_VIOLATIONS
from roster_core.time_utils import format_date_vn

from .schemas import (
    ASSIGNMENTS_COLS,
    EVAL_MATRIX_COLS,
    SCORE_COMPONENTS,
    UNFILLED_COLS,
    WORKLOAD_COLS,
    fmt_bool,
    fmt_optional,
    pipe_join,
    role_counts_join,
)
from .writer import assignment_rows, unfilled_rows

_BLOCKER_CODES = [
    ("already_assigned", "Already on this shift"),
    ("banned", "Ban link for this template"),
    ("excluded_pair", "May not share a shift with a current assignee"),
    ("time_conflict", "Works an overlapping shift the same day"),
    ("unavailable", "Did not declare the shift interval free"),
    ("weekly_shift_limit", "Would exceed the weekly shift maximum"),
    ("weekly_hours_limit", "Would exceed the weekly hours maximum"),
    ("daily_shift_limit", "Would exceed the shifts-per-day maximum"),
]


def _get_openpyxl():
    try:
        from openpyxl import Workbook
        from openpyxl.styles import Font, PatternFill
        return Workbook, Font, PatternFill
    except ImportError as exc:
        raise ImportError("openpyxl is required for XLSX export: pip install openpyxl") from exc


def _style_headers(worksheets):
    """Apply bold + blue fill to header row of each worksheet."""
    _, Font, PatternFill = _get_openpyxl()
    header_font = Font(bold=True)
    header_fill = PatternFill(start_color="D9E1F2", end_color="D9E1F2", fill_type="solid")
    for ws in worksheets:
        for cell in ws[1]:
            cell.font = header_font
            cell.fill = header_fill


def _matrix_rows(plan: dict[str, Any]) -> list[dict[str, Any]]:
    rows = []
    for unit_id, candidates in plan.get("result", {}).get("evaluation_matrix", {}).items():
        shift_id = unit_id.split("#", 1)[0]
        for c in candidates:
            detail = c.get("score_detail", {})
            rows.append({
                "unit_id": unit_id,
                "shift_id": shift_id,
                "user_id": c.get("user_id", ""),
                "employee_name": c.get("employee_name", ""),
                "match": c.get("match", ""),
                "blocked": fmt_bool(c.get("blocked", False)),
                "blocked_reasons": pipe_join(c.get("blocked_reasons")),
                "overrides": pipe_join(c.get("overrides")),
                "score": c.get("score", 0.0),
                **{f"score_{k}": detail.get(k, 0.0) for k in SCORE_COMPONENTS},
                "selected": fmt_bool(c.get("selected", False)),
            })
    return rows


def _write_guide_sheet(ws, plan: dict[str, Any]) -> None:
    """Scoring weights and blocker codes for reviewers."""
    _, Font, _ = _get_openpyxl()
    bold = Font(bold=True)

    ws.append(["SCORING WEIGHTS"])
    ws["A1"].font = bold
    ws.append(["Component", "Weight", "Description"])
    scoring = plan.get("scoring", {})
    ws.append(["forced", scoring.get("forced_weight", ""), "Force link or mandatory priority"])
    ws.append(["priority", scoring.get("priority_weight", ""), "Multiplied by the priority weight (0-5)"])
    ws.append(["proportional", scoring.get("proportional_max", ""), "Highest for the most free time relative to work already given"])

    ws.append([])
    ws.append(["BLOCKER CODES"])
    ws.cell(row=ws.max_row, column=1).font = bold
    ws.append(["Code", "Description", "Overridable"])
    for code, desc in _BLOCKER_CODES:
        ws.append([code, desc, "forced pairs" if code in SOFT_VIOLATIONS else "no"])


def render_xlsx(plan: dict[str, Any], path: Path) -> Path:
    """Render a plan to an XLSX workbook.

    Sheets: Assignments, Unfilled, Warnings, Workload, Metrics, Evaluation, Guide.
    Returns the path to the written file.
    """
    Workbook, Font, PatternFill = _get_openpyxl()

    wb = Workbook()
    all_sheets = []

    ws_assign = wb.active
    ws_assign.title = "Assignments"
    ws_assign.append([*ASSIGNMENTS_COLS, "date_vn"])
    for row in assignment_rows(plan):
        row = {**row, "forced": fmt_bool(row["forced"]), "retained": fmt_bool(row["retained"])}
        ws_assign.append([row.get(c, "") for c in ASSIGNMENTS_COLS] + [format_date_vn(row["date"])])
    ws_assign.freeze_panes = "A2"
    all_sheets.append(ws_assign)

    ws_unfilled = wb.create_sheet("Unfilled")
    ws_unfilled.append(UNFILLED_COLS)
    for row in unfilled_rows(plan):
        row = {**row, "by_role": role_counts_join(row["by_role"])}
        ws_unfilled.append([row.get(c, "") for c in UNFILLED_COLS])
    all_sheets.append(ws_unfilled)

    ws_warnings = wb.create_sheet("Warnings")
    ws_warnings.append(["level", "message"])
    result = plan.get("result", {})
    for err in result.get("errors", []):
        ws_warnings.append(["error", err])
    for warning in result.get("warnings", []):
        ws_warnings.append(["warning", warning])
    all_sheets.append(ws_warnings)

    ws_workload = wb.create_sheet("Workload")
    ws_workload.append(WORKLOAD_COLS)
    over_fill = PatternFill(start_color="F8CBAD", end_color="F8CBAD", fill_type="solid")
    for w in plan.get("workload", []):
        ws_workload.append([
            w.get("user_id", ""),
            w.get("employee_name", ""),
            w.get("assigned_shifts", 0),
            w.get("assigned_hours", 0.0),
            fmt_optional(w.get("min_shifts")),
            fmt_optional(w.get("max_shifts")),
            fmt_optional(w.get("min_hours")),
            fmt_optional(w.get("max_hours")),
            fmt_bool(w.get("within_limits", True)),
        ])
        if not w.get("within_limits", True):
            for cell in ws_workload[ws_workload.max_row]:
                cell.fill = over_fill
    all_sheets.append(ws_workload)

    ws_metrics = wb.create_sheet("Metrics")
    metrics = plan.get("metrics", {})
    ws_metrics.append(["Field", "Value"])
    for field_name, value in [
        ("plan_id", plan.get("plan_id", "")),
        ("generated_at", plan.get("generated_at", "")),
        ("snapshot_id", plan.get("snapshot_id", "")),
        ("week_id", plan.get("week_id", "")),
        ("range_from", plan.get("range", {}).get("from", "")),
        ("range_to", plan.get("range", {}).get("to", "")),
        ("strategy", plan.get("strategy", "")),
        *metrics.items(),
    ]:
        ws_metrics.append([field_name, value])
    all_sheets.append(ws_metrics)

    ws_eval = wb.create_sheet("Evaluation")
    ws_eval.append(EVAL_MATRIX_COLS)
    for row in _matrix_rows(plan):
        ws_eval.append([row.get(c, "") for c in EVAL_MATRIX_COLS])
    ws_eval.freeze_panes = "A2"
    all_sheets.append(ws_eval)

    _style_headers(all_sheets)

    ws_guide = wb.create_sheet("Guide")
    _write_guide_sheet(ws_guide, plan)

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(path)
    return path
