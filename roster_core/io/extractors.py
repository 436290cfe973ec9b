"""Extract CSV input files from a stored snapshot."""

from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any

from .schemas import (
    AVAILABILITY_COLS,
    EMPLOYEES_COLS,
    SHIFTS_COLS,
    fmt_bool,
    pipe_join,
)


def _write_csv(path: Path, columns: list[str], rows: list[dict[str, Any]]) -> Path:
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=columns)
        writer.writeheader()
        writer.writerows(rows)
    return path


def extract_from_snapshot(snapshot: dict[str, Any], directory: Path) -> dict[str, Path]:
    """Write a snapshot dict to the CSV input format read by `load_input`.

    Returns dict mapping filename to written path.
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    result: dict[str, Path] = {}

    # meta.json
    meta = {
        "snapshot_id": snapshot.get("snapshot_id", ""),
        "week_id": snapshot.get("week_id", ""),
        "range_from": snapshot.get("range", {}).get("from", ""),
        "range_to": snapshot.get("range", {}).get("to", ""),
        "timezone": snapshot.get("timezone", ""),
    }
    meta_path = directory / "meta.json"
    meta_path.write_text(json.dumps(meta, indent=2, ensure_ascii=False), encoding="utf-8")
    result["meta.json"] = meta_path

    # employees.csv
    emp_rows = []
    for emp in snapshot.get("employees", []):
        emp_rows.append({
            "user_id": emp.get("id", ""),
            "display_name": emp.get("display_name", ""),
            "role": emp.get("role", ""),
            "secondary_roles": pipe_join(emp.get("secondary_roles", [])),
            "is_test_account": fmt_bool(bool(emp.get("is_test_account"))),
        })
    result["employees.csv"] = _write_csv(directory / "employees.csv", EMPLOYEES_COLS, emp_rows)

    # shifts.csv
    shift_rows = []
    for s in snapshot.get("shifts", []):
        assigned = s.get("assigned", [])
        shift_rows.append({
            "shift_id": s.get("id", ""),
            "template_id": s.get("template_id", ""),
            "date": s.get("date", ""),
            "start": s.get("start", ""),
            "end": s.get("end", ""),
            "role": s.get("role", ""),
            "label": s.get("label", ""),
            "min_users": s.get("min_users", 0),
            "assigned_user_ids": pipe_join([a.get("user_id") for a in assigned]),
            "assigned_roles": pipe_join([a.get("role") for a in assigned]),
        })
    result["shifts.csv"] = _write_csv(directory / "shifts.csv", SHIFTS_COLS, shift_rows)

    # availability.csv
    avail_rows = [
        {
            "user_id": a.get("user_id", ""),
            "date": a.get("date", ""),
            "start": a.get("start", ""),
            "end": a.get("end", ""),
        }
        for a in snapshot.get("availability", [])
    ]
    result["availability.csv"] = _write_csv(directory / "availability.csv", AVAILABILITY_COLS, avail_rows)

    # conditions.json
    conditions_path = directory / "conditions.json"
    conditions_path.write_text(
        json.dumps(snapshot.get("conditions", []), indent=2, ensure_ascii=False),
        encoding="utf-8",
    )
    result["conditions.json"] = conditions_path

    return result
