"""Read a CSV input directory into the snapshot dict that plan_from_snapshot() expects."""

from __future__ import annotations

import csv
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from roster_core.models import (
    WeekInput,
    availability_from_dict,
    employee_from_dict,
    shift_from_dict,
)
from roster_core.roles import ANY_ROLE

from .schemas import pipe_split, to_bool, to_int


def load_input(directory: Path) -> tuple[dict, dict]:
    """Read CSV input dir -> (snapshot_dict, meta_dict).

    Raises FileNotFoundError if required files are missing. `conditions.json`
    is optional; a week without it runs unconstrained.
    """
    d = Path(directory)

    # -- meta.json ----------------------------------------------------------------
    meta_dict = _read_json(d / "meta.json")

    # -- employees.csv ------------------------------------------------------------
    employees = []
    name_lookup: dict[str, str] = {}
    for row in _read_csv(d / "employees.csv"):
        user_id = row["user_id"]
        name = row.get("display_name") or user_id
        name_lookup[user_id] = name
        employees.append(
            {
                "id": user_id,
                "display_name": name,
                "role": row["role"],
                "secondary_roles": pipe_split(row.get("secondary_roles")),
                "is_test_account": to_bool(row.get("is_test_account")),
            }
        )

    # -- shifts.csv ---------------------------------------------------------------
    shifts = []
    for row in _read_csv(d / "shifts.csv"):
        user_ids = pipe_split(row.get("assigned_user_ids"))
        roles = pipe_split(row.get("assigned_roles"))
        if roles and len(roles) != len(user_ids):
            raise ValueError(
                f"shift {row['shift_id']}: {len(user_ids)} assigned user(s) but {len(roles)} role(s)"
            )
        shift_role = row.get("role") or ANY_ROLE
        shifts.append(
            {
                "id": row["shift_id"],
                "template_id": row.get("template_id") or row["shift_id"],
                "date": row["date"],
                "start": row["start"],
                "end": row["end"],
                "role": shift_role,
                "label": row.get("label", ""),
                "min_users": to_int(row.get("min_users")),
                "assigned": [
                    {
                        "user_id": uid,
                        "user_name": name_lookup.get(uid, uid),
                        "role": roles[i] if roles else shift_role,
                    }
                    for i, uid in enumerate(user_ids)
                ],
            }
        )

    # -- availability.csv ---------------------------------------------------------
    availability = [
        {"user_id": row["user_id"], "date": row["date"], "start": row["start"], "end": row["end"]}
        for row in _read_csv(d / "availability.csv")
    ]

    # -- conditions.json ----------------------------------------------------------
    conditions_path = d / "conditions.json"
    conditions = _read_json(conditions_path) if conditions_path.exists() else []
    if not isinstance(conditions, list):
        raise ValueError(f"{conditions_path} must contain a JSON list")

    snapshot_dict = {
        "snapshot_id": meta_dict["snapshot_id"],
        "created_at": datetime.now(timezone.utc).isoformat(),
        "week_id": meta_dict["week_id"],
        "range": {
            "from": meta_dict.get("range_from", ""),
            "to": meta_dict.get("range_to", ""),
        },
        "timezone": meta_dict.get("timezone", ""),
        "employees": employees,
        "shifts": shifts,
        "availability": availability,
        "conditions": conditions,
        "metadata": {
            "counts": {
                "employees": len(employees),
                "shifts": len(shifts),
                "availability": len(availability),
                "conditions": len(conditions),
            }
        },
    }
    return snapshot_dict, meta_dict


def inputs_from_snapshot(snapshot: dict[str, Any]) -> WeekInput:
    """Convert a snapshot dict into typed engine inputs.

    Raises KeyError or ValueError on malformed rows.
    """
    return WeekInput(
        week_id=str(snapshot.get("week_id", "")),
        shifts=tuple(shift_from_dict(s) for s in snapshot.get("shifts", [])),
        employees=tuple(employee_from_dict(e) for e in snapshot.get("employees", [])),
        availability=tuple(availability_from_dict(a) for a in snapshot.get("availability", [])),
        conditions=tuple(snapshot.get("conditions", [])),
    )


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _read_json(path: Path) -> Any:
    if not path.exists():
        raise FileNotFoundError(f"Required file not found: {path}")
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def _read_csv(path: Path) -> list[dict[str, str]]:
    """Read a CSV file into a list of dicts via csv.DictReader."""
    if not path.exists():
        raise FileNotFoundError(f"Required file not found: {path}")
    with open(path, newline="", encoding="utf-8") as f:
        return list(csv.DictReader(f))
