"""Normalize raw store documents into the snapshot dict the engine reads."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any
from uuid import uuid4

from roster_core.conditions import ConditionError, parse_condition
from roster_core.roles import ANY_ROLE
from roster_core.time_utils import interval_minutes

from .utils import local_date, now_utc_iso, parse_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SnapshotBuildInput:
    week_id: str
    start_date: date
    end_date: date
    timezone: str
    payload: dict[str, Any]


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v]


def _normalize_employees(users: list[dict[str, Any]], skipped: list[str]) -> list[dict[str, Any]]:
    employees: list[dict[str, Any]] = []
    for raw in users:
        uid = raw.get("id")
        role = raw.get("role")
        if not uid or not isinstance(role, str) or not role:
            logger.warning("skipping user document without id or role: %r", uid)
            skipped.append(f"user {uid or '?'}: missing role")
            continue
        employees.append(
            {
                "id": str(uid),
                "display_name": str(raw.get("displayName") or uid),
                "role": role,
                "secondary_roles": _str_list(raw.get("secondaryRoles")),
                "is_test_account": bool(raw.get("isTestAccount", False)),
            }
        )
    return sorted(employees, key=lambda e: e["id"])


def _normalize_assigned(raw: dict[str, Any], shift_role: str) -> list[dict[str, Any]]:
    out = []
    seen: set[str] = set()
    for item in raw.get("assignedUsers") or []:
        if not isinstance(item, dict) or not item.get("userId"):
            continue
        uid = str(item["userId"])
        if uid in seen:
            continue
        seen.add(uid)
        out.append(
            {
                "user_id": uid,
                "user_name": str(item.get("userName") or uid),
                "role": str(item.get("assignedRole") or shift_role),
            }
        )
    return out


def _normalize_shifts(schedule: dict[str, Any] | None, data: SnapshotBuildInput, skipped: list[str]) -> list[dict[str, Any]]:
    if not schedule:
        return []
    shifts: list[dict[str, Any]] = []
    for raw in schedule.get("shifts") or []:
        if not isinstance(raw, dict):
            continue
        slot = raw.get("timeSlot") or {}
        start, end = slot.get("start"), slot.get("end")
        shift_id = raw.get("id")
        datum = raw.get("date")
        if not shift_id or not datum or interval_minutes(start, end) is None:
            logger.warning("skipping malformed shift %r in schedule %s", shift_id, data.week_id)
            skipped.append(f"shift {shift_id or '?'}: missing id, date or time slot")
            continue
        role = str(raw.get("role") or ANY_ROLE)
        shifts.append(
            {
                "id": str(shift_id),
                "template_id": str(raw.get("templateId") or shift_id),
                "date": str(datum),
                "start": start,
                "end": end,
                "role": role,
                "label": str(raw.get("label") or ""),
                "min_users": int(raw.get("minUsers") or 0),
                "assigned": _normalize_assigned(raw, role),
            }
        )
    return sorted(shifts, key=lambda s: (s["date"], s["start"], s["template_id"], s["id"]))


def _normalize_availability(docs: list[dict[str, Any]], data: SnapshotBuildInput, skipped: list[str]) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    range_from, range_to = data.start_date.isoformat(), data.end_date.isoformat()
    for raw in docs:
        uid = raw.get("userId")
        datum = local_date(parse_timestamp(raw.get("date")), data.timezone) if isinstance(raw.get("date"), str) else ""
        if not uid or not datum:
            logger.warning("skipping availability document %s without user or date", raw.get("id"))
            skipped.append(f"availability {raw.get('id', '?')}: missing user or date")
            continue
        if not range_from <= datum <= range_to:
            continue
        for slot in raw.get("availableSlots") or []:
            start, end = (slot or {}).get("start"), (slot or {}).get("end")
            if interval_minutes(start, end) is None:
                logger.warning("skipping invalid slot %s-%s for %s on %s", start, end, uid, datum)
                skipped.append(f"availability {raw.get('id', '?')}: invalid slot {start}-{end}")
                continue
            rows.append({"user_id": str(uid), "date": datum, "start": start, "end": end})
    return sorted(rows, key=lambda r: (r["user_id"], r["date"], r["start"], r["end"]))


def _normalize_conditions(doc: dict[str, Any] | None, skipped: list[str]) -> list[dict[str, Any]]:
    if not doc:
        return []
    out = []
    for raw in doc.get("constraints") or []:
        try:
            parse_condition(raw)
        except ConditionError as exc:
            logger.warning("skipping malformed condition: %s", exc)
            skipped.append(f"condition: {exc}")
            continue
        out.append(raw)
    return out


def build_snapshot(data: SnapshotBuildInput) -> dict[str, Any]:
    payload = data.payload
    skipped: list[str] = []

    employees = _normalize_employees(payload.get("users", []), skipped)
    shifts = _normalize_shifts(payload.get("schedule"), data, skipped)
    availability = _normalize_availability(payload.get("availability", []), data, skipped)
    conditions = _normalize_conditions(payload.get("constraints"), skipped)
    schedule = payload.get("schedule") or {}

    return {
        "snapshot_id": f"{data.week_id}-{uuid4().hex[:8]}",
        "created_at": now_utc_iso(),
        "week_id": data.week_id,
        "range": {
            "from": data.start_date.isoformat(),
            "to": data.end_date.isoformat(),
        },
        "timezone": data.timezone,
        "schedule_status": schedule.get("status", ""),
        "employees": employees,
        "shifts": shifts,
        "availability": availability,
        "conditions": conditions,
        "skipped": skipped,
        "metadata": {
            "counts": {
                "employees": len(employees),
                "shifts": len(shifts),
                "availability": len(availability),
                "conditions": len(conditions),
                "skipped": len(skipped),
            }
        },
    }
