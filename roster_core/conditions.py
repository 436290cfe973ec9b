"""Structured scheduling conditions as a closed set of typed variants.

Conditions are stored by the application as loosely-typed records tagged by
`type` (camelCase keys, optional fields omitted). `parse_condition` turns one
record into its dataclass and rejects any record whose shape does not match
its tag, so that a silently dropped condition can never produce a clean run.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

LINK_FORCE = "force"
LINK_BAN = "ban"

SCOPE_GLOBAL = "global"
SCOPE_USER = "user"


class ConditionError(ValueError):
    """A condition record is missing fields or carries the wrong types."""


@dataclass(frozen=True)
class WorkloadLimit:
    id: str
    scope: str
    user_id: str | None = None
    min_shifts_per_week: int | None = None
    max_shifts_per_week: int | None = None
    min_hours_per_week: float | None = None
    max_hours_per_week: float | None = None
    enabled: bool = True


@dataclass(frozen=True)
class DailyShiftLimit:
    id: str
    user_id: str | None = None
    max_per_day: int | None = None
    enabled: bool = True


@dataclass(frozen=True)
class ShiftStaffing:
    id: str
    template_id: str
    role: str
    count: int
    mandatory: bool = False
    enabled: bool = True


@dataclass(frozen=True)
class StaffPriority:
    id: str
    template_id: str
    user_id: str
    weight: float
    mandatory: bool = False
    enabled: bool = True


@dataclass(frozen=True)
class StaffShiftLink:
    id: str
    template_id: str
    user_id: str
    link: str
    enabled: bool = True


@dataclass(frozen=True)
class StaffExclusion:
    id: str
    user_id: str
    blocked_user_ids: tuple[str, ...]
    template_id: str | None = None
    enabled: bool = True


@dataclass(frozen=True)
class AvailabilityStrictness:
    id: str
    strict: bool
    enabled: bool = True


ScheduleCondition = Union[
    WorkloadLimit,
    DailyShiftLimit,
    ShiftStaffing,
    StaffPriority,
    StaffShiftLink,
    StaffExclusion,
    AvailabilityStrictness,
]

CONDITION_TYPES = (
    "WorkloadLimit",
    "DailyShiftLimit",
    "ShiftStaffing",
    "StaffPriority",
    "StaffShiftLink",
    "StaffExclusion",
    "AvailabilityStrictness",
)


# ---- field readers ---------------------------------------------------------

def _label(raw: dict[str, Any]) -> str:
    return f"{raw.get('type', '?')} condition {raw.get('id', '<no id>')!r}"


def _req_str(raw: dict[str, Any], key: str) -> str:
    value = raw.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConditionError(f"{_label(raw)}: missing required field '{key}'")
    return value


def _opt_str(raw: dict[str, Any], key: str) -> str | None:
    value = raw.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ConditionError(f"{_label(raw)}: field '{key}' must be a string")
    return value


def _opt_number(raw: dict[str, Any], key: str) -> float | None:
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConditionError(f"{_label(raw)}: field '{key}' must be a number")
    return value


def _opt_int(raw: dict[str, Any], key: str) -> int | None:
    value = _opt_number(raw, key)
    if value is None:
        return None
    if isinstance(value, float) and not value.is_integer():
        raise ConditionError(f"{_label(raw)}: field '{key}' must be a whole number")
    return int(value)


def _req_int(raw: dict[str, Any], key: str) -> int:
    value = _opt_int(raw, key)
    if value is None:
        raise ConditionError(f"{_label(raw)}: missing required field '{key}'")
    return value


def _bool(raw: dict[str, Any], key: str, default: bool) -> bool:
    value = raw.get(key, default)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ConditionError(f"{_label(raw)}: field '{key}' must be true or false")
    return value


# ---- parsing ---------------------------------------------------------------

def parse_condition(raw: dict[str, Any]) -> ScheduleCondition:
    """Parse one stored condition record into its typed variant."""
    if not isinstance(raw, dict):
        raise ConditionError(f"condition record must be an object, got {type(raw).__name__}")
    kind = raw.get("type")
    cid = _req_str(raw, "id")
    enabled = _bool(raw, "enabled", True)

    if kind == "WorkloadLimit":
        scope = raw.get("scope")
        if scope not in (SCOPE_GLOBAL, SCOPE_USER):
            raise ConditionError(f"{_label(raw)}: scope must be 'global' or 'user'")
        user_id = _req_str(raw, "userId") if scope == SCOPE_USER else None
        return WorkloadLimit(
            id=cid,
            scope=scope,
            user_id=user_id,
            min_shifts_per_week=_opt_int(raw, "minShiftsPerWeek"),
            max_shifts_per_week=_opt_int(raw, "maxShiftsPerWeek"),
            min_hours_per_week=_opt_number(raw, "minHoursPerWeek"),
            max_hours_per_week=_opt_number(raw, "maxHoursPerWeek"),
            enabled=enabled,
        )

    if kind == "DailyShiftLimit":
        return DailyShiftLimit(
            id=cid,
            user_id=_opt_str(raw, "userId"),
            max_per_day=_opt_int(raw, "maxPerDay"),
            enabled=enabled,
        )

    if kind == "ShiftStaffing":
        return ShiftStaffing(
            id=cid,
            template_id=_req_str(raw, "templateId"),
            role=_req_str(raw, "role"),
            count=_req_int(raw, "count"),
            mandatory=_bool(raw, "mandatory", False),
            enabled=enabled,
        )

    if kind == "StaffPriority":
        weight = _opt_number(raw, "weight")
        if weight is None:
            raise ConditionError(f"{_label(raw)}: missing required field 'weight'")
        return StaffPriority(
            id=cid,
            template_id=_req_str(raw, "templateId"),
            user_id=_req_str(raw, "userId"),
            weight=weight,
            mandatory=_bool(raw, "mandatory", False),
            enabled=enabled,
        )

    if kind == "StaffShiftLink":
        link = raw.get("link")
        if link not in (LINK_FORCE, LINK_BAN):
            raise ConditionError(f"{_label(raw)}: link must be 'force' or 'ban'")
        return StaffShiftLink(
            id=cid,
            template_id=_req_str(raw, "templateId"),
            user_id=_req_str(raw, "userId"),
            link=link,
            enabled=enabled,
        )

    if kind == "StaffExclusion":
        blocked = raw.get("blockedUserIds")
        if blocked is None:
            blocked = []
        if not isinstance(blocked, list) or not all(isinstance(b, str) for b in blocked):
            raise ConditionError(f"{_label(raw)}: blockedUserIds must be a list of user ids")
        return StaffExclusion(
            id=cid,
            user_id=_req_str(raw, "userId"),
            blocked_user_ids=tuple(blocked),
            template_id=_opt_str(raw, "templateId"),
            enabled=enabled,
        )

    if kind == "AvailabilityStrictness":
        return AvailabilityStrictness(id=cid, strict=_bool(raw, "strict", False), enabled=enabled)

    raise ConditionError(f"{_label(raw)}: unknown condition type {kind!r}, expected one of {CONDITION_TYPES}")


def parse_conditions(raws: list[Any]) -> list[ScheduleCondition]:
    """Parse a list of stored records; already-typed conditions pass through."""
    out: list[ScheduleCondition] = []
    for raw in raws:
        if isinstance(raw, dict):
            out.append(parse_condition(raw))
        elif isinstance(raw, _VARIANTS):
            out.append(raw)
        else:
            raise ConditionError(f"unsupported condition value: {raw!r}")
    return out


def condition_to_dict(cond: ScheduleCondition) -> dict[str, Any]:
    """Serialize a condition back to its stored record shape."""
    if isinstance(cond, WorkloadLimit):
        row: dict[str, Any] = {
            "type": "WorkloadLimit",
            "scope": cond.scope,
            "userId": cond.user_id,
            "minShiftsPerWeek": cond.min_shifts_per_week,
            "maxShiftsPerWeek": cond.max_shifts_per_week,
            "minHoursPerWeek": cond.min_hours_per_week,
            "maxHoursPerWeek": cond.max_hours_per_week,
        }
    elif isinstance(cond, DailyShiftLimit):
        row = {"type": "DailyShiftLimit", "userId": cond.user_id, "maxPerDay": cond.max_per_day}
    elif isinstance(cond, ShiftStaffing):
        row = {
            "type": "ShiftStaffing",
            "templateId": cond.template_id,
            "role": cond.role,
            "count": cond.count,
            "mandatory": cond.mandatory,
        }
    elif isinstance(cond, StaffPriority):
        row = {
            "type": "StaffPriority",
            "templateId": cond.template_id,
            "userId": cond.user_id,
            "weight": cond.weight,
            "mandatory": cond.mandatory,
        }
    elif isinstance(cond, StaffShiftLink):
        row = {"type": "StaffShiftLink", "templateId": cond.template_id, "userId": cond.user_id, "link": cond.link}
    elif isinstance(cond, StaffExclusion):
        row = {
            "type": "StaffExclusion",
            "userId": cond.user_id,
            "blockedUserIds": list(cond.blocked_user_ids),
            "templateId": cond.template_id,
        }
    elif isinstance(cond, AvailabilityStrictness):
        row = {"type": "AvailabilityStrictness", "strict": cond.strict}
    else:
        raise ConditionError(f"unsupported condition value: {cond!r}")
    row = {k: v for k, v in row.items() if v is not None}
    return {"id": cond.id, "enabled": cond.enabled, **row}


_VARIANTS = (
    WorkloadLimit,
    DailyShiftLimit,
    ShiftStaffing,
    StaffPriority,
    StaffShiftLink,
    StaffExclusion,
    AvailabilityStrictness,
)
