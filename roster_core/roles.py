"""Role eligibility helpers shared by the allocator and the audit."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import Employee

ANY_ROLE = "Bất kỳ"
OWNER_ROLE = "Chủ nhà hàng"

PRIMARY = "primary"


def role_match(employee: Employee, role: str | None) -> str | None:
    """Return how `employee` covers `role`: "primary", "secondary" or None.

    An unset role or ANY_ROLE is covered by everyone except the owner.
    """
    if not role or role == ANY_ROLE:
        return None if employee.role == OWNER_ROLE else PRIMARY
    if employee.role == role:
        return PRIMARY
    if role in employee.secondary_roles:
        return "secondary"
    return None


def resolve_role(employee: Employee | None, role: str) -> str:
    """Concrete role to record for an assignment made under `role`."""
    if role == ANY_ROLE and employee is not None:
        return employee.role
    return role
