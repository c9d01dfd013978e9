"""Role identifiers and the organizational scope each role is bound to."""

from __future__ import annotations

from enum import Enum
from typing import Mapping


class Role(str, Enum):
    """Internal and vendor roles taking part in the maintenance workflow."""

    STORE_MANAGER = "SM"
    AREA_MANAGER = "AM"
    AREA_MAINTENANCE_MANAGER = "AMM"
    SALES_DIRECTOR = "D"
    MAINTENANCE_DIRECTOR = "C2"
    BOARD_OF_DIRECTORS = "BOD"
    SERVICE_ADMIN = "S1"
    TECHNICIAN = "S2"
    FINANCE_BACKOFFICE = "S3"


class RoleScope(str, Enum):
    """Organizational unit a role holder is attached to."""

    STORE = "store"
    REGION = "region"
    COMPANY = "company"
    VENDOR = "vendor"


ROLE_SCOPES: Mapping[Role, RoleScope] = {
    Role.STORE_MANAGER: RoleScope.STORE,
    Role.AREA_MANAGER: RoleScope.REGION,
    Role.AREA_MAINTENANCE_MANAGER: RoleScope.REGION,
    Role.SALES_DIRECTOR: RoleScope.COMPANY,
    Role.MAINTENANCE_DIRECTOR: RoleScope.COMPANY,
    Role.BOARD_OF_DIRECTORS: RoleScope.COMPANY,
    Role.SERVICE_ADMIN: RoleScope.VENDOR,
    Role.TECHNICIAN: RoleScope.VENDOR,
    Role.FINANCE_BACKOFFICE: RoleScope.VENDOR,
}

TICKET_CREATOR_ROLES: frozenset[Role] = frozenset({Role.STORE_MANAGER, Role.AREA_MAINTENANCE_MANAGER})


def scope_of(role: Role) -> RoleScope:
    return ROLE_SCOPES[role]


def is_vendor_role(role: Role) -> bool:
    return ROLE_SCOPES[role] is RoleScope.VENDOR


def parse_role(value: str | Role) -> Role:
    """Accept a role value (``"AMM"``) or member name (``"area_maintenance_manager"``)."""

    if isinstance(value, Role):
        return value
    candidate = (value or "").strip()
    if not candidate:
        raise ValueError("Role must not be empty")
    upper = candidate.upper()
    for role in Role:
        if role.value == upper or role.name == upper:
            return role
    raise ValueError(f"Unknown role: {value!r}")
