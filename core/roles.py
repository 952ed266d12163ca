"""
core/roles.py -- Closed role enumeration for organization memberships.

Role strings arrive from tokens, query parameters and the database with
inconsistent casing ("Owner", "OfficeStaff", "office_staff"). parse_role()
normalizes them once at the boundary; everything past the boundary compares
Role members, never raw strings.

The groups below are the only place the role hierarchy is written down. The
hierarchy is not a total order: decisions in auth/access.py are table-driven
per operation.
"""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    owner = "owner"
    superadmin = "superadmin"
    employee = "employee"
    officestaff = "officestaff"
    inseminator = "inseminator"
    vettech = "vettech"
    vet = "vet"
    client = "client"
    farmer = "farmer"


ADMIN_ROLES: frozenset[Role] = frozenset({Role.owner, Role.superadmin})
STAFF_ROLES: frozenset[Role] = frozenset(
    {Role.employee, Role.officestaff, Role.inseminator, Role.vettech, Role.vet}
)
CUSTOMER_ROLES: frozenset[Role] = frozenset({Role.client, Role.farmer})

# Roles a staff member may not see: each other, owners and superadmins.
PRIVILEGED_ROLES: frozenset[Role] = ADMIN_ROLES | STAFF_ROLES

DEFAULT_SEARCH_ROLES: frozenset[Role] = CUSTOMER_ROLES

_ALIASES = {
    "office_staff": Role.officestaff,
    "office-staff": Role.officestaff,
    "vet_tech": Role.vettech,
    "vet-tech": Role.vettech,
    "super_admin": Role.superadmin,
}


def parse_role(value: object) -> Role | None:
    """Return the Role for a raw value, or None if it is not a known role.

    Case-insensitive; surrounding whitespace is ignored.
    """
    if isinstance(value, Role):
        return value
    if not isinstance(value, str):
        return None
    key = value.strip().lower()
    if not key:
        return None
    try:
        return Role(key)
    except ValueError:
        return _ALIASES.get(key)


def parse_role_list(value: str | None) -> list[Role]:
    """Parse a comma-separated role list, dropping unknown and duplicate entries."""
    if not value:
        return []
    roles: list[Role] = []
    for part in value.split(","):
        role = parse_role(part)
        if role is not None and role not in roles:
            roles.append(role)
    return roles
