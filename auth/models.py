"""
auth/models.py -- Domain dataclasses for identities, organizations and sessions.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these classes only own the domain shape.

Layer rule: may import core/roles (the closed role enumeration) and nothing
else from the project.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from core.roles import Role


@dataclass
class User:
    """A person known to the system.

    Users are never hard-deleted: deactivation flips status to "inactive",
    which blocks login and token refresh.
    """

    email: str
    id: int | None = None
    hashed_password: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    street: str | None = None
    house_number: str | None = None
    city: str | None = None
    postal_code: str | None = None
    tax_id: str | None = None
    status: str = "active"  # "active" | "inactive"
    created_at: str = ""
    updated_at: str = ""

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


@dataclass
class Organization:
    name: str
    id: int | None = None
    street: str | None = None
    house_number: str | None = None
    city: str | None = None
    postal_code: str | None = None
    tax_id: str | None = None
    created_at: str = ""


@dataclass
class Membership:
    """A user's role inside one organization.

    role is None when the stored value is not a known Role; decisions treat
    that as "no membership".
    """

    organization_id: int
    user_id: int
    role: Role | None


@dataclass
class OrganizationWithRole:
    """An organization joined with the viewing user's role in it."""

    organization: Organization
    role: Role | None


@dataclass
class Herd:
    """A farm holding registered by its owner at sign-up."""

    registration_number: str
    owner_id: int
    owner_type: str = "user"  # "user" | "organization"
    id: int | None = None
    name: str | None = None
    eval_herd_no: str | None = None
    street: str | None = None
    house_number: str | None = None
    city: str | None = None
    postal_code: str | None = None
    created_at: str = ""


@dataclass(frozen=True)
class Registration:
    """Row ids written by one sign-up."""

    user_id: int
    organization_id: int | None = None
    herd_id: int | None = None


@dataclass(frozen=True)
class RoleClaim:
    """Token-embedded snapshot of a membership. Can go stale."""

    organization_id: int
    role: Role


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass
class Caller:
    """The authenticated identity reconstructed from a verified access token."""

    user_id: int
    claims: list[RoleClaim] = field(default_factory=list)
