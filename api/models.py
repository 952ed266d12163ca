"""
API request and response models for farmvet REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import Herd, Organization, OrganizationWithRole, User
from core.roles import Role, parse_role

# ---------------------------------------------------------------------------
# Shared validators
# ---------------------------------------------------------------------------


def _role_or_error(value: object) -> Role | None:
    if value is None:
        return None
    role = parse_role(value)
    if role is None:
        raise ValueError(f"Unknown role: {value!r}")
    return role


# ---------------------------------------------------------------------------
# Request models -- auth
# ---------------------------------------------------------------------------


class OrganizationCreate(BaseModel):
    """Organization created alongside a registration; the registrant becomes owner."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    street: str | None = Field(default=None, max_length=255)
    house_number: str | None = Field(default=None, max_length=30)
    city: str | None = Field(default=None, max_length=100)
    postal_code: str | None = Field(default=None, max_length=20)
    tax_id: str | None = Field(default=None, max_length=30)


class HerdCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    registration_number: str = Field(min_length=1, max_length=50)
    name: str | None = Field(default=None, max_length=255)
    eval_herd_no: str | None = Field(default=None, max_length=50)
    street: str | None = Field(default=None, max_length=255)
    house_number: str | None = Field(default=None, max_length=30)
    city: str | None = Field(default=None, max_length=100)
    postal_code: str | None = Field(default=None, max_length=20)


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    addToOrganizationId attaches the new user to an existing organization with
    `role` (default client); it requires an authenticated caller allowed to add
    that role. preserveCurrentSession suppresses the new user's token and
    refresh cookie so a staff member registering someone keeps their own session.
    """

    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(min_length=8, max_length=128)
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    phone: str | None = Field(default=None, max_length=50)
    street: str | None = Field(default=None, max_length=255)
    house_number: str | None = Field(default=None, max_length=30)
    city: str | None = Field(default=None, max_length=100)
    postal_code: str | None = Field(default=None, max_length=20)
    tax_id: str | None = Field(default=None, max_length=30)
    organization: OrganizationCreate | None = None
    herd: HerdCreate | None = None
    add_to_organization_id: int | None = Field(default=None, alias="addToOrganizationId", ge=1)
    role: Role | None = None
    preserve_current_session: bool = Field(default=False, alias="preserveCurrentSession")

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, value: object) -> Role | None:
        """Accept any casing or alias of a role name ("OfficeStaff", "office_staff")."""
        return _role_or_error(value)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    Both fields are optional at the schema level so a missing one yields the
    documented 400 rather than a 422 validation error.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str | None = Field(default=None, max_length=255)
    password: str | None = Field(default=None, max_length=128)


# ---------------------------------------------------------------------------
# Request models -- users and organizations
# ---------------------------------------------------------------------------


class ProfileUpdate(BaseModel):
    """PATCH body for a user profile. Only fields present in the body change."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    email: str | None = Field(default=None, min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    phone: str | None = Field(default=None, max_length=50)
    street: str | None = Field(default=None, max_length=255)
    house_number: str | None = Field(default=None, max_length=30)
    city: str | None = Field(default=None, max_length=100)
    postal_code: str | None = Field(default=None, max_length=20)
    tax_id: str | None = Field(default=None, max_length=30)


class PasswordChange(BaseModel):
    current_password: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=8, max_length=128)


class MemberAdd(BaseModel):
    """Request body for POST /api/v1/organizations/{organization_id}/members."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    role: Role = Role.client

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, value: object) -> Role:
        return _role_or_error(value) or Role.client


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """A user as returned by the API. The password hash is never included."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    street: str | None = None
    house_number: str | None = None
    city: str | None = None
    postal_code: str | None = None
    tax_id: str | None = None
    status: str
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        """Factory Method: the domain -> contract mapping lives beside the contract."""
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            phone=user.phone,
            street=user.street,
            house_number=user.house_number,
            city=user.city,
            postal_code=user.postal_code,
            tax_id=user.tax_id,
            status=user.status,
            created_at=user.created_at,
        )


class OrganizationResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    street: str | None = None
    house_number: str | None = None
    city: str | None = None
    postal_code: str | None = None
    tax_id: str | None = None
    role: str | None = None

    @classmethod
    def from_organization(cls, org: Organization, role: Role | None = None) -> "OrganizationResponse":
        return cls(
            id=org.id,
            name=org.name,
            street=org.street,
            house_number=org.house_number,
            city=org.city,
            postal_code=org.postal_code,
            tax_id=org.tax_id,
            role=role.value if role is not None else None,
        )

    @classmethod
    def from_membership(cls, item: OrganizationWithRole) -> "OrganizationResponse":
        return cls.from_organization(item.organization, item.role)


class HerdResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    registration_number: str
    name: str | None = None
    owner_id: int
    owner_type: str
    eval_herd_no: str | None = None
    street: str | None = None
    house_number: str | None = None
    city: str | None = None
    postal_code: str | None = None

    @classmethod
    def from_herd(cls, herd: Herd) -> "HerdResponse":
        return cls(
            id=herd.id,
            registration_number=herd.registration_number,
            name=herd.name,
            owner_id=herd.owner_id,
            owner_type=herd.owner_type,
            eval_herd_no=herd.eval_herd_no,
            street=herd.street,
            house_number=herd.house_number,
            city=herd.city,
            postal_code=herd.postal_code,
        )


class RegisterResponse(BaseModel):
    """Response for POST /api/v1/auth/register. token is omitted when the session is preserved."""

    model_config = ConfigDict(frozen=True)

    user: UserResponse
    organization: OrganizationResponse | None = None
    herd: HerdResponse | None = None
    token: str | None = None


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: UserResponse
    organizations: list[OrganizationResponse]
    token: str


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: UserResponse
    organizations: list[OrganizationResponse]


class TokenResponse(BaseModel):
    """Response for POST /api/v1/auth/refresh-token."""

    model_config = ConfigDict(frozen=True)

    token: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ClientResponse(UserResponse):
    """A user as seen inside one organization, with their role there."""

    role: str | None = None

    @classmethod
    def from_member(cls, user: User, role: Role | None) -> "ClientResponse":
        base = UserResponse.from_user(user).model_dump()
        return cls(**base, role=role.value if role is not None else None)


class PaginationResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int
    limit: int
    offset: int
    pages: int


class ClientSearchResponse(BaseModel):
    """Response for GET /api/v1/users/clients."""

    model_config = ConfigDict(frozen=True)

    clients: list[ClientResponse]
    pagination: PaginationResponse
    message: str | None = None


class MembershipResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    organization_id: int
    user_id: int
    role: str


# ---------------------------------------------------------------------------
# Error and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: str | None = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
