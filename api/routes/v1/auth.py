"""
api/routes/v1/auth.py -- Session endpoints: register, login, me, refresh, logout.

Routes:
  POST /api/v1/auth/register       -- create a user (+ optional organization, herd, membership)
  POST /api/v1/auth/login          -- password login; access token in body, refresh cookie
  GET  /api/v1/auth/me             -- current user and live organizations (requires auth)
  POST /api/v1/auth/refresh-token  -- rotate the pair from the refresh cookie
  POST /api/v1/auth/logout         -- clear the refresh cookie; 200 always

Security:
  [H2] POST /login and POST /register are rate-limited per IP.
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on login and refresh responses.
  The refresh token is only ever a cookie (httpOnly, SameSite=strict); it
  never appears in a response body.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import (
    ErrorDetail,
    ErrorResponse,
    HerdResponse,
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    OrganizationResponse,
    RegisterRequest,
    RegisterResponse,
    TokenResponse,
    UserResponse,
)
from auth.access import can_add_member, require, role_in_organization
from auth.dependencies import get_current_caller, try_get_current_caller
from auth.models import Caller, Herd, Organization, User
from auth.store import RecordStore
from auth.tokens import (
    REFRESH_COOKIE_NAME,
    TokenService,
    authenticate_user,
    clear_refresh_cookie,
    current_claims,
    hash_password,
    set_refresh_cookie,
)
from core.config import get_settings
from core.errors import (
    AuthorizationError,
    ConflictError,
    InvalidCredentialsError,
    InvalidRefreshTokenError,
    NotFoundError,
    UserNotFoundError,
    ValidationError,
)
from core.roles import Role

logger = logging.getLogger("farmvet.auth")

settings = get_settings()

# Auth policy:
# - POST /api/v1/auth/register:       public; addToOrganizationId requires an authorized caller
# - POST /api/v1/auth/login:          public
# - POST /api/v1/auth/refresh-token:  public -- authenticated by the refresh cookie alone
# - POST /api/v1/auth/logout:         public -- clearing a cookie needs no prior auth
# - GET  /api/v1/auth/me:             requires auth (get_current_caller)
router = APIRouter()


def _organizations_for(store: RecordStore, user_id: int) -> list[OrganizationResponse]:
    return [OrganizationResponse.from_membership(m) for m in store.list_user_organizations(user_id)]


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Register
# ---------------------------------------------------------------------------


def _check_add_to_organization(store: RecordStore, caller: Caller | None, org_id: int, role: Role) -> None:
    """Authorize attaching the new user to org_id with role before anything is written."""
    if caller is None:
        logger.info("Anonymous registration into organization %s refused", org_id)
        raise AuthorizationError("Adding a user to an organization requires authentication.")
    if store.get_organization(org_id) is None:
        raise NotFoundError("Organization not found.")
    require(can_add_member(role_in_organization(caller, org_id), role), caller, f"add {role.value}", org_id)


@limiter.limit(settings.register_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", response_model=RegisterResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a user, optionally with an organization (as owner), a herd and a membership.

    Without preserveCurrentSession the new user is signed in: the access token
    is returned and the refresh cookie set. With it, neither happens and the
    caller's own session is left untouched.
    """
    store: RecordStore = request.app.state.store
    tokens: TokenService = request.app.state.token_service

    member_role = body.role or Role.client
    if body.add_to_organization_id is not None:
        _check_add_to_organization(store, try_get_current_caller(request), body.add_to_organization_id, member_role)

    if store.get_by_email(body.email) is not None:
        raise ConflictError("Email already registered.")
    if body.herd is not None and store.herd_registration_exists(body.herd.registration_number):
        raise ConflictError("Herd registration number already exists.")

    user = User(
        email=body.email,
        hashed_password=hash_password(body.password),
        first_name=body.first_name,
        last_name=body.last_name,
        phone=body.phone,
        street=body.street,
        house_number=body.house_number,
        city=body.city,
        postal_code=body.postal_code,
        tax_id=body.tax_id,
    )
    try:
        registration = store.register(
            user,
            organization=Organization(**body.organization.model_dump()) if body.organization is not None else None,
            # owner_id is filled in with the new user's id inside the transaction.
            herd=Herd(owner_id=0, owner_type="user", **body.herd.model_dump()) if body.herd is not None else None,
            membership=(body.add_to_organization_id, member_role) if body.add_to_organization_id is not None else None,
        )
    except IntegrityError as exc:
        # Lost a race with a concurrent sign-up; the transaction rolled back.
        if store.get_by_email(body.email) is not None:
            raise ConflictError("Email already registered.") from exc
        raise ConflictError("Herd registration number already exists.") from exc
    uid = registration.user_id

    organization = None
    if registration.organization_id is not None:
        organization = OrganizationResponse.from_organization(
            store.get_organization(registration.organization_id), Role.owner
        )
    herd = None
    if registration.herd_id is not None:
        herd = HerdResponse.from_herd(store.get_herd(registration.herd_id))

    logger.info("Registered user %s", uid)
    pair = tokens.issue(uid, current_claims(store, uid))
    content = RegisterResponse(
        user=UserResponse.from_user(store.get_by_id(uid)),
        organization=organization,
        herd=herd,
        token=None if body.preserve_current_session else pair.access_token,
    )
    payload = content.model_dump()
    if body.preserve_current_session:
        del payload["token"]
    resp = JSONResponse(status_code=201, content=payload)
    if not body.preserve_current_session:
        set_refresh_cookie(resp, pair.refresh_token, settings)
    return _no_store(resp)


# ---------------------------------------------------------------------------
# Login / refresh / logout
# ---------------------------------------------------------------------------


@limiter.limit(settings.login_rate_limit)  # [H2] brute-force mitigation
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Uses authenticate_user() which includes timing equalization [C1]. Returns
    the same generic error for unknown email, wrong password and inactive
    account.
    """
    if not body.email or not body.password:
        raise ValidationError("Email and password are required.")

    store: RecordStore = request.app.state.store
    tokens: TokenService = request.app.state.token_service

    user = authenticate_user(store, body.email, body.password)
    if user is None:
        exc = InvalidCredentialsError("Invalid email or password.")
        return _no_store(
            JSONResponse(
                status_code=exc.status_code,
                content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(),
            )
        )

    pair = tokens.issue(user.id, current_claims(store, user.id))
    logger.info("User %s logged in", user.id)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            user=UserResponse.from_user(user),
            organizations=_organizations_for(store, user.id),
            token=pair.access_token,
        ).model_dump(),
    )
    set_refresh_cookie(resp, pair.refresh_token, settings)
    return _no_store(resp)


@router.post("/auth/refresh-token", response_model=TokenResponse)
def refresh_token(request: Request) -> JSONResponse:
    """Rotate the token pair using the refresh cookie.

    Every failure is the same 401 and clears the cookie, so a client cannot
    tell an expired token from a deactivated account.
    """
    store: RecordStore = request.app.state.store
    tokens: TokenService = request.app.state.token_service

    raw = request.cookies.get(REFRESH_COOKIE_NAME)
    try:
        if not raw:
            raise InvalidRefreshTokenError("Refresh token missing.")
        pair = tokens.refresh(raw, store)
    except InvalidRefreshTokenError as exc:
        resp = JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(),
        )
        if raw:
            clear_refresh_cookie(resp, settings)
        return _no_store(resp)

    resp = JSONResponse(status_code=200, content=TokenResponse(token=pair.access_token).model_dump())
    set_refresh_cookie(resp, pair.refresh_token, settings)
    return _no_store(resp)


@router.post("/auth/logout", response_model=MessageResponse)
def logout() -> JSONResponse:
    """Clear the refresh cookie. Access tokens stay valid until they expire."""
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    clear_refresh_cookie(resp, settings)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, caller: Caller = Depends(get_current_caller)) -> MeResponse:
    """Return the current user with organizations read from the store, not the token."""
    store: RecordStore = request.app.state.store
    user = store.get_by_id(caller.user_id)
    if user is None or not user.is_active:
        raise UserNotFoundError()
    return MeResponse(user=UserResponse.from_user(user), organizations=_organizations_for(store, user.id))
