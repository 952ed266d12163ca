"""
api/routes/v1/users.py -- Member search, member view/edit, own profile.

Routes:
  GET   /api/v1/users/clients                   -- organization-scoped search / listing
  GET   /api/v1/users/clients/{client_id}       -- view one member (canView)
  PATCH /api/v1/users/clients/{client_id}       -- edit a member (canView + canEdit)
  GET   /api/v1/users/profile                   -- caller's own profile
  PATCH /api/v1/users/profile                   -- edit own profile
  POST  /api/v1/users/profile/change-password   -- change own password

Organization context: ?organizationId= when given, else the caller's first
membership claim. A caller without a role in that organization gets 403.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.exc import IntegrityError

from api.models import (
    ClientResponse,
    ClientSearchResponse,
    MessageResponse,
    PaginationResponse,
    PasswordChange,
    ProfileUpdate,
    UserResponse,
)
from auth.access import OrganizationContext, can_edit, can_view, require
from auth.dependencies import get_current_caller, get_organization_context
from auth.models import Caller, User
from auth.store import RecordStore
from auth.tokens import hash_password, verify_password
from core.errors import AuthorizationError, ConflictError, InvalidCredentialsError, UserNotFoundError, ValidationError
from core.roles import Role, parse_role_list
from search.engine import SearchEngine, SearchRequest

logger = logging.getLogger("farmvet.api")

# Auth policy: every route requires auth (get_current_caller).
router = APIRouter()


def _acting_role(ctx: OrganizationContext, caller: Caller) -> Role:
    if ctx.role is None:
        logger.info("User %s has no role in organization %s", caller.user_id, ctx.organization_id)
        raise AuthorizationError()
    return ctx.role


def _apply_profile_update(store: RecordStore, user: User, body: ProfileUpdate) -> User:
    """Write the fields present in body. Email must stay unique."""
    fields = body.model_dump(exclude_unset=True)
    if "email" in fields:
        if fields["email"] is None:
            del fields["email"]
        else:
            other = store.get_by_email(fields["email"])
            if other is not None and other.id != user.id:
                raise ConflictError("Email already registered.")
    if fields:
        try:
            store.update_user(user.id, **fields)
        except IntegrityError as exc:
            raise ConflictError("Email already registered.") from exc
    return store.get_by_id(user.id)


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


@router.get("/users/clients", response_model=ClientSearchResponse)
def search_clients(
    request: Request,
    query: str | None = Query(default=None, max_length=200),
    roles: str | None = Query(default=None, max_length=200),
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1),
    sort: str | None = Query(default=None, max_length=64),
    direction: str = Query(default="asc", max_length=4),
    ctx: OrganizationContext = Depends(get_organization_context),
    caller: Caller = Depends(get_current_caller),
) -> ClientSearchResponse:
    """Search or list the organization's members visible to the caller.

    owner/superadmin choose the roles (default client,farmer); staff always
    get client,farmer; client/farmer callers only ever find themselves.
    """
    engine: SearchEngine = request.app.state.search_engine
    role = _acting_role(ctx, caller)

    requested = parse_role_list(roles)
    if roles and not requested:
        raise ValidationError("No known role in 'roles'.", detail=roles)

    result = engine.search(
        SearchRequest(
            organization_id=ctx.organization_id,
            caller_user_id=caller.user_id,
            caller_role=role,
            query=query,
            roles=requested,
            page=page,
            limit=limit,
            sort=sort,
            direction=direction,
        )
    )
    p = result.pagination
    return ClientSearchResponse(
        clients=[ClientResponse.from_member(h.user, h.role) for h in result.hits],
        pagination=PaginationResponse(total=p.total, limit=p.limit, offset=p.offset, pages=p.pages),
        message=result.message,
    )


# ---------------------------------------------------------------------------
# Single member
# ---------------------------------------------------------------------------


def _load_visible_member(store: RecordStore, ctx: OrganizationContext, caller: Caller, client_id: int) -> User:
    """Return the target user if the caller may view them in this organization.

    Members of other organizations are reported as not found, except to a
    superadmin.
    """
    role = _acting_role(ctx, caller)
    target = store.get_by_id(client_id)
    if target is None:
        raise UserNotFoundError()
    if (
        client_id != caller.user_id
        and role is not Role.superadmin
        and not store.is_member(ctx.organization_id, client_id)
    ):
        raise UserNotFoundError()
    require(
        can_view(role, client_id, caller.user_id, ctx.organization_id, store.get_membership_role),
        caller,
        "view member",
        ctx.organization_id,
    )
    return target


@router.get("/users/clients/{client_id}", response_model=ClientResponse)
def get_client(
    request: Request,
    client_id: int,
    ctx: OrganizationContext = Depends(get_organization_context),
    caller: Caller = Depends(get_current_caller),
) -> ClientResponse:
    store: RecordStore = request.app.state.store
    target = _load_visible_member(store, ctx, caller, client_id)
    return ClientResponse.from_member(target, store.get_membership_role(ctx.organization_id, client_id))


@router.patch("/users/clients/{client_id}", response_model=ClientResponse)
def update_client(
    request: Request,
    client_id: int,
    body: ProfileUpdate,
    ctx: OrganizationContext = Depends(get_organization_context),
    caller: Caller = Depends(get_current_caller),
) -> ClientResponse:
    """Edit a member's profile fields. Passwords are not editable here."""
    store: RecordStore = request.app.state.store
    target = _load_visible_member(store, ctx, caller, client_id)
    require(can_edit(ctx.role, client_id, caller.user_id), caller, "edit member", ctx.organization_id)
    updated = _apply_profile_update(store, target, body)
    logger.info("User %s updated member %s in organization %s", caller.user_id, client_id, ctx.organization_id)
    return ClientResponse.from_member(updated, store.get_membership_role(ctx.organization_id, client_id))


# ---------------------------------------------------------------------------
# Own profile
# ---------------------------------------------------------------------------


def _self(store: RecordStore, caller: Caller) -> User:
    user = store.get_by_id(caller.user_id)
    if user is None or not user.is_active:
        raise UserNotFoundError()
    return user


@router.get("/users/profile", response_model=UserResponse)
def get_profile(request: Request, caller: Caller = Depends(get_current_caller)) -> UserResponse:
    return UserResponse.from_user(_self(request.app.state.store, caller))


@router.patch("/users/profile", response_model=UserResponse)
def update_profile(
    request: Request,
    body: ProfileUpdate,
    caller: Caller = Depends(get_current_caller),
) -> UserResponse:
    store: RecordStore = request.app.state.store
    return UserResponse.from_user(_apply_profile_update(store, _self(store, caller), body))


@router.post("/users/profile/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: PasswordChange,
    caller: Caller = Depends(get_current_caller),
) -> MessageResponse:
    """Change the caller's password. The current password must be supplied."""
    store: RecordStore = request.app.state.store
    user = _self(store, caller)
    if not user.hashed_password or not verify_password(body.current_password, user.hashed_password):
        raise InvalidCredentialsError("Current password is incorrect.")
    store.update_password(user.id, hash_password(body.new_password))
    logger.info("User %s changed their password", user.id)
    return MessageResponse(message="Password changed.")
