"""
api/routes/v1/organizations.py -- Organization membership management.

Routes:
  POST   /api/v1/organizations/{organization_id}/members            -- attach a user by email
  DELETE /api/v1/organizations/{organization_id}/members/{user_id}  -- detach a membership

The caller's role is taken from their token claim for the organization in the
path. Changing the role of an existing member counts as removing the old
membership, so the owner protections of can_remove_membership() apply.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from api.models import MemberAdd, MembershipResponse, MessageResponse
from auth.access import can_add_member, can_remove_membership, require, role_in_organization
from auth.dependencies import get_current_caller
from auth.models import Caller
from auth.store import RecordStore
from core.errors import NotFoundError, UserNotFoundError
from core.roles import Role

logger = logging.getLogger("farmvet.api")

# Auth policy: every route requires auth (get_current_caller) plus a claim in the organization.
router = APIRouter()


def _require_organization(store: RecordStore, organization_id: int) -> None:
    if store.get_organization(organization_id) is None:
        raise NotFoundError("Organization not found.")


@router.post("/organizations/{organization_id}/members", response_model=MembershipResponse, status_code=201)
def add_member(
    request: Request,
    organization_id: int,
    body: MemberAdd,
    caller: Caller = Depends(get_current_caller),
) -> MembershipResponse:
    """Attach an existing user to the organization, or change their role there."""
    store: RecordStore = request.app.state.store
    _require_organization(store, organization_id)
    caller_role = role_in_organization(caller, organization_id)
    require(can_add_member(caller_role, body.role), caller, f"add {body.role.value}", organization_id)

    target = store.get_by_email(body.email)
    if target is None:
        raise UserNotFoundError()

    existing = store.get_membership_role(organization_id, target.id)
    if existing is not None and existing is not body.role:
        require(
            can_remove_membership(caller_role, existing, caller.user_id, target.id),
            caller,
            f"change role {existing.value} -> {body.role.value}",
            organization_id,
        )

    membership = store.add_membership(organization_id, target.id, body.role)
    logger.info(
        "User %s set user %s as %s in organization %s", caller.user_id, target.id, body.role.value, organization_id
    )
    return MembershipResponse(
        organization_id=membership.organization_id, user_id=membership.user_id, role=membership.role.value
    )


@router.delete("/organizations/{organization_id}/members/{user_id}", response_model=MessageResponse)
def remove_member(
    request: Request,
    organization_id: int,
    user_id: int,
    caller: Caller = Depends(get_current_caller),
) -> MessageResponse:
    """Detach a user from the organization. The user record itself is kept."""
    store: RecordStore = request.app.state.store
    _require_organization(store, organization_id)
    caller_role = role_in_organization(caller, organization_id)
    if caller_role is None:
        require(False, caller, "remove member", organization_id)
    if not store.is_member(organization_id, user_id):
        raise NotFoundError("Membership not found.")

    target_role = store.get_membership_role(organization_id, user_id)
    require(
        can_remove_membership(caller_role, target_role, caller.user_id, user_id),
        caller,
        "remove member",
        organization_id,
    )
    if target_role is Role.owner and store.count_owners(organization_id) <= 1:
        logger.warning("Superadmin %s removed the last owner of organization %s", caller.user_id, organization_id)

    store.remove_membership(organization_id, user_id)
    logger.info("User %s removed user %s from organization %s", caller.user_id, user_id, organization_id)
    return MessageResponse(message="Member removed.")
