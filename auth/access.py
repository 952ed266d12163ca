"""
auth/access.py -- Organization-scoped access decisions.

Every function here is a pure decision over its inputs: the caller's role in
one organization (taken from verified token claims), the target's identity
and, where needed, the target's role in the same organization. Nothing here
raises on unresolved input -- a missing role or organization is a "deny".
Translating a deny into a 403 is require()'s job.

Decision tables (not a rank order):

  view            owner/superadmin: anyone in the organization
                  staff:            customers only; unknown target role -> allow + warn
                  client/farmer:    self only
  edit            owner/superadmin/officestaff: anyone they may view
                  everyone else:    self only
  remove member   owner/officestaff/superadmin; owner memberships only by a
                  superadmin; nobody removes their own owner membership; the
                  last owner only by a superadmin
  add member      owner/superadmin: any role (superadmin only by superadmin)
                  staff:            client/farmer only
  search roles    owner/superadmin: requested roles (default client+farmer)
                  staff:            client+farmer, whatever was requested
                  client/farmer:    none (self-search short-circuit instead)

Layer rule: no imports from api/, cache/, or search/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from auth.models import Caller
from core.errors import AuthorizationError, MissingOrganizationError
from core.roles import ADMIN_ROLES, CUSTOMER_ROLES, DEFAULT_SEARCH_ROLES, PRIVILEGED_ROLES, STAFF_ROLES, Role

logger = logging.getLogger("farmvet.access")

# (organization_id, user_id) -> role of that user in that organization, or None.
RoleLookup = Callable[[int, int], Role | None]

_EDITOR_ROLES = ADMIN_ROLES | {Role.officestaff}
_MEMBER_REMOVER_ROLES = frozenset({Role.owner, Role.officestaff, Role.superadmin})


@dataclass(frozen=True)
class OrganizationContext:
    """The organization a request acts in and the caller's role there."""

    organization_id: int
    role: Role | None


# ---------------------------------------------------------------------------
# Context resolution
# ---------------------------------------------------------------------------


def resolve_organization_context(caller: Caller, requested_org_id: int | None = None) -> int:
    """Return the organization a request acts in.

    An explicit id wins; otherwise the caller's first membership claim is used.
    Raises MissingOrganizationError when neither is available.
    """
    if requested_org_id is not None:
        return requested_org_id
    if caller.claims:
        return caller.claims[0].organization_id
    raise MissingOrganizationError()


def role_in_organization(caller: Caller, organization_id: int | None) -> Role | None:
    """Return the caller's claimed role in the organization, or None."""
    if organization_id is None:
        return None
    for claim in caller.claims:
        if claim.organization_id == organization_id:
            return claim.role
    return None


def organization_context(caller: Caller, requested_org_id: int | None = None) -> OrganizationContext:
    org_id = resolve_organization_context(caller, requested_org_id)
    return OrganizationContext(organization_id=org_id, role=role_in_organization(caller, org_id))


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


def can_view(
    caller_role: Role | None,
    target_user_id: int,
    caller_user_id: int,
    organization_id: int | None,
    lookup_role: RoleLookup | None = None,
) -> bool:
    """May a caller with caller_role in organization_id view target_user_id?

    For staff callers the target's role in the same organization decides.
    When it cannot be determined (no lookup, lookup returns None or fails) the
    staff caller is allowed and the fallback is logged.
    """
    if caller_role is None or organization_id is None:
        return False
    if caller_role in ADMIN_ROLES:
        return True
    if target_user_id == caller_user_id:
        return True
    if caller_role in CUSTOMER_ROLES:
        return False
    if caller_role in STAFF_ROLES:
        target_role: Role | None = None
        if lookup_role is not None:
            try:
                target_role = lookup_role(organization_id, target_user_id)
            except Exception:
                logger.warning(
                    "Role lookup failed for user %s in organization %s; allowing %s by default",
                    target_user_id,
                    organization_id,
                    caller_role.value,
                    exc_info=True,
                )
                return True
        if target_role is None:
            logger.warning(
                "Role of user %s in organization %s unknown; allowing %s by default",
                target_user_id,
                organization_id,
                caller_role.value,
            )
            return True
        return target_role not in PRIVILEGED_ROLES
    return False


def can_edit(caller_role: Role | None, target_user_id: int, caller_user_id: int) -> bool:
    if caller_role is None:
        return False
    if caller_role in _EDITOR_ROLES:
        return True
    return target_user_id == caller_user_id


def can_remove_membership(
    caller_role: Role | None,
    target_role: Role | None,
    caller_user_id: int,
    target_user_id: int,
) -> bool:
    """May the caller detach target_user_id from the organization?

    Owner memberships are removable only by a superadmin, so an
    organization's last owner is never removed by anyone else.
    """
    if caller_role is None or caller_role not in _MEMBER_REMOVER_ROLES:
        return False
    if target_role is Role.owner:
        if caller_user_id == target_user_id:
            return False
        if caller_role is not Role.superadmin:
            return False
    if target_role is Role.superadmin and caller_role is not Role.superadmin:
        return False
    return True


def can_add_member(caller_role: Role | None, new_role: Role) -> bool:
    """May the caller attach a user to the organization with new_role?"""
    if caller_role is None:
        return False
    if new_role is Role.superadmin:
        return caller_role is Role.superadmin
    if caller_role in ADMIN_ROLES:
        return True
    if caller_role in STAFF_ROLES:
        return new_role in CUSTOMER_ROLES
    return False


def allowed_search_roles(caller_role: Role | None, requested: Iterable[Role] = ()) -> frozenset[Role]:
    """Roles a caller's search may return.

    Empty for client/farmer callers and for unresolved roles; the search
    engine handles client/farmer through the self-search path instead.
    """
    if caller_role is None:
        return frozenset()
    if caller_role in ADMIN_ROLES:
        requested = frozenset(requested)
        return requested or DEFAULT_SEARCH_ROLES
    if caller_role in STAFF_ROLES:
        return DEFAULT_SEARCH_ROLES
    return frozenset()


# ---------------------------------------------------------------------------
# Enforcement
# ---------------------------------------------------------------------------


def require(allowed: bool, caller: Caller, action: str, organization_id: int | None = None) -> None:
    """Raise AuthorizationError if a decision denied the action."""
    if allowed:
        return
    logger.info(
        "Denied %s for user %s in organization %s (role=%s)",
        action,
        caller.user_id,
        organization_id,
        role_in_organization(caller, organization_id),
    )
    raise AuthorizationError()
