"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access tokens arrive in the Authorization: Bearer <token> header. The refresh
cookie is never accepted here; it is only read by POST /auth/refresh-token.

try_get_current_caller() is the soft variant (returns None on failure).
get_current_caller() raises AuthenticationError (401) when the header is
missing and lets ExpiredTokenError / InvalidTokenError propagate, preserving
the expired-vs-invalid distinction.
get_organization_context() resolves which organization the request acts in.

Layer rule: no imports from cache/ or search/.
  auth/dependencies.py may import from fastapi (for Depends/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations


from fastapi import Depends, Query, Request

from auth.access import OrganizationContext, organization_context
from auth.models import Caller
from auth.tokens import TokenService
from core.errors import AppError, AuthenticationError


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        return token or None
    return None


def try_get_current_caller(request: Request) -> Caller | None:
    """Attempt to authenticate the request via the Bearer header.

    Returns the Caller on success, None on any failure.
    Never raises -- callers that need a hard 401 should use get_current_caller().
    """
    token = _bearer_token(request)
    if token is None:
        return None
    tokens: TokenService = request.app.state.token_service
    try:
        return tokens.verify_access(token)
    except AppError:
        return None


def get_current_caller(request: Request) -> Caller:
    """Require authentication. Raises AuthenticationError (HTTP 401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(caller: Caller = Depends(get_current_caller)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise AuthenticationError("Authentication required.")
    tokens: TokenService = request.app.state.token_service
    return tokens.verify_access(token)


def get_organization_context(
    organization_id: int | None = Query(default=None, alias="organizationId", ge=1),
    caller: Caller = Depends(get_current_caller),
) -> OrganizationContext:
    """Resolve the acting organization from ?organizationId= or the first claim.

    Raises MissingOrganizationError (HTTP 400) when the caller has no
    memberships and no organization was requested.
    """
    return organization_context(caller, organization_id)
