"""
auth/tokens.py -- Session tokens, password hashing and login authentication.

Security design decisions:
  JWT: python-jose with HS256. Two token classes share one payload shape
       {id, organizations: [{id, role}]} and differ in secret, "typ" claim and
       expiry. Access tokens are short-lived and travel in JSON bodies and
       Authorization headers; refresh tokens are long-lived and travel only in
       an httpOnly, SameSite=strict cookie.

       Verification is stateless: validity is signature + expiry. There is no
       revocation list. Refresh re-issues the embedded role claims unless
       REFRESH_RERESOLVE_ROLES is enabled.

  Failure normalization: every decode failure maps to InvalidTokenError or
       ExpiredTokenError; every refresh failure collapses to
       InvalidRefreshTokenError so callers cannot tell a bad signature from a
       deactivated account.

  Passwords: bcrypt directly. The _DUMMY_HASH constant enables timing
       equalization in authenticate_user() so response time does not reveal
       whether an email is registered.

Layer rule: no imports from api/, cache/, or search/.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import Caller, RoleClaim, TokenPair
from core.config import Settings, get_settings
from core.errors import AppError, ExpiredTokenError, InvalidRefreshTokenError, InvalidTokenError, UserNotFoundError
from core.roles import parse_role

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import RecordStore

logger = logging.getLogger("farmvet.auth")

_ALGORITHM = "HS256"
_ACCESS = "access"
_REFRESH = "refresh"

REFRESH_COOKIE_NAME = "refreshToken"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash. Computed once at module load so the first
# login attempt is not measurably slower than subsequent ones.
_DUMMY_HASH: str = hash_password("farmvet_timing_dummy")


def authenticate_user(store: RecordStore, email: str, password: str) -> User | None:
    """Authenticate an email/password login with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Inactive accounts fail like wrong passwords. Returns the User on success,
    None on any failure.
    """
    user = store.get_by_email(email)
    if user is None or not user.hashed_password:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    if not user.is_active:
        return None
    return user


# ---------------------------------------------------------------------------
# Claims <-> payload
# ---------------------------------------------------------------------------


def claims_to_payload(claims: list[RoleClaim]) -> list[dict]:
    return [{"id": c.organization_id, "role": c.role.value} for c in claims]


def payload_to_claims(raw: object) -> list[RoleClaim]:
    """Rebuild RoleClaims from the "organizations" payload entry.

    Raises InvalidTokenError if the structure is wrong. Entries with a role
    that is no longer known are dropped, which default-denies that
    organization rather than rejecting the whole session.
    """
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise InvalidTokenError()
    claims: list[RoleClaim] = []
    for item in raw:
        if not isinstance(item, dict) or "id" not in item:
            raise InvalidTokenError()
        try:
            org_id = int(item["id"])
        except (TypeError, ValueError) as exc:
            raise InvalidTokenError() from exc
        role = parse_role(item.get("role"))
        if role is None:
            logger.warning("Dropping claim with unknown role %r for organization %s", item.get("role"), org_id)
            continue
        claims.append(RoleClaim(organization_id=org_id, role=role))
    return claims


# ---------------------------------------------------------------------------
# Token service
# ---------------------------------------------------------------------------


class TokenService:
    """Issues, verifies and rotates access/refresh token pairs.

    Usage:
        tokens = TokenService()
        pair = tokens.issue(user_id, claims)
        caller = tokens.verify_access(pair.access_token)
        new_pair = tokens.refresh(pair.refresh_token, store)
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    def _secret(self, kind: str) -> str:
        if kind == _ACCESS:
            return self._settings.access_token_secret
        return self._settings.refresh_token_secret

    def _encode(self, kind: str, user_id: int, claims: list[RoleClaim], expire_seconds: int) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "id": user_id,
            "organizations": claims_to_payload(claims),
            "typ": kind,
            "iat": now,
            "exp": now + timedelta(seconds=expire_seconds),
            # Unique per token so a rotated pair never repeats the old one.
            "jti": secrets.token_hex(8),
        }
        return jwt.encode(payload, self._secret(kind), algorithm=_ALGORITHM)

    def _decode(self, kind: str, token: str) -> Caller:
        if not token or not isinstance(token, str):
            raise InvalidTokenError()
        try:
            payload = jwt.decode(token, self._secret(kind), algorithms=[_ALGORITHM])
        except ExpiredSignatureError as exc:
            raise ExpiredTokenError() from exc
        except JWTError as exc:
            raise InvalidTokenError() from exc
        if payload.get("typ") != kind:
            raise InvalidTokenError()
        user_id = payload.get("id")
        if isinstance(user_id, bool) or not isinstance(user_id, int):
            raise InvalidTokenError()
        return Caller(user_id=user_id, claims=payload_to_claims(payload.get("organizations")))

    def issue(self, user_id: int, claims: list[RoleClaim]) -> TokenPair:
        """Mint an access/refresh pair carrying the same identity and claims."""
        return TokenPair(
            access_token=self._encode(_ACCESS, user_id, claims, self._settings.access_token_expire_seconds),
            refresh_token=self._encode(_REFRESH, user_id, claims, self._settings.refresh_token_expire_seconds),
        )

    def verify_access(self, token: str) -> Caller:
        """Return the Caller embedded in an access token.

        Raises ExpiredTokenError past expiry and InvalidTokenError for any other
        problem (bad signature, refresh token presented, malformed payload).
        """
        return self._decode(_ACCESS, token)

    def verify_refresh(self, token: str) -> Caller:
        return self._decode(_REFRESH, token)

    def refresh(self, refresh_token: str, store: RecordStore) -> TokenPair:
        """Verify a refresh token and mint a new pair.

        The referenced user must still exist and be active. Claims are copied
        from the presented token unless refresh_reresolve_roles is set, in which
        case they are rebuilt from current memberships.

        Any failure raises InvalidRefreshTokenError.
        """
        try:
            caller = self.verify_refresh(refresh_token)
            user = store.get_by_id(caller.user_id)
            if user is None or not user.is_active:
                raise UserNotFoundError()
            claims = caller.claims
            if self._settings.refresh_reresolve_roles:
                claims = current_claims(store, caller.user_id)
        except AppError as exc:
            logger.info("Refresh rejected: %s", exc.code)
            raise InvalidRefreshTokenError() from exc
        return self.issue(caller.user_id, claims)


def current_claims(store: RecordStore, user_id: int) -> list[RoleClaim]:
    """Build role claims from the user's live memberships."""
    return [
        RoleClaim(organization_id=m.organization.id, role=m.role)
        for m in store.list_user_organizations(user_id)
        if m.role is not None
    ]


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_refresh_cookie(response, token: str, settings: Settings | None = None) -> None:
    """Write the refresh token as an httpOnly, SameSite=strict cookie.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="strict": never sent on cross-site requests (CSRF mitigation for
        the refresh endpoint, which acts on cookie alone).
    secure: forced on outside debug mode (see core.config).
    max_age: matches the refresh token expiry so both expire together.
    """
    settings = settings or get_settings()
    response.set_cookie(
        REFRESH_COOKIE_NAME,
        value=token,
        httponly=True,
        samesite="strict",
        secure=settings.secure_cookies,
        max_age=settings.refresh_token_expire_seconds,
    )


def clear_refresh_cookie(response, settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    response.delete_cookie(
        REFRESH_COOKIE_NAME,
        httponly=True,
        samesite="strict",
        secure=settings.secure_cookies,
    )
