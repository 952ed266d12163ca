"""
search/engine.py -- Organization-scoped member search.

Flow for one search() call:

  1. Page size clamped, page bounded, offset derived from the 1-based page.
  2. A query of fewer than search_min_query_length trimmed characters returns
     an empty result with a message. An absent query lists instead.
  3. client/farmer callers take the self-search path: their own record is
     matched in memory and the general query never runs.
  4. Everyone else is restricted to allowed_search_roles() in the acting
     organization. Tokens become an AND of per-token OR predicates.
  5. Two reads: COUNT(DISTINCT users.id), then the ordered page.

Fuzzy matching (pg_trgm) and accent folding (unaccent) are used only when the
capability probe reports them. If a statement using them fails anyway, the
features are marked unsupported and the search is retried without them. A
failure of the plain statement propagates.
"""

from __future__ import annotations

import logging
import math
import unicodedata
from dataclasses import dataclass, field

from sqlalchemy import distinct, func, select
from sqlalchemy.exc import DBAPIError

from auth.access import allowed_search_roles
from auth.models import User
from auth.store import RecordStore, organization_user, organizations, row_to_user, users
from cache.capabilities import CapabilityProbe, Feature
from core.config import Settings, get_settings
from core.errors import ValidationError
from core.roles import CUSTOMER_ROLES, Role, parse_role
from search.query import match_clause, resolve_sort, tokenize

logger = logging.getLogger("farmvet.search")

QUERY_TOO_SHORT = "Search query must be at least {n} characters long."

# Characters unicodedata does not decompose into base letter + accent.
_FOLD_TABLE = str.maketrans({"ł": "l", "Ł": "L", "đ": "d", "Đ": "D", "ø": "o", "Ø": "O", "ß": "ss"})


@dataclass
class SearchRequest:
    organization_id: int
    caller_user_id: int
    caller_role: Role | None
    query: str | None = None
    roles: list[Role] = field(default_factory=list)
    page: int = 1
    limit: int | None = None
    sort: str | None = None
    direction: str = "asc"


@dataclass
class SearchHit:
    user: User
    role: Role | None


@dataclass
class Pagination:
    total: int
    limit: int
    offset: int
    pages: int


@dataclass
class SearchResult:
    hits: list[SearchHit]
    pagination: Pagination
    message: str | None = None


def fold_text(value: str) -> str:
    """Lowercase and strip diacritics, the in-process counterpart of unaccent(lower(x))."""
    decomposed = unicodedata.normalize("NFKD", value.translate(_FOLD_TABLE))
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).lower()


def _pagination(total: int, limit: int, offset: int) -> Pagination:
    return Pagination(total=total, limit=limit, offset=offset, pages=math.ceil(total / limit) if total else 0)


class SearchEngine:
    """Runs member searches against the record store.

    Usage:
        engine = SearchEngine(store, CapabilityProbe(store.engine, CapabilityCache()))
        result = engine.search(SearchRequest(organization_id=7, caller_user_id=1,
                                             caller_role=Role.owner, query="kowal"))
    """

    def __init__(self, store: RecordStore, probe: CapabilityProbe, settings: Settings | None = None) -> None:
        self._store = store
        self._probe = probe
        self._settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def search(self, request: SearchRequest) -> SearchResult:
        s = self._settings
        limit = min(max(request.limit or s.search_default_page_size, 1), s.search_max_page_size)
        page = max(request.page or 1, 1)
        if page > s.search_max_page:
            raise ValidationError(f"Page must be at most {s.search_max_page}.")
        offset = (page - 1) * limit

        query = request.query.strip() if request.query else None
        if request.query and len(query) < s.search_min_query_length:
            return SearchResult(
                hits=[],
                pagination=_pagination(0, limit, offset),
                message=QUERY_TOO_SHORT.format(n=s.search_min_query_length),
            )

        tokens = tokenize(query, s.search_min_token_length)

        if request.caller_role in CUSTOMER_ROLES:
            return self._self_search(request, tokens, limit, offset)

        roles = allowed_search_roles(request.caller_role, request.roles)
        if not roles:
            return SearchResult(hits=[], pagination=_pagination(0, limit, offset))

        order_by = resolve_sort(request.sort, request.direction)

        fuzzy = bool(tokens) and self._probe.is_supported(Feature.fuzzy)
        folding = bool(tokens) and self._probe.is_supported(Feature.accent_folding)
        try:
            total, hits = self._run(request.organization_id, roles, tokens, order_by, limit, offset, fuzzy, folding)
        except DBAPIError as exc:
            if not (fuzzy or folding):
                raise
            logger.warning("Search with optional operators failed; retrying without them", exc_info=True)
            if fuzzy:
                self._probe.mark_unsupported(Feature.fuzzy, str(exc.orig))
            if folding:
                self._probe.mark_unsupported(Feature.accent_folding, str(exc.orig))
            total, hits = self._run(request.organization_id, roles, tokens, order_by, limit, offset, False, False)

        return SearchResult(hits=hits, pagination=_pagination(total, limit, offset))

    # ------------------------------------------------------------------
    # General search
    # ------------------------------------------------------------------

    def _run(self, organization_id, roles, tokens, order_by, limit, offset, fuzzy, folding):
        s = self._settings
        source = users.join(organization_user, organization_user.c.user_id == users.c.id).join(
            organizations, organizations.c.id == organization_user.c.organization_id
        )
        conditions = [
            organization_user.c.organization_id == organization_id,
            func.lower(organization_user.c.role).in_(sorted(r.value for r in roles)),
        ]
        match = match_clause(
            tokens,
            fuzzy=fuzzy,
            accent_folding=folding,
            threshold=s.search_fuzzy_threshold,
            fuzzy_min_length=s.search_fuzzy_min_token_length,
        )
        if match is not None:
            conditions.append(match)

        count_stmt = select(func.count(distinct(users.c.id))).select_from(source).where(*conditions)
        page_stmt = (
            select(users, organization_user.c.role.label("member_role"))
            .select_from(source)
            .where(*conditions)
            .order_by(*order_by)
            .limit(limit)
            .offset(offset)
        )
        with self._store.engine.connect() as conn:
            total = conn.execute(count_stmt).scalar() or 0
            rows = conn.execute(page_stmt).fetchall()

        logger.debug(
            "Search org=%s roles=%s tokens=%d fuzzy=%s folding=%s -> %d",
            organization_id,
            ",".join(sorted(r.value for r in roles)),
            len(tokens),
            fuzzy,
            folding,
            total,
        )
        hits = [SearchHit(user=row_to_user(r), role=parse_role(r.member_role)) for r in rows]
        return total, hits

    # ------------------------------------------------------------------
    # Self-search
    # ------------------------------------------------------------------

    def _self_search(self, request: SearchRequest, tokens: list[str], limit: int, offset: int) -> SearchResult:
        """Return the caller's own record if it matches every token, else nothing."""
        user = self._store.get_by_id(request.caller_user_id)
        if user is None or not self._self_matches(user, tokens):
            return SearchResult(hits=[], pagination=_pagination(0, limit, offset))
        hits = [SearchHit(user=user, role=request.caller_role)] if offset == 0 else []
        return SearchResult(hits=hits, pagination=_pagination(1, limit, offset))

    @staticmethod
    def _self_matches(user: User, tokens: list[str]) -> bool:
        haystacks = [fold_text(v) for v in (user.first_name, user.last_name, user.email, user.full_name) if v]
        return all(any(fold_text(t) in h for h in haystacks) for t in tokens)

