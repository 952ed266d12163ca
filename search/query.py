"""
search/query.py -- Typed building blocks for member search statements.

Nothing in here accepts SQL text from a caller. Searchable fields and
sortable columns are closed tables of SQLAlchemy column expressions; a
request can only pick entries from them by name. Free text only ever
reaches the database as a bound parameter.

Pieces:
  tokenize()        split + lowercase + drop short tokens
  Predicate         (field, operator, value) -> boolean column expression
  match_clause()    AND over tokens of OR over fields
  resolve_sort()    sort key + direction -> ORDER BY list (allow-listed)
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from sqlalchemy import and_, func, literal, or_
from sqlalchemy.sql.elements import ColumnElement

from auth.store import organization_user, organizations, users
from core.errors import ValidationError

# ---------------------------------------------------------------------------
# Searchable fields
# ---------------------------------------------------------------------------

_FULL_NAME = func.coalesce(users.c.first_name, "") + " " + func.coalesce(users.c.last_name, "")

SEARCH_FIELDS: dict[str, ColumnElement] = {
    "first_name": users.c.first_name,
    "last_name": users.c.last_name,
    "full_name": _FULL_NAME,
    "email": users.c.email,
    "phone": users.c.phone,
    "city": users.c.city,
    "street": users.c.street,
    "house_number": users.c.house_number,
    "postal_code": users.c.postal_code,
    "tax_id": users.c.tax_id,
}


def tokenize(query: str | None, min_token_length: int = 2) -> list[str]:
    """Lowercase and split on whitespace, keeping tokens of min_token_length or more."""
    if not query:
        return []
    return [t for t in query.strip().lower().split() if len(t) >= min_token_length]


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _fold(expr: ColumnElement, accent_folding: bool) -> ColumnElement:
    return func.unaccent(expr) if accent_folding else expr


class Operator(str, Enum):
    contains = "contains"  # case-insensitive substring
    similar = "similar"  # pg_trgm similarity() above a threshold


@dataclass(frozen=True)
class Predicate:
    field: str
    operator: Operator
    value: str

    def __post_init__(self) -> None:
        if self.field not in SEARCH_FIELDS:
            raise ValueError(f"Unknown search field: {self.field!r}")

    def compile(self, accent_folding: bool = False, threshold: float = 0.3) -> ColumnElement:
        column = _fold(func.lower(func.coalesce(SEARCH_FIELDS[self.field], "")), accent_folding)
        if self.operator is Operator.contains:
            pattern = _fold(literal(f"%{_escape_like(self.value)}%"), accent_folding)
            return column.ilike(pattern, escape="\\")
        return func.similarity(column, _fold(literal(self.value), accent_folding)) > threshold


def token_predicates(token: str, fuzzy: bool = False, fuzzy_min_length: int = 3) -> list[Predicate]:
    """All predicates that let one token match a record."""
    predicates = [Predicate(name, Operator.contains, token) for name in SEARCH_FIELDS]
    if fuzzy and len(token) >= fuzzy_min_length:
        predicates.extend(Predicate(name, Operator.similar, token) for name in SEARCH_FIELDS)
    return predicates


def match_clause(
    tokens: list[str],
    *,
    fuzzy: bool = False,
    accent_folding: bool = False,
    threshold: float = 0.3,
    fuzzy_min_length: int = 3,
) -> ColumnElement | None:
    """Every token must match at least one field. None when there are no tokens."""
    if not tokens:
        return None
    per_token = [
        or_(*(p.compile(accent_folding, threshold) for p in token_predicates(t, fuzzy, fuzzy_min_length)))
        for t in tokens
    ]
    return and_(*per_token)


# ---------------------------------------------------------------------------
# Sorting
# ---------------------------------------------------------------------------

SORT_ALIASES: dict[str, tuple[ColumnElement, ...]] = {
    "name": (users.c.last_name, users.c.first_name),
    "address": (users.c.city, users.c.street, users.c.house_number),
    "organization": (organizations.c.name,),
}

# Literal "table.column" sort keys a caller may name.
SORT_COLUMNS: dict[str, ColumnElement] = {
    "users.id": users.c.id,
    "users.first_name": users.c.first_name,
    "users.last_name": users.c.last_name,
    "users.email": users.c.email,
    "users.phone": users.c.phone,
    "users.city": users.c.city,
    "users.street": users.c.street,
    "users.postal_code": users.c.postal_code,
    "users.created_at": users.c.created_at,
    "organizations.name": organizations.c.name,
    "organization_user.role": organization_user.c.role,
}

_COLUMN_SHAPE = re.compile(r"^[a-z_]+\.[a-z_]+$")

_TIE_BREAK: tuple[ColumnElement, ...] = (users.c.last_name, users.c.first_name, users.c.id)


def resolve_sort(sort: str | None = None, direction: str = "asc") -> list[ColumnElement]:
    """Return ORDER BY clauses for a sort key, always ending in the name/id tie-break.

    Raises ValidationError for keys outside the allow-list or a bad direction.
    """
    direction = (direction or "asc").strip().lower()
    if direction not in ("asc", "desc"):
        raise ValidationError("Sort direction must be 'asc' or 'desc'.", detail=direction)

    primary: tuple[ColumnElement, ...] = ()
    if sort:
        key = sort.strip().lower()
        if key in SORT_ALIASES:
            primary = SORT_ALIASES[key]
        elif _COLUMN_SHAPE.match(key) and key in SORT_COLUMNS:
            primary = (SORT_COLUMNS[key],)
        else:
            raise ValidationError("Unsupported sort column.", detail=sort)

    ordered = [c.desc() if direction == "desc" else c.asc() for c in primary]
    # Identity check: == on columns builds SQL instead of comparing.
    ordered.extend(c.asc() for c in _TIE_BREAK if not any(c is p for p in primary))
    return ordered
