"""Unit tests for search/query.py -- tokenizer, predicates, sort allow-list.

Statements are compiled against the PostgreSQL dialect to check which
operators appear; nothing here touches a database.
"""

import pytest
from sqlalchemy.dialects import postgresql

from core.errors import ValidationError
from search.query import SEARCH_FIELDS, Operator, Predicate, match_clause, resolve_sort, token_predicates, tokenize


def _sql(clause) -> str:
    return str(clause.compile(dialect=postgresql.dialect()))


def _order_sql(clauses) -> list[str]:
    return [_sql(c) for c in clauses]


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------


def test_tokenize_lowercases_and_drops_short_tokens():
    assert tokenize("  Jan  KOWALSKI x ") == ["jan", "kowalski"]


def test_tokenize_empty():
    assert tokenize(None) == []
    assert tokenize("   ") == []
    assert tokenize("a b c") == []


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------


def test_every_field_is_searched_per_token():
    fields = {p.field for p in token_predicates("kowal")}
    assert fields == set(SEARCH_FIELDS)
    assert {"first_name", "last_name", "full_name", "email", "phone", "city", "tax_id"} <= fields


def test_fuzzy_predicates_only_for_long_tokens():
    assert all(p.operator is Operator.contains for p in token_predicates("ab", fuzzy=True))
    ops = {p.operator for p in token_predicates("kow", fuzzy=True)}
    assert ops == {Operator.contains, Operator.similar}


def test_unknown_field_is_rejected():
    with pytest.raises(ValueError):
        Predicate("password", Operator.contains, "x")


def test_contains_predicate_binds_escaped_pattern():
    clause = Predicate("email", Operator.contains, "50%_off").compile()
    compiled = clause.compile(dialect=postgresql.dialect())
    assert "ILIKE" in str(compiled)
    assert "50%_off" not in str(compiled)
    assert "%50\\%\\_off%" in compiled.params.values()


def test_accent_folding_wraps_both_sides():
    sql = _sql(Predicate("city", Operator.contains, "lodz").compile(accent_folding=True))
    assert sql.count("unaccent(") == 2


def test_similarity_predicate_uses_threshold():
    compiled = Predicate("last_name", Operator.similar, "kowalsky").compile(threshold=0.3).compile(
        dialect=postgresql.dialect()
    )
    assert "similarity(" in str(compiled)
    assert 0.3 in compiled.params.values()


def test_match_clause_ands_tokens():
    sql = _sql(match_clause(["jan", "kowal"]))
    assert " AND " in sql
    assert sql.count("ILIKE") == 2 * len(SEARCH_FIELDS)
    assert "similarity" not in sql


def test_match_clause_without_tokens_is_none():
    assert match_clause([]) is None


# ---------------------------------------------------------------------------
# Sorting
# ---------------------------------------------------------------------------


def test_default_sort_is_name_then_id():
    assert _order_sql(resolve_sort()) == ["users.last_name ASC", "users.first_name ASC", "users.id ASC"]


def test_sort_alias_with_direction():
    assert _order_sql(resolve_sort("address", "DESC"))[:3] == [
        "users.city DESC",
        "users.street DESC",
        "users.house_number DESC",
    ]


def test_name_alias_does_not_repeat_tie_break():
    assert _order_sql(resolve_sort("name", "desc")) == ["users.last_name DESC", "users.first_name DESC", "users.id ASC"]


def test_literal_column_from_allow_list():
    assert _order_sql(resolve_sort("organizations.name"))[0] == "organizations.name ASC"


@pytest.mark.parametrize(
    "sort",
    ["users.password", "pg_sleep(10)", "users.id; DROP TABLE users", "last_name", "Users.Email DESC"],
)
def test_sort_outside_allow_list_is_rejected(sort):
    with pytest.raises(ValidationError):
        resolve_sort(sort)


def test_bad_direction_is_rejected():
    with pytest.raises(ValidationError):
        resolve_sort("name", "sideways")
