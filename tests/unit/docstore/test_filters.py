"""Unit tests for the filter compiler."""

import re
from datetime import datetime, timezone

import pytest
from sqlalchemy import MetaData

from megajob.core.exceptions import UnsupportedFilterError
from megajob.docstore.filters import (
    And,
    Equality,
    IdentityEquals,
    NotEqual,
    Or,
    Pattern,
    Range,
    SetMembership,
    compile_filter,
    matches,
    render_filter,
)
from megajob.docstore.schema import document_table


@pytest.fixture
def jobs_table():
    return document_table("jobs", MetaData())


class TestCompileFilter:
    """Test filter compilation into expression trees."""

    def test_absent_and_empty_filters_are_empty(self):
        assert compile_filter(None).is_empty
        assert compile_filter({}).is_empty

    def test_identity_uses_id_column(self):
        expression = compile_filter({"_id": "abc"})
        assert expression.clauses == (IdentityEquals("abc"),)

    def test_plain_id_key_is_an_alias(self):
        expression = compile_filter({"id": 42})
        assert expression.clauses == (IdentityEquals("42"),)

    def test_underscore_id_wins_over_id(self):
        expression = compile_filter({"_id": "a", "id": "b"})
        assert expression.clauses == (IdentityEquals("a"),)

    def test_scalar_equality_is_textual(self):
        expression = compile_filter({"salary": 5, "remote": True, "title": "Dev"})
        assert expression.clauses == (
            Equality("salary", "5"),
            Equality("remote", "true"),
            Equality("title", "Dev"),
        )

    def test_null_values_add_no_clause(self):
        assert compile_filter({"status": None}).is_empty

    def test_regex_becomes_pattern(self):
        expression = compile_filter({"name": re.compile("acme")})
        assert expression.clauses == (Pattern("name", "acme"),)

    def test_gte_takes_precedence_over_gt(self):
        expression = compile_filter({"score": {"$gt": 1, "$gte": 2}})
        assert expression.clauses == (Range("score", "$gte", "2"),)

    def test_timestamp_range_bound_is_parsed(self):
        expression = compile_filter({"created_at": {"$gte": "2024-01-01T00:00:00Z"}})
        (clause,) = expression.clauses
        assert clause.on_timestamp
        assert clause.value == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_ne_and_in(self):
        assert compile_filter({"status": {"$ne": "closed"}}).clauses == (NotEqual("status", "closed"),)
        assert compile_filter({"tier": {"$in": ["gold", 1]}}).clauses == (
            SetMembership("tier", ("gold", "1")),
        )

    def test_or_compiles_to_branches(self):
        expression = compile_filter({"$or": [{"email": "a@x.io"}, {"phone": "555"}], "status": "active"})
        or_clause, status = expression.clauses
        assert isinstance(or_clause, Or)
        assert or_clause.clauses == (
            And((Equality("email", "a@x.io"),)),
            And((Equality("phone", "555"),)),
        )
        assert status == Equality("status", "active")

    def test_empty_or_adds_no_clause(self):
        assert compile_filter({"$or": []}).is_empty

    def test_or_branches_without_clauses_are_dropped(self):
        assert compile_filter({"$or": [{}]}).is_empty
        assert compile_filter({"$or": [{"email": None}, {"_id": None}]}).is_empty

        expression = compile_filter({"$or": [{}, {"status": "active"}]})
        assert expression.clauses == (Or((And((Equality("status", "active"),)),)),)

    @pytest.mark.parametrize(
        "filter_",
        [
            {"score": {"$lt": 3}},
            {"score": {"$gte": 1, "$exists": True}},
            {"address": {"city": "Kathmandu"}},
            {"tags": ["a", "b"]},
            {"tier": {"$in": "gold"}},
            {"score": {"$gte": None}},
            {"score": {}},
            {"created_at": {"$gte": "not a date"}},
            {"$and": [{"a": 1}]},
            {"$or": [{"$or": [{"a": 1}]}]},
            {"$or": {"a": 1}},
            {"$or": ["a"]},
        ],
    )
    def test_unsupported_shapes_raise(self, filter_):
        with pytest.raises(UnsupportedFilterError):
            compile_filter(filter_)

    def test_non_mapping_filter_raises(self):
        with pytest.raises(UnsupportedFilterError):
            compile_filter("status = 'active'")


class TestRenderFilter:
    """Test SQL rendering of compiled filters."""

    def test_empty_filter_renders_nothing(self, jobs_table):
        assert render_filter({}, jobs_table) == ("", [])
        assert render_filter({"$or": [{}]}, jobs_table) == ("", [])
        assert render_filter({"$or": [{"email": None}]}, jobs_table) == ("", [])

    def test_equality_uses_textual_projection_and_positional_params(self, jobs_table):
        sql, params = render_filter({"status": "open"}, jobs_table)
        assert "jobs.data ->> $1" in sql
        assert "$2" in sql
        assert params == ["status", "open"]

    def test_identity_targets_id_column(self, jobs_table):
        sql, params = render_filter({"_id": "j1"}, jobs_table)
        assert sql == "jobs.id = $1"
        assert params == ["j1"]

    def test_timestamp_range_targets_physical_column(self, jobs_table):
        sql, params = render_filter({"created_at": {"$gt": "2024-01-01T00:00:00Z"}}, jobs_table)
        assert sql == "jobs.created_at > $1"
        assert params == [datetime(2024, 1, 1, tzinfo=timezone.utc)]

    def test_pattern_escapes_like_wildcards(self, jobs_table):
        sql, params = render_filter({"name": re.compile("50%_off")}, jobs_table)
        assert "ILIKE" in sql
        assert "%50/%/_off%" in params

    def test_empty_in_never_matches(self, jobs_table):
        sql, params = render_filter({"tier": {"$in": []}}, jobs_table)
        assert sql == "false"
        assert params == []

    def test_in_renders_alternatives(self, jobs_table):
        sql, params = render_filter({"tier": {"$in": ["gold", "silver"]}}, jobs_table)
        assert " OR " in sql
        assert "gold" in params and "silver" in params

    def test_clauses_are_conjoined(self, jobs_table):
        sql, _ = render_filter({"status": "open", "tier": {"$ne": "free"}}, jobs_table)
        assert " AND " in sql
        assert "!=" in sql

    def test_or_is_grouped_inside_and(self, jobs_table, compile_sql):
        expression = compile_filter({"$or": [{"a": "1"}, {"b": "2"}], "c": "3"})
        sql, _ = compile_sql(expression.to_clause(jobs_table))
        assert sql.startswith("(")
        assert ") AND" in sql


class TestMatches:
    """Test in-memory evaluation of filters."""

    def test_empty_filter_matches_everything(self):
        assert matches({}, {"anything": 1})

    def test_equality_compares_text(self):
        assert matches({"salary": 5}, {"salary": 5})
        assert matches({"salary": "5"}, {"salary": 5})
        assert not matches({"salary": 5}, {"salary": 6})
        assert not matches({"salary": 5}, {})

    def test_identity(self):
        assert matches({"_id": "a"}, {"_id": "a"})
        assert not matches({"_id": "a"}, {"_id": "b"})

    def test_pattern_is_case_insensitive_substring(self):
        assert matches({"name": re.compile("ACME")}, {"name": "The Acme Corp"})
        assert not matches({"name": re.compile("ac.e")}, {"name": "Acme"})

    def test_ne_excludes_missing_fields(self):
        assert matches({"status": {"$ne": "closed"}}, {"status": "open"})
        assert not matches({"status": {"$ne": "closed"}}, {"status": "closed"})
        assert not matches({"status": {"$ne": "closed"}}, {})

    def test_empty_in_matches_nothing(self):
        assert not matches({"tier": {"$in": []}}, {"tier": None})
        assert not matches({"tier": {"$in": []}}, {})
        assert not matches({"tier": {"$in": []}}, {"tier": "gold"})

    def test_timestamp_range(self):
        document = {"created_at": datetime(2024, 3, 1, tzinfo=timezone.utc)}
        assert matches({"created_at": {"$gte": "2024-03-01T00:00:00Z"}}, document)
        assert not matches({"created_at": {"$gt": "2024-03-01T00:00:00Z"}}, document)
        assert not matches({"created_at": {"$gte": "2024-01-01T00:00:00Z"}}, {})

    def test_or_alternatives(self):
        filter_ = {"$or": [{"status": "active"}, {"status": "pending"}]}
        assert matches(filter_, {"status": "pending"})
        assert not matches(filter_, {"status": "rejected"})
