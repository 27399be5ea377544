"""Unit tests for the sort compiler."""

from datetime import datetime, timedelta, timezone

from sqlalchemy import MetaData

from megajob.docstore.schema import document_table
from megajob.docstore.sorting import SortOrder, compile_sort


class TestCompileSort:
    """Test sort specification compilation."""

    def test_empty_spec_means_no_order(self):
        assert compile_sort(None) is None
        assert compile_sort({}) is None

    def test_only_first_key_is_used(self):
        assert compile_sort({"createdAt": -1, "title": 1}) == SortOrder("createdAt", descending=True)

    def test_non_numeric_direction_is_ascending(self):
        assert compile_sort({"title": "desc"}) == SortOrder("title", descending=False)
        assert compile_sort({"title": "-1"}) == SortOrder("title", descending=True)

    def test_timestamp_aliases(self):
        assert compile_sort({"createdAt": 1}).timestamp_column == "created_at"
        assert compile_sort({"updated_at": 1}).timestamp_column == "updated_at"
        assert compile_sort({"title": 1}).timestamp_column is None

    def test_renders_order_by_element(self, compile_sql):
        table = document_table("jobs", MetaData())
        sql, _ = compile_sql(compile_sort({"updatedAt": -1}).to_clause(table))
        assert sql == "jobs.updated_at DESC"

        sql, params = compile_sql(compile_sort({"title": 1}).to_clause(table))
        assert "jobs.data ->>" in sql
        assert sql.endswith("ASC")
        assert "title" in params.values()


class TestSortApply:
    """Test in-memory ordering."""

    def test_timestamp_order(self):
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        documents = [{"n": i, "updated_at": base + timedelta(minutes=m)} for i, m in enumerate([5, 1, 3])]

        descending = compile_sort({"updatedAt": -1}).apply(documents)
        ascending = compile_sort({"updatedAt": 1}).apply(documents)

        assert [doc["n"] for doc in descending] == [0, 2, 1]
        assert [doc["n"] for doc in ascending] == [1, 2, 0]

    def test_missing_values_placement(self):
        documents = [{"n": 0, "title": "b"}, {"n": 1}, {"n": 2, "title": "a"}]

        assert [doc["n"] for doc in compile_sort({"title": 1}).apply(documents)] == [2, 0, 1]
        assert [doc["n"] for doc in compile_sort({"title": -1}).apply(documents)] == [1, 0, 2]

    def test_ties_keep_original_order(self):
        documents = [{"n": 0, "tier": "gold"}, {"n": 1, "tier": "gold"}, {"n": 2, "tier": "basic"}]
        ordered = compile_sort({"tier": 1}).apply(documents)
        assert [doc["n"] for doc in ordered] == [2, 0, 1]
