"""Unit tests for the document table layout."""

import pytest
from sqlalchemy import MetaData
from sqlalchemy.dialects.postgresql.base import PGDialect
from sqlalchemy.schema import CreateIndex, CreateTable

from megajob.core.exceptions import ValidationError
from megajob.docstore.schema import COLLECTIONS, define_collections, document_table


class TestDocumentTable:
    """Test per-collection table definitions."""

    def test_columns(self):
        table = document_table("companies", MetaData())
        assert [column.name for column in table.columns] == ["id", "data", "created_at", "updated_at"]
        assert table.c.id.primary_key

        ddl = str(CreateTable(table).compile(dialect=PGDialect()))
        assert "JSONB NOT NULL" in ddl
        assert "TIMESTAMP WITH TIME ZONE NOT NULL" in ddl

    def test_table_is_defined_once_per_metadata(self):
        metadata = MetaData()
        assert document_table("jobs", metadata) is document_table("jobs", metadata)

    def test_expression_indexes(self):
        table = document_table("otps", MetaData())
        names = {index.name for index in table.indexes}
        assert names == {"idx_otps_email", "idx_otps_expires_at"}

        index = next(index for index in table.indexes if index.name == "idx_otps_email")
        ddl = str(CreateIndex(index).compile(dialect=PGDialect()))
        assert "->>" in ddl

    def test_created_at_index(self):
        names = {index.name for index in document_table("jobs", MetaData()).indexes}
        assert "idx_jobs_created_at" in names
        assert "idx_jobs_approval_status" in names

    def test_unindexed_collection(self):
        assert not document_table("blogs", MetaData()).indexes

    @pytest.mark.parametrize("name", ["", "1jobs", "jobs; DROP TABLE users", "my-table", None])
    def test_rejects_unsafe_names(self, name):
        with pytest.raises(ValidationError):
            document_table(name, MetaData())


def test_define_collections_covers_every_collection():
    metadata = MetaData()
    tables = define_collections(metadata)
    assert set(tables) == set(COLLECTIONS)
    assert len(metadata.tables) == len(COLLECTIONS)
