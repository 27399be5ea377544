"""MongoDB-style document store over PostgreSQL JSONB tables."""

from typing import Union

from megajob.docstore.collection import PostgresCollection, PostgresCursor
from megajob.docstore.cursor import Cursor
from megajob.docstore.filters import compile_filter, render_filter
from megajob.docstore.memory import InMemoryCollection, InMemoryCursor, InMemoryDocumentStore
from megajob.docstore.results import DeleteResult, InsertOneResult, ReturnDocument, UpdateResult
from megajob.docstore.schema import COLLECTIONS
from megajob.docstore.sorting import ASCENDING, DESCENDING, compile_sort
from megajob.docstore.store import PostgresDocumentStore
from megajob.docstore.updates import apply_update

DocumentStore = Union[PostgresDocumentStore, InMemoryDocumentStore]

__all__ = [
    "ASCENDING",
    "COLLECTIONS",
    "DESCENDING",
    "Cursor",
    "DeleteResult",
    "DocumentStore",
    "InMemoryCollection",
    "InMemoryCursor",
    "InMemoryDocumentStore",
    "InsertOneResult",
    "PostgresCollection",
    "PostgresCursor",
    "PostgresDocumentStore",
    "ReturnDocument",
    "UpdateResult",
    "apply_update",
    "compile_filter",
    "compile_sort",
    "render_filter",
]
