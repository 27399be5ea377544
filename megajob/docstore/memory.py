"""In-process document store.

Used as the development fallback when PostgreSQL is unreachable and as a
test double. Documents are kept in their JSON storage form and rehydrated on
read, and matching goes through the same filter, sort and update modules as
the PostgreSQL backend, so both stores answer queries identically. Nothing is
persisted.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from megajob.core.exceptions import InvalidDocumentError
from megajob.docstore.cursor import Cursor
from megajob.docstore.documents import (
    Clock,
    Document,
    apply_projection,
    hydrate_document,
    prepare_new_document,
    to_storage,
    utc_now,
)
from megajob.docstore.filters import And, compile_filter
from megajob.docstore.results import DeleteResult, InsertOneResult, ReturnDocument, UpdateResult
from megajob.docstore.schema import COLLECTIONS, validate_collection_name
from megajob.docstore.updates import apply_update, column_timestamps, set_patch, validate_update
from megajob.utils.logging import get_logger

LOGGER = get_logger(__name__)


@dataclass
class _Row:
    id: str
    data: Dict[str, Any]
    created_at: datetime
    updated_at: datetime

    def hydrate(self) -> Document:
        return hydrate_document(self.data, self.id, self.created_at, self.updated_at)


class InMemoryCollection:
    """Collection backed by an insertion-ordered dict of rows."""

    def __init__(self, name: str, rows: Dict[str, _Row], clock: Clock = utc_now):
        self.name = name
        self.rows = rows
        self.clock = clock

    def _matching(self, expression: And) -> List[_Row]:
        return [row for row in self.rows.values() if expression.matches(row.hydrate())]

    def _first(self, expression: And) -> Optional[_Row]:
        for row in self.rows.values():
            if expression.matches(row.hydrate()):
                return row
        return None

    async def find_one(
        self,
        filter: Optional[Mapping[str, Any]] = None,
        projection: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Document]:
        row = self._first(compile_filter(filter))
        if row is None:
            return None
        return apply_projection(row.hydrate(), projection)

    async def count_documents(self, filter: Optional[Mapping[str, Any]] = None) -> int:
        return len(self._matching(compile_filter(filter)))

    def _insert(self, document: Mapping[str, Any]) -> _Row:
        identity, prepared, created_at, updated_at = prepare_new_document(document, self.clock())
        if identity in self.rows:
            raise InvalidDocumentError(f"Duplicate _id {identity!r} in collection {self.name}")
        row = _Row(identity, to_storage(prepared), created_at, updated_at)
        self.rows[identity] = row
        return row

    async def insert_one(self, document: Mapping[str, Any]) -> InsertOneResult:
        return InsertOneResult(inserted_id=self._insert(document).id)

    def _update_first(self, filter: Optional[Mapping[str, Any]], update: Mapping[str, Any]):
        expression = compile_filter(filter)
        validate_update(update)
        patch = to_storage(set_patch(update, now=self.clock()))
        columns = column_timestamps(patch)
        row = self._first(expression)
        if row is None:
            return None, None

        before = row.hydrate()
        row.data = {**row.data, **patch}
        for column, value in columns.items():
            setattr(row, column, value)
        return before, row.hydrate()

    async def update_one(self, filter: Optional[Mapping[str, Any]], update: Mapping[str, Any]) -> UpdateResult:
        before, _ = self._update_first(filter, update)
        if before is None:
            return UpdateResult(matched_count=0, modified_count=0)
        return UpdateResult(matched_count=1, modified_count=1)

    async def find_one_and_update(
        self,
        filter: Optional[Mapping[str, Any]],
        update: Mapping[str, Any],
        *,
        upsert: bool = False,
        return_document: ReturnDocument = ReturnDocument.AFTER,
    ) -> Optional[Document]:
        before, after = self._update_first(filter, update)
        if before is not None:
            return before if return_document == ReturnDocument.BEFORE else after

        if not upsert:
            return None

        row = self._insert(apply_update({}, update, now=self.clock(), is_insert=True))
        if return_document == ReturnDocument.BEFORE:
            return None
        return row.hydrate()

    async def delete_one(self, filter: Optional[Mapping[str, Any]]) -> DeleteResult:
        row = self._first(compile_filter(filter))
        if row is None:
            return DeleteResult(deleted_count=0)
        del self.rows[row.id]
        return DeleteResult(deleted_count=1)

    async def delete_many(self, filter: Optional[Mapping[str, Any]]) -> DeleteResult:
        expression = compile_filter(filter)
        if expression.is_empty:
            LOGGER.warning(f"Refusing delete_many on {self.name} without a filter")
            return DeleteResult(deleted_count=0)
        doomed = self._matching(expression)
        for row in doomed:
            del self.rows[row.id]
        return DeleteResult(deleted_count=len(doomed))

    def find(self, filter: Optional[Mapping[str, Any]] = None) -> "InMemoryCursor":
        return InMemoryCursor(self, compile_filter(filter))


class InMemoryCursor(Cursor):
    def __init__(self, collection: InMemoryCollection, expression: And):
        super().__init__(expression)
        self.collection = collection

    async def _fetch(self) -> List[Document]:
        documents = [row.hydrate() for row in self.collection._matching(self.expression)]
        if self.sort_order is not None:
            documents = self.sort_order.apply(documents)
        documents = documents[self.skip_count:]
        if self.limit_count is not None:
            documents = documents[: self.limit_count]
        return [apply_projection(document, self.projection) for document in documents]


class InMemoryDocumentStore:
    """Document store kept in process memory; data is lost on restart."""

    is_persistent = False

    def __init__(self, clock: Clock = utc_now):
        self.clock = clock
        self._collections: Dict[str, Dict[str, _Row]] = {}

    def collection(self, name: str) -> InMemoryCollection:
        validate_collection_name(name)
        rows = self._collections.setdefault(name, {})
        return InMemoryCollection(name, rows, clock=self.clock)

    def __getitem__(self, name: str) -> InMemoryCollection:
        return self.collection(name)

    async def ping(self) -> None:
        return None

    async def ensure_schema(self, collections: Sequence[str] = COLLECTIONS) -> None:
        LOGGER.info("Skipping schema creation in in-memory mode")

    async def close(self) -> None:
        self._collections.clear()
