"""PostgreSQL-backed document collection.

Each collection issues SQLAlchemy Core statements against one document table
through a shared :class:`~sqlalchemy.ext.asyncio.AsyncEngine`. Every public
operation is a single statement; driver errors are logged and re-raised
unchanged.
"""

from typing import Any, List, Mapping, Optional

from sqlalchemy import Table, bindparam, delete, func, insert, select, update
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.sql import Select

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
from megajob.docstore.updates import apply_update, column_timestamps, set_patch, validate_update
from megajob.utils.logging import get_logger

LOGGER = get_logger(__name__)


class PostgresCollection:
    """Document collection stored in a single PostgreSQL table."""

    def __init__(self, engine: AsyncEngine, table: Table, clock: Clock = utc_now):
        """Initialize the collection.

        Args:
            engine: Shared async engine (owns the asyncpg pool)
            table: Document table from :func:`megajob.docstore.schema.document_table`
            clock: Source of "now" for timestamps
        """
        self.engine = engine
        self.table = table
        self.name = table.name
        self.clock = clock
        self.logger = LOGGER

    def _columns(self) -> Select:
        t = self.table
        return select(t.c.id, t.c.data, t.c.created_at, t.c.updated_at)

    def _where(self, statement, expression: And):
        if expression.is_empty:
            return statement
        return statement.where(expression.to_clause(self.table))

    @staticmethod
    def _hydrate(row: Mapping[str, Any], data_key: str = "data") -> Document:
        return hydrate_document(row[data_key], row["id"], row["created_at"], row["updated_at"])

    def _log_failure(self, operation: str, error: Exception) -> None:
        self.logger.error(
            f"Error during {operation} on collection {self.name}: {str(error)}",
            exc_info=True,
        )

    async def find_one(
        self,
        filter: Optional[Mapping[str, Any]] = None,
        projection: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Document]:
        """Return the first matching document or None.

        Args:
            filter: Filter specification
            projection: Optional inclusion/exclusion projection

        Returns:
            The rehydrated (and projected) document, or None if nothing matched
        """
        expression = compile_filter(filter)
        statement = self._where(self._columns(), expression).limit(1)
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(statement)
                row = result.mappings().first()
        except (SQLAlchemyError, OSError) as e:
            self._log_failure("find_one", e)
            raise

        if row is None:
            return None
        return apply_projection(self._hydrate(row), projection)

    async def count_documents(self, filter: Optional[Mapping[str, Any]] = None) -> int:
        expression = compile_filter(filter)
        statement = self._where(select(func.count()).select_from(self.table), expression)
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(statement)
                return int(result.scalar_one())
        except (SQLAlchemyError, OSError) as e:
            self._log_failure("count_documents", e)
            raise

    async def _insert(self, document: Mapping[str, Any]) -> Document:
        identity, prepared, created_at, updated_at = prepare_new_document(document, self.clock())
        stored = to_storage(prepared)
        statement = insert(self.table).values(
            id=identity,
            data=stored,
            created_at=created_at,
            updated_at=updated_at,
        )
        try:
            async with self.engine.begin() as conn:
                await conn.execute(statement)
        except (SQLAlchemyError, OSError) as e:
            self._log_failure("insert", e)
            raise

        self.logger.debug(f"Inserted document {identity} into {self.name}")
        return hydrate_document(stored, identity, created_at, updated_at)

    async def insert_one(self, document: Mapping[str, Any]) -> InsertOneResult:
        """Insert a document, generating ``_id`` when it has none.

        Returns:
            InsertOneResult carrying the document identity
        """
        inserted = await self._insert(document)
        return InsertOneResult(inserted_id=inserted["_id"])

    async def _update_first(
        self, filter: Optional[Mapping[str, Any]], update_spec: Mapping[str, Any]
    ) -> Optional[Mapping[str, Any]]:
        """Merge ``$set`` into the first matching row in one statement.

        The target row is locked by the CTE, so no concurrent writer can slip
        between the match and the rewrite.
        """
        expression = compile_filter(filter)
        validate_update(update_spec)
        t = self.table
        now = self.clock()
        patch = to_storage(set_patch(update_spec, now=now))

        target = (
            self._where(select(t.c.id, t.c.data.label("previous")), expression)
            .limit(1)
            .with_for_update()
            .cte("target")
        )
        statement = (
            update(t)
            .where(t.c.id == target.c.id)
            .values(
                data=t.c.data.op("||", return_type=JSONB)(bindparam("patch", patch, type_=JSONB)),
                **column_timestamps(patch),
            )
            .returning(t.c.id, target.c.previous, t.c.data, t.c.created_at, t.c.updated_at)
        )
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(statement)
                row = result.mappings().first()
        except (SQLAlchemyError, OSError) as e:
            self._log_failure("update", e)
            raise

        if row is not None:
            self.logger.debug(f"Updated document {row['id']} in {self.name}")
        return row

    async def update_one(self, filter: Optional[Mapping[str, Any]], update: Mapping[str, Any]) -> UpdateResult:
        row = await self._update_first(filter, update)
        if row is None:
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
        """Update the first match and return one of its snapshots.

        Args:
            filter: Filter specification
            update: ``$set`` / ``$setOnInsert`` specification
            upsert: Insert a new document when nothing matches
            return_document: Return the pre-update (BEFORE) or post-update (AFTER) document

        Returns:
            The requested snapshot; None when nothing matched and no upsert
            happened, or when BEFORE is requested for a fresh insert
        """
        row = await self._update_first(filter, update)
        if row is not None:
            if return_document == ReturnDocument.BEFORE:
                return self._hydrate(row, data_key="previous")
            return self._hydrate(row)

        if not upsert:
            return None

        inserted = await self._insert(apply_update({}, update, now=self.clock(), is_insert=True))
        if return_document == ReturnDocument.BEFORE:
            return None
        return inserted

    async def delete_one(self, filter: Optional[Mapping[str, Any]]) -> DeleteResult:
        expression = compile_filter(filter)
        t = self.table
        target_id = self._where(select(t.c.id), expression).limit(1).correlate(None).scalar_subquery()
        statement = delete(t).where(t.c.id == target_id)
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(statement)
                deleted = result.rowcount
        except (SQLAlchemyError, OSError) as e:
            self._log_failure("delete_one", e)
            raise
        return DeleteResult(deleted_count=1 if deleted else 0)

    async def delete_many(self, filter: Optional[Mapping[str, Any]]) -> DeleteResult:
        """Delete every match; an empty filter is refused and deletes nothing."""
        expression = compile_filter(filter)
        if expression.is_empty:
            self.logger.warning(f"Refusing delete_many on {self.name} without a filter")
            return DeleteResult(deleted_count=0)

        statement = self._where(delete(self.table), expression)
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(statement)
                deleted = result.rowcount
        except (SQLAlchemyError, OSError) as e:
            self._log_failure("delete_many", e)
            raise
        self.logger.debug(f"Deleted {deleted} document(s) from {self.name}")
        return DeleteResult(deleted_count=deleted or 0)

    def find(self, filter: Optional[Mapping[str, Any]] = None) -> "PostgresCursor":
        return PostgresCursor(self, compile_filter(filter))


class PostgresCursor(Cursor):
    """Cursor that materializes with a single ``SELECT``."""

    def __init__(self, collection: PostgresCollection, expression: And):
        super().__init__(expression)
        self.collection = collection

    def statement(self) -> Select:
        collection = self.collection
        statement = collection._where(collection._columns(), self.expression)
        if self.sort_order is not None:
            statement = statement.order_by(self.sort_order.to_clause(collection.table))
        if self.limit_count is not None:
            statement = statement.limit(self.limit_count)
        if self.skip_count:
            statement = statement.offset(self.skip_count)
        return statement

    async def _fetch(self) -> List[Document]:
        collection = self.collection
        try:
            async with collection.engine.connect() as conn:
                result = await conn.execute(self.statement())
                rows = result.mappings().all()
        except (SQLAlchemyError, OSError) as e:
            collection._log_failure("find", e)
            raise
        return [apply_projection(collection._hydrate(row), self.projection) for row in rows]
