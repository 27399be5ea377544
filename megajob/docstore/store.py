"""PostgreSQL document store: hands out collections over one async engine."""

from typing import Dict, Sequence

from sqlalchemy import MetaData, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from megajob.docstore.collection import PostgresCollection
from megajob.docstore.documents import Clock, utc_now
from megajob.docstore.schema import COLLECTIONS, define_collections, document_table
from megajob.utils.logging import get_logger

LOGGER = get_logger(__name__)


class PostgresDocumentStore:
    """Document store whose collections live in PostgreSQL tables.

    The engine (and its connection pool) is owned by the caller; the store
    only borrows connections for single statements.
    """

    is_persistent = True

    def __init__(self, engine: AsyncEngine, clock: Clock = utc_now):
        self.engine = engine
        self.clock = clock
        self.metadata = MetaData()
        self._collections: Dict[str, PostgresCollection] = {}

    def collection(self, name: str) -> PostgresCollection:
        if name not in self._collections:
            table = document_table(name, self.metadata)
            self._collections[name] = PostgresCollection(self.engine, table, clock=self.clock)
        return self._collections[name]

    def __getitem__(self, name: str) -> PostgresCollection:
        return self.collection(name)

    async def ping(self) -> None:
        """Run ``SELECT 1``; raises if the database is unreachable."""
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def ensure_schema(self, collections: Sequence[str] = COLLECTIONS) -> None:
        """Create missing collection tables together with their indexes."""
        define_collections(self.metadata, collections)
        tables = [self.metadata.tables[name] for name in collections]
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(self.metadata.create_all, tables=tables)
            LOGGER.info(f"Document tables ensured: {len(tables)} collection(s)")
        except (SQLAlchemyError, OSError) as e:
            LOGGER.error(
                "Failed to create document tables",
                exc_info=True,
                extra={"error": str(e)},
            )
            raise

    async def close(self) -> None:
        await self.engine.dispose()
        LOGGER.info("Document store engine disposed")
