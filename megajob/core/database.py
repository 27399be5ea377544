"""Document store bootstrap.

Creates the async engine from settings, connects the PostgreSQL document
store and, outside production, falls back to the in-memory store when the
database cannot be reached.
"""

from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from megajob.core.config import Settings, settings as default_settings
from megajob.core.exceptions import ConfigurationError
from megajob.docstore import DocumentStore, InMemoryDocumentStore, PostgresDocumentStore
from megajob.utils.logging import get_logger

LOGGER = get_logger(__name__)

_store: Optional[DocumentStore] = None


def create_document_engine(settings: Optional[Settings] = None) -> AsyncEngine:
    """Create the async engine backing the document store.

    Raises:
        ConfigurationError: If no database URL is configured
    """
    settings = settings or default_settings
    if not settings.database_url:
        raise ConfigurationError("DATABASE_URL is not configured")

    return create_async_engine(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        echo=settings.database_echo,
        future=True,
        # Disable prepared statement cache for PgBouncer compatibility
        connect_args={"statement_cache_size": 0},
    )


async def connect_document_store(
    settings: Optional[Settings] = None,
    engine: Optional[AsyncEngine] = None,
) -> DocumentStore:
    """Connect to PostgreSQL, falling back to memory when allowed.

    Args:
        settings: Application settings (defaults to the module settings)
        engine: Pre-built engine; created from settings when omitted

    Returns:
        A PostgresDocumentStore, or an InMemoryDocumentStore after a failed
        connection with the memory fallback enabled
    """
    settings = settings or default_settings
    engine = engine or create_document_engine(settings)
    store = PostgresDocumentStore(engine)

    try:
        LOGGER.info("Connecting to document store...")
        await store.ping()
        LOGGER.info("Document store connection successful")
    except (SQLAlchemyError, OSError) as e:
        LOGGER.error("Document store connection failed", exc_info=True, extra={"error": str(e)})
        if not settings.memory_fallback_enabled:
            raise
        LOGGER.warning("Falling back to in-memory document store. Data will NOT persist.")
        LOGGER.warning("Set ALLOW_DEV_MEMORY_FALLBACK=false and configure DATABASE_URL to persist.")
        await engine.dispose()
        return InMemoryDocumentStore()

    if settings.create_schema_enabled:
        await store.ensure_schema()
    else:
        LOGGER.info("Skipping document table creation (DOCSTORE_CREATE_SCHEMA disabled)")
    return store


async def init_document_store(settings: Optional[Settings] = None) -> DocumentStore:
    """Connect the process-wide document store."""
    global _store
    _store = await connect_document_store(settings)
    return _store


def get_document_store() -> DocumentStore:
    """Return the process-wide document store.

    Raises:
        ConfigurationError: If init_document_store() has not run yet
    """
    if _store is None:
        raise ConfigurationError("Document store not connected. Call init_document_store() first.")
    return _store


async def close_document_store() -> None:
    global _store
    if _store is None:
        return
    try:
        LOGGER.info("Closing document store...")
        await _store.close()
    finally:
        _store = None
