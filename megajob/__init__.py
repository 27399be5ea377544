"""MegaJob data access layer.

Importing this package does not touch PostgreSQL; call
``megajob.core.database.init_document_store()`` during application start-up.
"""

__version__ = "0.1.0"
