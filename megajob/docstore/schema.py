"""Physical layout of document collections.

Every collection is one table::

    id          TEXT PRIMARY KEY
    data        JSONB NOT NULL        -- full document, _id and timestamps included
    created_at  TIMESTAMPTZ NOT NULL
    updated_at  TIMESTAMPTZ NOT NULL
"""

import re
from typing import Dict, Sequence, Tuple

from sqlalchemy import Column, DateTime, Index, MetaData, Table, Text
from sqlalchemy.dialects.postgresql import JSONB

from megajob.core.exceptions import ValidationError

COLLECTIONS: Tuple[str, ...] = (
    "users",
    "employers",
    "companies",
    "jobs",
    "applications",
    "resumes",
    "otps",
    "password_resets",
    "company_parameters",
    "about_info",
    "team_members",
    "blogs",
    "news",
    "recruitment",
    "updates",
    "video_settings",
    "site_settings",
    "categories",
    "roles",
    "contacts",
    "testimonials",
    "footer",
)

# JSON fields that listing and lookup queries filter on
INDEXED_DOCUMENT_FIELDS: Dict[str, Tuple[str, ...]] = {
    "users": ("email", "user_type"),
    "jobs": ("category_id", "company_id", "status", "approval_status", "tier"),
    "companies": ("name",),
    "applications": ("job_id", "job_seeker_id", "status"),
    "otps": ("email", "expiresAt"),
}

INDEXED_CREATED_AT: Tuple[str, ...] = ("jobs", "applications")

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_collection_name(name: str) -> str:
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise ValidationError(f"Invalid collection name: {name!r}")
    return name


def _index_name(table: str, field: str) -> str:
    return f"idx_{table}_{re.sub(r'(?<!^)(?=[A-Z])', '_', field).lower()}"


def document_table(name: str, metadata: MetaData) -> Table:
    """Return the table for a collection, defining it on first use."""
    validate_collection_name(name)
    if name in metadata.tables:
        return metadata.tables[name]

    table = Table(
        name,
        metadata,
        Column("id", Text, primary_key=True),
        Column("data", JSONB, nullable=False),
        Column("created_at", DateTime(timezone=True), nullable=False),
        Column("updated_at", DateTime(timezone=True), nullable=False),
    )

    for field in INDEXED_DOCUMENT_FIELDS.get(name, ()):
        Index(_index_name(name, field), table.c.data[field].astext)
    if name in INDEXED_CREATED_AT:
        Index(_index_name(name, "created_at"), table.c.created_at)

    return table


def define_collections(metadata: MetaData, names: Sequence[str] = COLLECTIONS) -> Dict[str, Table]:
    return {name: document_table(name, metadata) for name in names}
