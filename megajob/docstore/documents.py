"""Document-level helpers shared by every store backend.

A *logical document* is a plain ``dict`` that always carries ``_id``,
``created_at`` and ``updated_at``. These helpers convert between that shape,
its JSON storage form and the textual projection used for comparisons.
"""

import json
import uuid
from datetime import date, datetime, time, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import to_jsonable_python

from megajob.core.exceptions import InvalidDocumentError

ID_FIELD = "_id"
CREATED_AT = "created_at"
UPDATED_AT = "updated_at"
TIMESTAMP_FIELDS = (CREATED_AT, UPDATED_AT)

Document = Dict[str, Any]
Clock = Callable[[], datetime]

_DATETIME = TypeAdapter(datetime)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_identity() -> str:
    return str(uuid.uuid4())


def to_timestamp(value: Any) -> datetime:
    """Coerce a datetime, date, ISO string or epoch number to an aware UTC datetime.

    Raises:
        ValueError: If the value cannot be read as a point in time
    """
    if isinstance(value, date) and not isinstance(value, datetime):
        value = datetime.combine(value, time.min)
    try:
        parsed = _DATETIME.validate_python(value)
    except PydanticValidationError as e:
        raise ValueError(f"Not a timestamp: {value!r}") from e
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_storage(document: Mapping[str, Any]) -> Dict[str, Any]:
    """Convert a document into its JSON-compatible storage form."""
    return to_jsonable_python(dict(document))


def as_text(value: Any) -> Optional[str]:
    """Render a value the way ``data ->> 'field'`` renders it.

    Strings come back verbatim, everything else as JSON text; ``None`` maps to
    ``None`` (SQL NULL).
    """
    if value is None:
        return None
    jsonable = to_jsonable_python(value)
    if isinstance(jsonable, str):
        return jsonable
    return json.dumps(jsonable)


def text_projection(document: Mapping[str, Any], field: str) -> Optional[str]:
    return as_text(document.get(field))


def hydrate_document(
    data: Optional[Mapping[str, Any]],
    row_id: Any,
    created_at: Optional[datetime],
    updated_at: Optional[datetime],
) -> Document:
    """Rebuild a logical document from a stored row.

    Fields stored in the document win; identity and timestamps are
    back-filled from the physical columns only when missing.
    """
    document: Document = dict(data or {})
    if document.get(ID_FIELD) is None:
        document[ID_FIELD] = str(row_id) if row_id is not None else None

    for field, column_value in ((CREATED_AT, created_at), (UPDATED_AT, updated_at)):
        embedded = document.get(field)
        if embedded is None:
            document[field] = column_value
        elif not isinstance(embedded, datetime):
            try:
                document[field] = to_timestamp(embedded)
            except ValueError:
                document[field] = column_value
    return document


def prepare_new_document(
    document: Mapping[str, Any],
    now: datetime,
) -> Tuple[str, Document, datetime, datetime]:
    """Assign identity and timestamps to a document about to be inserted.

    Returns:
        Tuple of (identity, document, created_at, updated_at)

    Raises:
        InvalidDocumentError: If timestamps are unreadable or out of order
    """
    prepared: Document = dict(document)
    raw_id = prepared.get(ID_FIELD)
    identity = str(raw_id) if raw_id is not None else new_identity()
    prepared[ID_FIELD] = identity

    try:
        created_at = to_timestamp(prepared[CREATED_AT]) if prepared.get(CREATED_AT) is not None else now
        updated_at = to_timestamp(prepared[UPDATED_AT]) if prepared.get(UPDATED_AT) is not None else now
    except ValueError as e:
        raise InvalidDocumentError(str(e), original_error=e)

    if updated_at < created_at:
        raise InvalidDocumentError(
            f"Document {identity} has updated_at {updated_at.isoformat()} "
            f"before created_at {created_at.isoformat()}"
        )

    prepared[CREATED_AT] = created_at
    prepared[UPDATED_AT] = updated_at
    return identity, prepared, created_at, updated_at


def apply_projection(document: Document, projection: Optional[Mapping[str, Any]]) -> Document:
    """Apply an inclusion or exclusion projection.

    Any field valued ``1`` switches to inclusion mode and only the named
    fields are returned (``_id`` included only when named). Otherwise every
    field valued ``0`` is dropped.
    """
    if not projection:
        return document

    include = [field for field, flag in projection.items() if flag == 1]
    if include:
        return {field: value for field, value in document.items() if field in include}

    exclude = {field for field, flag in projection.items() if flag == 0}
    return {field: value for field, value in document.items() if field not in exclude}
