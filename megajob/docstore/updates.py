"""Update applier for ``$set`` / ``$setOnInsert`` specifications."""

from datetime import datetime
from typing import Any, Dict, Mapping

from megajob.core.exceptions import InvalidUpdateError
from megajob.docstore.documents import CREATED_AT, ID_FIELD, UPDATED_AT, Document, to_timestamp

SUPPORTED_UPDATE_OPERATORS = ("$set", "$setOnInsert")


def _operator_fields(update: Mapping[str, Any], operator: str) -> Mapping[str, Any]:
    fields = update.get(operator) or {}
    if not isinstance(fields, Mapping):
        raise InvalidUpdateError(f"{operator} requires an object, got {type(fields).__name__}")
    if ID_FIELD in fields:
        raise InvalidUpdateError(f"{operator} cannot modify the immutable field {ID_FIELD!r}")
    return fields


def validate_update(update: Any) -> Mapping[str, Any]:
    """Check that an update only uses supported operators.

    Raises:
        InvalidUpdateError: For replacement documents or unsupported operators
    """
    if not isinstance(update, Mapping) or not update:
        raise InvalidUpdateError("Update must be a non-empty object of update operators")
    unsupported = [key for key in update if key not in SUPPORTED_UPDATE_OPERATORS]
    if unsupported:
        raise InvalidUpdateError(f"Unsupported update operator(s): {sorted(map(str, unsupported))}")
    for operator in SUPPORTED_UPDATE_OPERATORS:
        _operator_fields(update, operator)
    return update


def apply_update(
    document: Mapping[str, Any],
    update: Mapping[str, Any],
    *,
    now: datetime,
    is_insert: bool = False,
) -> Document:
    """Compute the next state of a document.

    On insert, ``$setOnInsert`` fields are applied first and only where the
    document has no value yet, then ``$set`` overwrites. ``created_at`` is
    defaulted on insert and ``updated_at`` is always refreshed last. The
    identity field is left untouched.

    Args:
        document: Current document, or ``{}`` for an upsert insert
        update: Update specification
        now: Timestamp used for ``updated_at`` (and ``created_at`` on insert)
        is_insert: Whether the result is a freshly inserted document

    Returns:
        New document; the input is not modified
    """
    validate_update(update)
    out: Document = dict(document)

    if is_insert:
        for field, value in _operator_fields(update, "$setOnInsert").items():
            if field not in out:
                out[field] = value

    for field, value in _operator_fields(update, "$set").items():
        out[field] = value

    if is_insert and out.get(CREATED_AT) is None:
        out[CREATED_AT] = now

    out[UPDATED_AT] = now
    return out


def set_patch(update: Mapping[str, Any], *, now: datetime) -> Dict[str, Any]:
    """Fields an update-mode application overwrites, for a server-side merge."""
    return apply_update({}, update, now=now)


def column_timestamps(patch: Mapping[str, Any]) -> Dict[str, datetime]:
    """Physical timestamp column values matching the timestamps in a patch.

    Raises:
        InvalidUpdateError: If a timestamp field holds something that is not a timestamp,
            or created_at would end up later than updated_at
    """
    columns = {}
    for field in (CREATED_AT, UPDATED_AT):
        if patch.get(field) is not None:
            try:
                columns[field] = to_timestamp(patch[field])
            except ValueError as e:
                raise InvalidUpdateError(f"{field} must be a timestamp", original_error=e)

    if CREATED_AT in columns and UPDATED_AT in columns and columns[CREATED_AT] > columns[UPDATED_AT]:
        raise InvalidUpdateError(
            f"created_at {columns[CREATED_AT].isoformat()} would be later than "
            f"updated_at {columns[UPDATED_AT].isoformat()}"
        )
    return columns
