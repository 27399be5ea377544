"""Sort compiler: a single-key sort specification to an ``ORDER BY`` element."""

from dataclasses import dataclass
from typing import Any, List, Mapping, Optional

from sqlalchemy import Table
from sqlalchemy.sql.elements import ColumnElement

from megajob.docstore.documents import CREATED_AT, UPDATED_AT, Document, text_projection, to_timestamp

DESCENDING = -1
ASCENDING = 1

TIMESTAMP_SORT_KEYS = {
    "createdAt": CREATED_AT,
    "created_at": CREATED_AT,
    "updatedAt": UPDATED_AT,
    "updated_at": UPDATED_AT,
}


@dataclass(frozen=True)
class SortOrder:
    field: str
    descending: bool = False

    @property
    def timestamp_column(self) -> Optional[str]:
        return TIMESTAMP_SORT_KEYS.get(self.field)

    def to_clause(self, table: Table) -> ColumnElement:
        if self.timestamp_column:
            column = table.c[self.timestamp_column]
        else:
            column = table.c.data[self.field].astext
        return column.desc() if self.descending else column.asc()

    def _value(self, document: Document) -> Any:
        if self.timestamp_column:
            value = document.get(self.timestamp_column)
            return to_timestamp(value) if value is not None else None
        return text_projection(document, self.field)

    def apply(self, documents: List[Document]) -> List[Document]:
        """Sort documents in memory the way PostgreSQL orders the column.

        NULLs sort last ascending and first descending; ties keep their
        original order.
        """
        present = [doc for doc in documents if self._value(doc) is not None]
        missing = [doc for doc in documents if self._value(doc) is None]
        present.sort(key=self._value, reverse=self.descending)
        return missing + present if self.descending else present + missing


def _is_descending(direction: Any) -> bool:
    try:
        return int(direction) == DESCENDING
    except (TypeError, ValueError):
        return False


def compile_sort(spec: Optional[Mapping[str, Any]]) -> Optional[SortOrder]:
    """Compile a sort mapping; only its first entry is honoured.

    Returns:
        SortOrder or None when the specification is empty
    """
    if not spec:
        return None
    field, direction = next(iter(spec.items()))
    return SortOrder(field=field, descending=_is_descending(direction))
