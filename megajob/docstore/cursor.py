"""Deferred, chainable query cursor shared by every store backend."""

from typing import Any, List, Mapping, Optional

from megajob.core.exceptions import CursorStateError
from megajob.docstore.documents import Document
from megajob.docstore.filters import And
from megajob.docstore.sorting import SortOrder, compile_sort


class Cursor:
    """Configured query that runs only when :meth:`to_list` is awaited.

    A cursor accepts ``sort``/``skip``/``limit``/``project`` until it is
    materialized; afterwards those calls raise :class:`CursorStateError`.
    Each ``to_list`` call issues a fresh query and fetches the whole result.
    """

    def __init__(self, expression: And):
        self.expression = expression
        self.sort_order: Optional[SortOrder] = None
        self.skip_count = 0
        self.limit_count: Optional[int] = None
        self.projection: Optional[Mapping[str, Any]] = None
        self._materialized = False

    @property
    def materialized(self) -> bool:
        return self._materialized

    def _ensure_configurable(self, method: str) -> None:
        if self._materialized:
            raise CursorStateError(f"Cannot call {method}() on a cursor that has already been materialized")

    def sort(self, spec: Optional[Mapping[str, Any]]) -> "Cursor":
        self._ensure_configurable("sort")
        self.sort_order = compile_sort(spec)
        return self

    def skip(self, count: int) -> "Cursor":
        self._ensure_configurable("skip")
        count = int(count or 0)
        if count < 0:
            raise ValueError(f"skip must be >= 0, got {count}")
        self.skip_count = count
        return self

    def limit(self, count: Optional[int]) -> "Cursor":
        """Cap the result size; ``0`` or ``None`` removes the cap."""
        self._ensure_configurable("limit")
        count = int(count or 0)
        self.limit_count = count if count > 0 else None
        return self

    def project(self, projection: Optional[Mapping[str, Any]]) -> "Cursor":
        self._ensure_configurable("project")
        self.projection = projection
        return self

    async def to_list(self) -> List[Document]:
        documents = await self._fetch()
        self._materialized = True
        return documents

    async def _fetch(self) -> List[Document]:
        raise NotImplementedError
