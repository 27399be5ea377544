"""Filter compiler.

Turns a MongoDB-style filter mapping into a small expression tree. Each node
knows how to render itself as a SQLAlchemy clause over a document table and
how to evaluate itself against an in-memory document, so both store backends
share one set of matching rules.

Supported vocabulary::

    {"_id": "..."}                       identity equality
    {"field": "value"}                   textual equality
    {"field": re.compile("acme")}        case-insensitive substring (ILIKE)
    {"field": {"$gte": v}} / {"$gt": v}  range (timestamp column or text)
    {"field": {"$ne": v}}                textual inequality
    {"field": {"$in": [a, b]}}           membership, [] matches nothing
    {"$or": [{...}, {...}]}              one level of alternatives

Anything else raises :class:`UnsupportedFilterError`.
"""

import re
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Tuple

from sqlalchemy import Table, and_, false, or_, true
from sqlalchemy.dialects.postgresql.base import PGDialect
from sqlalchemy.sql.elements import ColumnElement

from megajob.core.exceptions import UnsupportedFilterError
from megajob.docstore.documents import (
    ID_FIELD,
    TIMESTAMP_FIELDS,
    Document,
    as_text,
    text_projection,
    to_timestamp,
)

IDENTITY_KEYS = (ID_FIELD, "id")
RANGE_OPERATORS = ("$gte", "$gt")
FIELD_OPERATORS = frozenset({"$gte", "$gt", "$ne", "$in"})
LIKE_ESCAPE = "/"

_RENDER_DIALECT = PGDialect(paramstyle="numeric_dollar")


def _text_column(table: Table, field: str) -> ColumnElement:
    return table.c.data[field].astext


def _escape_like(value: str) -> str:
    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", f"{LIKE_ESCAPE}%")
        .replace("_", f"{LIKE_ESCAPE}_")
    )


class FilterExpression:
    """Base class of the compiled filter tree."""

    def to_clause(self, table: Table) -> ColumnElement:
        raise NotImplementedError

    def matches(self, document: Document) -> bool:
        raise NotImplementedError


@dataclass(frozen=True)
class IdentityEquals(FilterExpression):
    value: str

    def to_clause(self, table: Table) -> ColumnElement:
        return table.c.id == self.value

    def matches(self, document: Document) -> bool:
        identity = document.get(ID_FIELD)
        return identity is not None and str(identity) == self.value


@dataclass(frozen=True)
class Range(FilterExpression):
    """``$gte`` / ``$gt`` against a timestamp column or a textual projection."""

    field: str
    operator: str
    value: Any

    @property
    def on_timestamp(self) -> bool:
        return self.field in TIMESTAMP_FIELDS

    def to_clause(self, table: Table) -> ColumnElement:
        column = table.c[self.field] if self.on_timestamp else _text_column(table, self.field)
        if self.operator == "$gte":
            return column >= self.value
        return column > self.value

    def matches(self, document: Document) -> bool:
        if self.on_timestamp:
            current = document.get(self.field)
            if current is None:
                return False
            current = to_timestamp(current)
        else:
            current = text_projection(document, self.field)
            if current is None:
                return False
        if self.operator == "$gte":
            return current >= self.value
        return current > self.value


@dataclass(frozen=True)
class NotEqual(FilterExpression):
    field: str
    value: str

    def to_clause(self, table: Table) -> ColumnElement:
        return _text_column(table, self.field) != self.value

    def matches(self, document: Document) -> bool:
        current = text_projection(document, self.field)
        return current is not None and current != self.value


@dataclass(frozen=True)
class SetMembership(FilterExpression):
    field: str
    values: Tuple[str, ...]

    def to_clause(self, table: Table) -> ColumnElement:
        if not self.values:
            return false()
        column = _text_column(table, self.field)
        return or_(*(column == value for value in self.values))

    def matches(self, document: Document) -> bool:
        current = text_projection(document, self.field)
        return current is not None and current in self.values


@dataclass(frozen=True)
class Pattern(FilterExpression):
    """Case-insensitive substring test built from a regex's source text."""

    field: str
    substring: str

    def to_clause(self, table: Table) -> ColumnElement:
        pattern = f"%{_escape_like(self.substring)}%"
        return _text_column(table, self.field).ilike(pattern, escape=LIKE_ESCAPE)

    def matches(self, document: Document) -> bool:
        current = text_projection(document, self.field)
        return current is not None and self.substring.casefold() in current.casefold()


@dataclass(frozen=True)
class Equality(FilterExpression):
    field: str
    value: str

    def to_clause(self, table: Table) -> ColumnElement:
        return _text_column(table, self.field) == self.value

    def matches(self, document: Document) -> bool:
        return text_projection(document, self.field) == self.value


@dataclass(frozen=True)
class Or(FilterExpression):
    clauses: Tuple["And", ...]

    def to_clause(self, table: Table) -> ColumnElement:
        return or_(*(clause.to_clause(table) for clause in self.clauses))

    def matches(self, document: Document) -> bool:
        return any(clause.matches(document) for clause in self.clauses)


@dataclass(frozen=True)
class And(FilterExpression):
    clauses: Tuple[FilterExpression, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.clauses

    def to_clause(self, table: Table) -> ColumnElement:
        if self.is_empty:
            return true()
        if len(self.clauses) == 1:
            return self.clauses[0].to_clause(table)
        return and_(*(clause.to_clause(table) for clause in self.clauses))

    def matches(self, document: Document) -> bool:
        return all(clause.matches(document) for clause in self.clauses)


def _range_value(field: str, value: Any) -> Any:
    if field in TIMESTAMP_FIELDS:
        try:
            return to_timestamp(value)
        except ValueError as e:
            raise UnsupportedFilterError(
                f"Range bound for {field!r} is not a timestamp: {value!r}", original_error=e
            )
    if value is None:
        raise UnsupportedFilterError(f"Range bound for {field!r} cannot be null")
    return as_text(value)


def _compile_operators(field: str, operators: Mapping[str, Any]) -> Optional[FilterExpression]:
    unknown = [key for key in operators if key not in FIELD_OPERATORS]
    if unknown:
        if all(not str(key).startswith("$") for key in operators):
            raise UnsupportedFilterError(
                f"Embedded document equality is not supported for field {field!r}"
            )
        raise UnsupportedFilterError(
            f"Unsupported filter operator(s) {sorted(map(str, unknown))} for field {field!r}"
        )
    if not operators:
        raise UnsupportedFilterError(f"Empty operator object for field {field!r}")

    # Only one clause per field: range first ($gte before $gt), then $ne, then $in
    for operator in RANGE_OPERATORS:
        if operator in operators:
            return Range(field, operator, _range_value(field, operators[operator]))

    if "$ne" in operators:
        return NotEqual(field, as_text(operators["$ne"]))

    values = operators["$in"]
    if not isinstance(values, (list, tuple)):
        raise UnsupportedFilterError(f"$in for field {field!r} requires a list, got {type(values).__name__}")
    return SetMembership(field, tuple(as_text(value) for value in values))


def _compile_field(field: str, value: Any) -> Optional[FilterExpression]:
    if field.startswith("$"):
        raise UnsupportedFilterError(f"Unsupported top-level operator {field!r}")
    if isinstance(value, Mapping):
        return _compile_operators(field, value)
    if isinstance(value, re.Pattern):
        return Pattern(field, value.pattern)
    if value is None:
        return None
    if isinstance(value, (list, tuple, set)):
        raise UnsupportedFilterError(f"Array equality is not supported for field {field!r}")
    return Equality(field, as_text(value))


def _compile_clauses(filter_: Mapping[str, Any], allow_or: bool) -> List[FilterExpression]:
    clauses: List[FilterExpression] = []

    if "$or" in filter_:
        if not allow_or:
            raise UnsupportedFilterError("Nested $or is not supported inside $or clauses")
        alternatives = filter_["$or"]
        if not isinstance(alternatives, (list, tuple)):
            raise UnsupportedFilterError("$or requires a list of filter objects")
        branches = []
        for alternative in alternatives:
            if not isinstance(alternative, Mapping):
                raise UnsupportedFilterError("$or entries must be filter objects")
            branch = _compile_clauses(alternative, allow_or=False)
            # A branch without clauses adds no constraint and is dropped
            if branch:
                branches.append(And(tuple(branch)))
        if branches:
            clauses.append(Or(tuple(branches)))

    identity_key = ID_FIELD if filter_.get(ID_FIELD) is not None else "id"
    if filter_.get(identity_key) is not None:
        clauses.append(IdentityEquals(str(filter_[identity_key])))

    for field, value in filter_.items():
        if field in IDENTITY_KEYS or field == "$or":
            continue
        clause = _compile_field(field, value)
        if clause is not None:
            clauses.append(clause)

    return clauses


def compile_filter(filter_: Optional[Mapping[str, Any]]) -> And:
    """Compile a filter mapping into an expression tree.

    Args:
        filter_: Filter specification; ``None`` or ``{}`` matches everything

    Returns:
        And: Root expression. ``is_empty`` is True when nothing constrains the match.

    Raises:
        UnsupportedFilterError: If the filter uses an unsupported operator or shape
    """
    if filter_ is None:
        return And()
    if not isinstance(filter_, Mapping):
        raise UnsupportedFilterError(f"Filter must be a mapping, got {type(filter_).__name__}")
    return And(tuple(_compile_clauses(filter_, allow_or=True)))


def render_filter(filter_: Optional[Mapping[str, Any]], table: Table) -> Tuple[str, List[Any]]:
    """Render a filter to PostgreSQL ``WHERE`` text and positional ``$n`` parameters.

    Returns:
        Tuple of (expression, parameters); ``("", [])`` for an empty filter.
    """
    expression = compile_filter(filter_)
    if expression.is_empty:
        return "", []
    compiled = expression.to_clause(table).compile(dialect=_RENDER_DIALECT)
    params = compiled.params
    return str(compiled), [params[name] for name in compiled.positiontup]


def matches(filter_: Optional[Mapping[str, Any]], document: Document) -> bool:
    return compile_filter(filter_).matches(document)
