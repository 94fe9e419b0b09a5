"""Predicate AST shared by the query translator and the record stores.

Predicates are immutable trees of Compare/And/Or nodes. MemoryRecordStore
evaluates them with ``evaluate``; SQLiteRecordStore compiles them to SQL.
Both must agree on semantics:

- A missing or null value never satisfies eq, neq, in, contains, range or
  match; only isNull matches it.
- ``contains`` on strings and ``match`` are case-insensitive substring tests;
  ``contains`` on lists is exact membership.
- ``range`` bounds are inclusive; a None bound is open.
"""

from dataclasses import dataclass, field
from typing import Any, Union

from fieldgate.core.types import CONTAINS, EQ, IN, IS_NULL, NEQ, RANGE

# Internal operator used by free-text search
MATCH = "match"

# Envelope attributes addressable as system fields
SYSTEM_ATTRIBUTES = {
    "id": "id",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "project": "project",
    "collection": "collection",
    "deleted": "deleted",
}


@dataclass(frozen=True)
class Compare:
    """Compare one field against a value.

    Attributes:
        field: Payload field name, or a SYSTEM_ATTRIBUTES key when system is True
        op: One of eq, neq, in, contains, range, isNull, match
        value: Operand (tuple for in, (lo, hi) for range, bool for isNull)
        kind: Semantic type name of the field ("system" for system fields)
        system: Whether field addresses the record envelope
    """

    field: str
    op: str
    value: Any = None
    kind: str = "string"
    system: bool = False


@dataclass(frozen=True)
class And:
    items: tuple["Predicate", ...] = ()


@dataclass(frozen=True)
class Or:
    items: tuple["Predicate", ...] = ()


Predicate = Union[Compare, And, Or]

# Or() with no items matches nothing
NOTHING = Or(())


@dataclass(frozen=True)
class SortKey:
    field: str
    descending: bool = False
    system: bool = False


@dataclass(frozen=True)
class RecordQuery:
    """A translated, ACL-checked query ready for a record store.

    Attributes:
        project: Project scope
        collection: Collection scope
        predicate: Full predicate including scoping and soft-delete exclusion
        sort: Sort keys; always ends with id ascending
        offset: Rows to skip
        limit: Maximum rows to return (already clamped)
        visible_fields: Payload fields the principal may see
    """

    project: str
    collection: str
    predicate: Predicate
    sort: tuple[SortKey, ...] = (SortKey("id", system=True),)
    offset: int = 0
    limit: int | None = None
    visible_fields: frozenset[str] = field(default_factory=frozenset)


def field_value(record: Any, name: str, system: bool) -> Any:
    """Read a field from a Record (payload or envelope)."""
    if system:
        return getattr(record, SYSTEM_ATTRIBUTES[name])
    return record.payload.get(name)


def _icontains(haystack: Any, needle: Any) -> bool:
    if not isinstance(haystack, str) or not isinstance(needle, str):
        return False
    return needle.casefold() in haystack.casefold()


def _compare(node: Compare, value: Any) -> bool:
    op = node.op
    if op == IS_NULL:
        return (value is None) == bool(node.value)
    if value is None:
        return False
    if op == EQ:
        return value == node.value
    if op == NEQ:
        return value != node.value
    if op == IN:
        return value in node.value
    if op == CONTAINS:
        if isinstance(value, list):
            return node.value in value
        return _icontains(value, node.value)
    if op == RANGE:
        lo, hi = node.value
        if lo is not None and value < lo:
            return False
        if hi is not None and value > hi:
            return False
        return True
    if op == MATCH:
        if isinstance(value, list):
            return any(_icontains(item, node.value) for item in value)
        return _icontains(value, node.value)
    raise ValueError(f"Unsupported operator '{op}'")


def evaluate(predicate: Predicate, record: Any) -> bool:
    """Evaluate a predicate against a Record."""
    if isinstance(predicate, And):
        return all(evaluate(p, record) for p in predicate.items)
    if isinstance(predicate, Or):
        return any(evaluate(p, record) for p in predicate.items)
    return _compare(predicate, field_value(record, predicate.field, predicate.system))


def sort_records(records: list[Any], sort: tuple[SortKey, ...]) -> list[Any]:
    """Stable multi-key sort. Nulls sort first ascending, last descending."""
    result = list(records)
    for key in reversed(sort):

        def sort_value(record: Any, key: SortKey = key) -> tuple[bool, Any]:
            value = field_value(record, key.field, key.system)
            return (value is not None, value if value is not None else 0)

        result.sort(key=sort_value, reverse=key.descending)
    return result
