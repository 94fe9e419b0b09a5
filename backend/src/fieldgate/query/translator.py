"""Translate generic list requests into record-store queries.

Input filter format (same shape as the reference query endpoint)::

    {
        "operator": "and",            # or "or"
        "conditions": [
            {"field": "year", "operator": "range", "value": [2000, 2010]},
            {"operator": "or", "conditions": [...]},
        ],
    }

Every referenced field is ACL-checked before any type checks run, so a
hidden field is always reported as access denied.
"""

from dataclasses import dataclass, field
from typing import Any

from fieldgate.auth.permissions import readable_field, readable_fields, require_readable
from fieldgate.auth.types import Principal
from fieldgate.core.types import (
    CONTAINS,
    EQ,
    IN,
    IS_NULL,
    NEQ,
    RANGE,
    canonical_operator,
)
from fieldgate.errors import FieldIssue, ValidationError
from fieldgate.metadata.definitions import CollectionSpec
from fieldgate.metadata.fields import FieldSpec
from fieldgate.query.predicates import (
    MATCH,
    NOTHING,
    And,
    Compare,
    Or,
    Predicate,
    RecordQuery,
    SortKey,
)

DEFAULT_PAGE_SIZE = 25
MAX_PAGE_SIZE = 200

# System fields usable in sort and filter
SORTABLE_SYSTEM_FIELDS = ("id", "createdAt", "updatedAt")
ID_OPERATORS = (EQ, NEQ, IN, RANGE)


@dataclass
class QueryRequest:
    """A generic list request.

    Attributes:
        filter: Filter tree (see module docstring)
        search: Free-text search term
        sort: [{"field": name, "direction": "asc" | "desc"}]
        offset: Rows to skip
        limit: Page size (clamped to the configured ceiling)
        include_deleted: Include soft-deleted records
    """

    filter: dict[str, Any] | None = None
    search: str | None = None
    sort: list[dict[str, Any]] = field(default_factory=list)
    offset: int = 0
    limit: int | None = None
    include_deleted: bool = False

    @classmethod
    def from_page(cls, page: int, page_size: int, **kwargs: Any) -> "QueryRequest":
        """Build a request from 1-based page numbering."""
        if page < 1:
            raise ValidationError("page must be at least 1", code="INVALID_PAGE")
        return cls(offset=(page - 1) * page_size, limit=page_size, **kwargs)


def _invalid(message: str, code: str, field: str | None = None, operator: str | None = None) -> ValidationError:
    return ValidationError([FieldIssue(message=message, code=code, field=field, operator=operator)])


def _collect_fields(node: Any, out: list[str]) -> None:
    """Collect field names referenced by a filter tree (pre-validation)."""
    if not isinstance(node, dict):
        raise _invalid("Filter conditions must be objects", "INVALID_FILTER")
    if "conditions" in node:
        conditions = node["conditions"]
        if not isinstance(conditions, list):
            raise _invalid("'conditions' must be a list", "INVALID_FILTER")
        for child in conditions:
            _collect_fields(child, out)
        return
    name = node.get("field")
    if not isinstance(name, str) or not name:
        raise _invalid("Filter condition needs a field", "INVALID_FILTER")
    out.append(name)


class QueryTranslator:
    """Builds RecordQuery objects for one collection and principal."""

    def __init__(
        self,
        project: str,
        collection: CollectionSpec,
        principal: Principal | None,
        *,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
    ):
        self.project = project
        self.collection = collection
        self.principal = principal
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

    def translate(self, request: QueryRequest) -> RecordQuery:
        visible = readable_fields(self.principal, self.collection)

        parts: list[Predicate] = [
            Compare("project", EQ, self.project, kind="system", system=True),
            Compare("collection", EQ, self.collection.name, kind="system", system=True),
        ]
        if not request.include_deleted:
            parts.append(Compare("deleted", EQ, False, kind="system", system=True))

        if request.filter:
            referenced: list[str] = []
            _collect_fields(request.filter, referenced)
            require_readable(self.principal, self.collection, referenced, "filtering")
            parts.append(self._translate_node(request.filter))

        if request.search is not None and request.search.strip():
            parts.append(self._search(request.search.strip(), visible))

        sort = self._translate_sort(request.sort)
        offset, limit = self._paginate(request.offset, request.limit)

        return RecordQuery(
            project=self.project,
            collection=self.collection.name,
            predicate=And(tuple(parts)),
            sort=sort,
            offset=offset,
            limit=limit,
            visible_fields=frozenset(f.name for f in visible),
        )

    def _translate_node(self, node: dict[str, Any]) -> Predicate:
        if "conditions" in node:
            group_op = str(node.get("operator", "and")).lower()
            children = tuple(self._translate_node(c) for c in node["conditions"])
            if group_op == "and":
                return And(children)
            if group_op == "or":
                return Or(children)
            raise _invalid(
                f"Unknown group operator '{group_op}'", "INVALID_FILTER", operator=group_op
            )
        return self._translate_condition(node)

    def _translate_condition(self, cond: dict[str, Any]) -> Predicate:
        name = cond["field"]
        raw_op = cond.get("operator", EQ)
        op = canonical_operator(raw_op) if isinstance(raw_op, str) else None
        if op is None:
            raise _invalid(
                f"Unsupported operator '{raw_op}'", "UNSUPPORTED_OPERATOR",
                field=name, operator=str(raw_op),
            )
        value = cond.get("value")

        if name == "id":
            return self._translate_id(op, value)
        if name in ("createdAt", "updatedAt"):
            raise _invalid(
                f"Field '{name}' can only be used for sorting", "UNSUPPORTED_OPERATOR",
                field=name, operator=op,
            )

        field_spec = readable_field(self.principal, self.collection, name, "filtering")
        if op not in field_spec.operators:
            raise _invalid(
                f"Operator '{op}' is not supported for {field_spec.type} field '{name}'",
                "UNSUPPORTED_OPERATOR", field=name, operator=op,
            )
        return Compare(name, op, self._operand(field_spec, op, value), kind=field_spec.type)

    def _translate_id(self, op: str, value: Any) -> Predicate:
        if op not in ID_OPERATORS:
            raise _invalid(
                f"Operator '{op}' is not supported for field 'id'", "UNSUPPORTED_OPERATOR",
                field="id", operator=op,
            )
        id_field = FieldSpec(name="id", type="integer", label="Id")
        return Compare("id", op, self._operand(id_field, op, value), kind="system", system=True)

    def _operand(self, field_spec: FieldSpec, op: str, value: Any) -> Any:
        name = field_spec.name

        def check(item: Any) -> Any:
            problem = self._check_operand(field_spec, item)
            if problem:
                raise _invalid(
                    f"Value for '{name}' {problem}", "INVALID_VALUE", field=name, operator=op
                )
            return item

        if op == IS_NULL:
            if value is None:
                return True
            if not isinstance(value, bool):
                raise _invalid(
                    "isNull takes a boolean", "INVALID_VALUE", field=name, operator=op
                )
            return value

        if op == IN:
            if not isinstance(value, list) or not value:
                raise _invalid(
                    "'in' needs a non-empty list", "INVALID_VALUE", field=name, operator=op
                )
            return tuple(check(v) for v in value)

        if op == RANGE:
            if isinstance(value, dict):
                lo, hi = value.get("min"), value.get("max")
            elif isinstance(value, list) and len(value) == 2:
                lo, hi = value
            else:
                raise _invalid(
                    "'range' needs [min, max] or {min, max}", "INVALID_VALUE",
                    field=name, operator=op,
                )
            if lo is None and hi is None:
                raise _invalid(
                    "'range' needs at least one bound", "INVALID_VALUE", field=name, operator=op
                )
            lo = check(lo) if lo is not None else None
            hi = check(hi) if hi is not None else None
            if lo is not None and hi is not None and lo > hi:
                raise _invalid(
                    "'range' lower bound exceeds upper bound", "INVALID_VALUE",
                    field=name, operator=op,
                )
            return (lo, hi)

        if op == CONTAINS:
            if field_spec.type == "multi_enum":
                if not isinstance(value, str) or value not in field_spec.values:
                    raise _invalid(
                        f"Value for '{name}' must be one of: {', '.join(field_spec.values)}",
                        "INVALID_VALUE", field=name, operator=op,
                    )
                return value
            if not isinstance(value, str) or not value:
                raise _invalid(
                    "'contains' needs a non-empty string", "INVALID_VALUE",
                    field=name, operator=op,
                )
            return value

        if value is None:
            raise _invalid(
                f"'{op}' needs a value; use isNull to match empty fields", "INVALID_VALUE",
                field=name, operator=op,
            )
        return check(value)

    def _check_operand(self, field_spec: FieldSpec, value: Any) -> str | None:
        # Filter operands are checked by type only; range/length limits on the
        # field restrict stored values, not what may be searched for
        if field_spec.type == "string":
            return None if isinstance(value, str) else "must be a string"
        if field_spec.type in ("integer", "relation"):
            ok = isinstance(value, int) and not isinstance(value, bool)
            return None if ok else "must be an integer"
        return field_spec.check_value(value)

    def _search(self, term: str, visible: list[FieldSpec]) -> Predicate:
        targets = [f for f in visible if f.searchable]
        if not targets:
            return NOTHING
        return Or(tuple(Compare(f.name, MATCH, term, kind=f.type) for f in targets))

    def _translate_sort(self, sort: list[dict[str, Any]]) -> tuple[SortKey, ...]:
        names = []
        for spec in sort or []:
            if not isinstance(spec, dict) or not isinstance(spec.get("field"), str):
                raise _invalid("Sort entries need a field", "INVALID_SORT")
            names.append(spec["field"])
        require_readable(self.principal, self.collection, names, "sorting")

        keys: list[SortKey] = []
        for spec in sort or []:
            name = spec["field"]
            direction = str(spec.get("direction", "asc")).lower()
            if direction not in ("asc", "desc"):
                raise _invalid(
                    f"Unknown sort direction '{direction}'", "INVALID_SORT", field=name
                )
            if name in SORTABLE_SYSTEM_FIELDS:
                keys.append(SortKey(name, direction == "desc", system=True))
                continue
            field_spec = readable_field(self.principal, self.collection, name, "sorting")
            if not field_spec.sortable:
                raise _invalid(
                    f"Field '{name}' of type {field_spec.type} is not sortable",
                    "INVALID_SORT", field=name,
                )
            keys.append(SortKey(name, direction == "desc"))

        # Deterministic pagination: id ascending breaks every tie
        if not keys or keys[-1].field != "id":
            keys.append(SortKey("id", system=True))
        return tuple(keys)

    def _paginate(self, offset: int, limit: int | None) -> tuple[int, int]:
        if not isinstance(offset, int) or offset < 0:
            raise _invalid("offset must be a non-negative integer", "INVALID_PAGE")
        if limit is None:
            limit = self.default_page_size
        if not isinstance(limit, int) or limit < 1:
            raise _invalid("limit must be a positive integer", "INVALID_PAGE")
        limit = min(limit, self.max_page_size)
        if self.collection.singleton:
            limit = 1
        return offset, limit


def translate(
    project: str,
    collection: CollectionSpec,
    principal: Principal | None,
    request: QueryRequest,
    *,
    default_page_size: int = DEFAULT_PAGE_SIZE,
    max_page_size: int = MAX_PAGE_SIZE,
) -> RecordQuery:
    """Translate a list request for one collection and principal."""
    return QueryTranslator(
        project,
        collection,
        principal,
        default_page_size=default_page_size,
        max_page_size=max_page_size,
    ).translate(request)
