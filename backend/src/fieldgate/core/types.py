"""Semantic field type registry.

Each SemanticType describes what values a field of that type accepts and
which query operators, sorting and free-text search it supports. ACL and UI
metadata live on FieldSpec, not here.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


# Query operators (canonical names)
EQ = "eq"
NEQ = "neq"
IN = "in"
CONTAINS = "contains"
RANGE = "range"
IS_NULL = "isNull"

OPERATORS = (EQ, NEQ, IN, CONTAINS, RANGE, IS_NULL)

# Accepted spellings for the canonical operators
OPERATOR_ALIASES: dict[str, str] = {
    "equals": EQ,
    "notEquals": NEQ,
    "between": RANGE,
}


def canonical_operator(name: str) -> str | None:
    """Return the canonical operator name, or None if unsupported."""
    if name in OPERATORS:
        return name
    return OPERATOR_ALIASES.get(name)


def _is_int(value: Any) -> bool:
    # bool is an int subclass but never a valid integer field value
    return isinstance(value, int) and not isinstance(value, bool)


def _check_string(value: Any, options: dict[str, Any]) -> str | None:
    if not isinstance(value, str):
        return "must be a string"
    max_length = options.get("max_length")
    if max_length is not None and len(value) > max_length:
        return f"must be at most {max_length} characters"
    return None


def _check_integer(value: Any, options: dict[str, Any]) -> str | None:
    if not _is_int(value):
        return "must be an integer"
    minimum = options.get("min")
    maximum = options.get("max")
    if minimum is not None and value < minimum:
        return f"must be at least {minimum}"
    if maximum is not None and value > maximum:
        return f"must be at most {maximum}"
    return None


def _check_enum(value: Any, options: dict[str, Any]) -> str | None:
    values = options.get("values") or ()
    if not isinstance(value, str) or value not in values:
        return f"must be one of: {', '.join(values)}"
    return None


def _check_multi_enum(value: Any, options: dict[str, Any]) -> str | None:
    values = options.get("values") or ()
    if not isinstance(value, list):
        return "must be a list"
    for item in value:
        if not isinstance(item, str) or item not in values:
            return f"items must be one of: {', '.join(values)}"
    if len(set(value)) != len(value):
        return "must not contain duplicates"
    return None


def _check_relation(value: Any, options: dict[str, Any]) -> str | None:
    if not _is_int(value) or value < 1:
        return "must be a record id"
    return None


def _check_file(value: Any, options: dict[str, Any]) -> str | None:
    if isinstance(value, str) and value:
        return None
    if isinstance(value, dict) and isinstance(value.get("ref"), str) and value["ref"]:
        return None
    return "must be a file reference"


def _check_map(value: Any, options: dict[str, Any]) -> str | None:
    if not isinstance(value, dict):
        return "must be an object"
    if not all(isinstance(k, str) for k in value):
        return "keys must be strings"
    return None


@dataclass(frozen=True)
class SemanticType:
    name: str
    check: Callable[[Any, dict[str, Any]], str | None]
    query_operators: tuple[str, ...]
    sortable: bool = True
    searchable: bool = False

    def validate(self, value: Any, **options: Any) -> str | None:
        """Return an error fragment for an invalid non-null value, else None."""
        return self.check(value, options)


# Built-in semantic types
SEMANTIC_TYPES: dict[str, SemanticType] = {
    "string": SemanticType(
        name="string",
        check=_check_string,
        query_operators=(EQ, NEQ, IN, CONTAINS, IS_NULL),
        searchable=True,
    ),
    "integer": SemanticType(
        name="integer",
        check=_check_integer,
        query_operators=(EQ, NEQ, IN, RANGE, IS_NULL),
    ),
    "enum": SemanticType(
        name="enum",
        check=_check_enum,
        query_operators=(EQ, NEQ, IN, IS_NULL),
        searchable=True,
    ),
    "multi_enum": SemanticType(
        name="multi_enum",
        check=_check_multi_enum,
        query_operators=(CONTAINS, IS_NULL),
        sortable=False,
        searchable=True,
    ),
    "relation": SemanticType(
        name="relation",
        check=_check_relation,
        query_operators=(EQ, NEQ, IN, IS_NULL),
    ),
    "file": SemanticType(
        name="file",
        check=_check_file,
        query_operators=(IS_NULL,),
        sortable=False,
    ),
    "map": SemanticType(
        name="map",
        check=_check_map,
        query_operators=(IS_NULL,),
        sortable=False,
    ),
}

# Spellings accepted in definition files
TYPE_ALIASES: dict[str, str] = {
    "multi-enum": "multi_enum",
    "multiEnum": "multi_enum",
    "file-reference": "file",
    "fileReference": "file",
    "object": "map",
}


def resolve_type_name(name: str) -> str | None:
    """Return the canonical semantic type name, or None if unknown."""
    if name in SEMANTIC_TYPES:
        return name
    return TYPE_ALIASES.get(name)


def get_semantic_type(name: str) -> SemanticType:
    """Get a semantic type by canonical name.

    Raises:
        KeyError: If the type is unknown
    """
    return SEMANTIC_TYPES[name]
