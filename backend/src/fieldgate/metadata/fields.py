"""Field metadata model.

A FieldSpec pairs a semantic type (see fieldgate.core.types) with plain
permission and UI data. Constructors validate their own arguments and raise
DefinitionError, so a bad field is caught while loading, never per request.
"""

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from fieldgate.core.types import get_semantic_type, resolve_type_name
from fieldgate.errors import DefinitionError

FIELD_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Names used by the record envelope; payload fields may not shadow them
RESERVED_FIELD_NAMES = frozenset({"id", "createdAt", "updatedAt", "deleted"})


@dataclass(frozen=True)
class UIHint:
    """Presentation hints. Ignored by the core, preserved for the UI."""

    section: str | None = None
    span: int | None = None
    extra: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = dict(self.extra)
        if self.section is not None:
            result["section"] = self.section
        if self.span is not None:
            result["span"] = self.span
        return result


@dataclass(frozen=True)
class PermissionRule:
    """Roles allowed to read/write a field.

    An empty read set means every role admitted to the collection may read.
    An empty write set means nobody may write.
    """

    read: frozenset[str] = frozenset()
    write: frozenset[str] = frozenset()

    def to_dict(self) -> dict[str, list[str]]:
        return {"read": sorted(self.read), "write": sorted(self.write)}


@dataclass(frozen=True)
class FieldSpec:
    name: str
    type: str
    label: str
    values: tuple[str, ...] = ()
    relation: str | None = None
    required: bool = False
    unique: bool = False
    searchable: bool = False
    min: int | None = None
    max: int | None = None
    max_length: int | None = None
    ui: UIHint = field(default_factory=UIHint)
    permissions: PermissionRule = field(default_factory=PermissionRule)

    def check_value(self, value: Any) -> str | None:
        """Return an error fragment if a non-null value does not fit this field."""
        return get_semantic_type(self.type).validate(
            value,
            values=self.values,
            min=self.min,
            max=self.max,
            max_length=self.max_length,
        )

    @property
    def sortable(self) -> bool:
        return get_semantic_type(self.type).sortable

    @property
    def operators(self) -> tuple[str, ...]:
        return get_semantic_type(self.type).query_operators

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "type": self.type,
            "label": self.label,
            "required": self.required,
            "unique": self.unique,
            "searchable": self.searchable,
            "ui": self.ui.to_dict(),
            "permissions": self.permissions.to_dict(),
        }
        if self.values:
            result["values"] = list(self.values)
        if self.relation:
            result["relation"] = {"collection": self.relation}
        if self.min is not None:
            result["min"] = self.min
        if self.max is not None:
            result["max"] = self.max
        if self.max_length is not None:
            result["maxLength"] = self.max_length
        return result


def to_label(name: str) -> str:
    """Convert camelCase or snake_case to Title Case."""
    result = []
    for i, char in enumerate(name):
        if char == "_":
            result.append(" ")
            continue
        if char.isupper() and i > 0 and name[i - 1] not in "_ ":
            result.append(" ")
        result.append(char)
    return " ".join("".join(result).split()).title()


def _roles(value: Iterable[str] | None, what: str) -> frozenset[str]:
    if value is None:
        return frozenset()
    if isinstance(value, str):
        value = [value]
    roles = list(value)
    if not all(isinstance(r, str) and r for r in roles):
        raise DefinitionError(f"{what} must be a list of role names")
    return frozenset(roles)


def permission_rule(
    read: Iterable[str] | None = None,
    write: Iterable[str] | None = None,
) -> PermissionRule:
    return PermissionRule(
        read=_roles(read, "permissions.read"),
        write=_roles(write, "permissions.write"),
    )


def ui_hint(data: Mapping[str, Any] | None = None) -> UIHint:
    if not data:
        return UIHint()
    extra = {k: v for k, v in data.items() if k not in ("section", "span")}
    span = data.get("span")
    if span is not None and (not isinstance(span, int) or isinstance(span, bool) or span < 1):
        raise DefinitionError("ui.span must be a positive integer")
    section = data.get("section")
    if section is not None and not isinstance(section, str):
        raise DefinitionError("ui.section must be a string")
    return UIHint(section=section, span=span, extra=MappingProxyType(extra))


def build_field(name: str, type: str, **options: Any) -> FieldSpec:
    """Build a FieldSpec of any semantic type.

    Raises:
        DefinitionError: On an invalid name, unknown type or bad options
    """
    if not isinstance(name, str) or not FIELD_NAME_RE.match(name):
        raise DefinitionError(f"Invalid field name {name!r}", field=str(name))
    if name in RESERVED_FIELD_NAMES:
        raise DefinitionError(f"Field name '{name}' is reserved", field=name)

    type_name = resolve_type_name(type) if isinstance(type, str) else None
    if type_name is None:
        raise DefinitionError(f"Field '{name}' has unknown type {type!r}", field=name)

    values = tuple(options.pop("values", None) or ())
    relation = options.pop("relation", None)
    minimum = options.pop("min", None)
    maximum = options.pop("max", None)
    max_length = options.pop("max_length", None)
    searchable = bool(options.pop("searchable", False))

    if type_name in ("enum", "multi_enum"):
        if not values:
            raise DefinitionError(f"Field '{name}' needs at least one value", field=name)
        if not all(isinstance(v, str) and v for v in values):
            raise DefinitionError(f"Field '{name}' values must be non-empty strings", field=name)
        if len(set(values)) != len(values):
            raise DefinitionError(f"Field '{name}' has duplicate values", field=name)
    elif values:
        raise DefinitionError(f"Field '{name}' of type {type_name} cannot declare values", field=name)

    if type_name == "relation":
        if not isinstance(relation, str) or not relation:
            raise DefinitionError(f"Relation field '{name}' needs a target collection", field=name)
    elif relation:
        raise DefinitionError(f"Field '{name}' of type {type_name} cannot declare a relation", field=name)

    if minimum is not None or maximum is not None:
        if type_name != "integer":
            raise DefinitionError(f"Field '{name}': min/max only apply to integers", field=name)
        for bound in (minimum, maximum):
            if bound is not None and (not isinstance(bound, int) or isinstance(bound, bool)):
                raise DefinitionError(f"Field '{name}': min/max must be integers", field=name)
        if minimum is not None and maximum is not None and minimum > maximum:
            raise DefinitionError(f"Field '{name}': min is greater than max", field=name)

    if max_length is not None:
        if type_name != "string":
            raise DefinitionError(f"Field '{name}': maxLength only applies to strings", field=name)
        if not isinstance(max_length, int) or isinstance(max_length, bool) or max_length < 1:
            raise DefinitionError(f"Field '{name}': maxLength must be a positive integer", field=name)

    if searchable and not get_semantic_type(type_name).searchable:
        raise DefinitionError(f"Field '{name}' of type {type_name} cannot be searchable", field=name)

    label = options.pop("label", None) or to_label(name)
    permissions = options.pop("permissions", None) or PermissionRule()
    ui = options.pop("ui", None) or UIHint()
    required = bool(options.pop("required", False))
    unique = bool(options.pop("unique", False))
    if options:
        raise DefinitionError(
            f"Field '{name}' has unknown options: {', '.join(sorted(options))}",
            field=name,
        )
    if unique and type_name in ("multi_enum", "map", "file"):
        raise DefinitionError(f"Field '{name}' of type {type_name} cannot be unique", field=name)

    return FieldSpec(
        name=name,
        type=type_name,
        label=label,
        values=values,
        relation=relation,
        required=required,
        unique=unique,
        searchable=searchable,
        min=minimum,
        max=maximum,
        max_length=max_length,
        ui=ui,
        permissions=permissions,
    )


def string_field(name: str, **options: Any) -> FieldSpec:
    return build_field(name, "string", **options)


def integer_field(name: str, **options: Any) -> FieldSpec:
    return build_field(name, "integer", **options)


def enum_field(name: str, values: Iterable[str], **options: Any) -> FieldSpec:
    return build_field(name, "enum", values=tuple(values), **options)


def multi_enum_field(name: str, values: Iterable[str], **options: Any) -> FieldSpec:
    return build_field(name, "multi_enum", values=tuple(values), **options)


def relation_field(name: str, collection: str, **options: Any) -> FieldSpec:
    return build_field(name, "relation", relation=collection, **options)


def file_field(name: str, **options: Any) -> FieldSpec:
    return build_field(name, "file", **options)


def map_field(name: str, **options: Any) -> FieldSpec:
    return build_field(name, "map", **options)
