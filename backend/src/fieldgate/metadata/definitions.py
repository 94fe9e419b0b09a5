"""Collection and action definitions."""

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from fieldgate.errors import DefinitionError
from fieldgate.metadata.fields import FieldSpec, to_label

NAME_RE = re.compile(r"^[a-z][a-z0-9_]*$")

# Operations whose collection-level role set may be narrowed per collection
ACCESS_OPERATIONS = ("read", "write", "delete")


@dataclass(frozen=True)
class CollectionSpec:
    """A named, schema-described record type.

    Attributes:
        name: API path segment, unique within a project
        title: Human-readable title
        fields: Ordered field specs
        roles: Roles admitted to the collection
        singleton: At most one live record exists
        snapshots: Copy the payload before every mutation
        template: Opaque template reference for the rendering layer
        access: Per-operation role overrides ("read", "write", "delete")
        label_field: Field used to summarise a record in relations
        source: Path of the definition unit
    """

    name: str
    title: str
    fields: tuple[FieldSpec, ...]
    roles: frozenset[str]
    singleton: bool = False
    snapshots: bool = True
    template: str | None = None
    access: Mapping[str, frozenset[str]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    label_field: str | None = None
    source: str | None = None

    def get_field(self, name: str) -> FieldSpec | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    def roles_for(self, operation: str) -> frozenset[str]:
        """Roles admitted for an operation (falls back to the collection roles)."""
        return self.access.get(operation, self.roles)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "title": self.title,
            "singleton": self.singleton,
            "snapshots": self.snapshots,
            "template": self.template,
            "labelField": self.label_field,
            "roles": sorted(self.roles),
            "access": {op: sorted(r) for op, r in self.access.items()},
            "fields": [f.to_dict() for f in self.fields],
        }


@dataclass(frozen=True)
class ActionSpec:
    """A server procedure with its own input form and role gate."""

    name: str
    title: str
    fields: tuple[FieldSpec, ...]
    roles: frozenset[str]
    handler: str
    source: str | None = None

    def get_field(self, name: str) -> FieldSpec | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "title": self.title,
            "handler": self.handler,
            "roles": sorted(self.roles),
            "fields": [f.to_dict() for f in self.fields],
        }


def _check_name(name: Any, kind: str) -> str:
    if not isinstance(name, str) or not NAME_RE.match(name):
        raise DefinitionError(
            f"{kind} name {name!r} must match {NAME_RE.pattern}"
        )
    return name


def _check_fields(fields: Iterable[FieldSpec], owner: str) -> tuple[FieldSpec, ...]:
    result = tuple(fields)
    seen: set[str] = set()
    for f in result:
        if f.name in seen:
            raise DefinitionError(
                f"Duplicate field '{f.name}' in {owner}", field=f.name
            )
        seen.add(f.name)
    return result


def _check_roles(roles: Iterable[str] | None, owner: str) -> frozenset[str]:
    result = frozenset(roles or ())
    if not result:
        raise DefinitionError(f"{owner} must declare at least one role")
    if not all(isinstance(r, str) and r for r in result):
        raise DefinitionError(f"{owner} roles must be non-empty strings")
    return result


def make_collection(
    name: str,
    fields: Iterable[FieldSpec],
    roles: Iterable[str],
    *,
    title: str | None = None,
    singleton: bool = False,
    snapshots: bool = True,
    template: str | None = None,
    access: Mapping[str, Iterable[str]] | None = None,
    label_field: str | None = None,
    source: str | None = None,
) -> CollectionSpec:
    """Build a validated CollectionSpec.

    Raises:
        DefinitionError: On an invalid name, duplicate field, missing roles,
            unknown access operation or unknown label field
    """
    name = _check_name(name, "Collection")
    owner = f"collection '{name}'"
    field_specs = _check_fields(fields, owner)
    role_set = _check_roles(roles, owner)

    overrides: dict[str, frozenset[str]] = {}
    for operation, op_roles in (access or {}).items():
        if operation not in ACCESS_OPERATIONS:
            raise DefinitionError(
                f"Unknown access operation '{operation}' in {owner}"
            )
        overrides[operation] = _check_roles(op_roles, f"{owner} access.{operation}")

    if label_field is None:
        label_field = next((f.name for f in field_specs if f.type == "string"), None)
    elif not any(f.name == label_field for f in field_specs):
        raise DefinitionError(
            f"Label field '{label_field}' is not a field of {owner}",
            field=label_field,
        )

    return CollectionSpec(
        name=name,
        title=title or to_label(name),
        fields=field_specs,
        roles=role_set,
        singleton=bool(singleton),
        snapshots=bool(snapshots),
        template=template,
        access=MappingProxyType(overrides),
        label_field=label_field,
        source=source,
    )


def make_action(
    name: str,
    fields: Iterable[FieldSpec],
    roles: Iterable[str],
    *,
    title: str | None = None,
    handler: str | None = None,
    source: str | None = None,
) -> ActionSpec:
    """Build a validated ActionSpec."""
    name = _check_name(name, "Action")
    owner = f"action '{name}'"
    return ActionSpec(
        name=name,
        title=title or to_label(name),
        fields=_check_fields(fields, owner),
        roles=_check_roles(roles, owner),
        handler=handler or name,
        source=source,
    )
