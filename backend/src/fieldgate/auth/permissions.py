"""Field-level access control.

Decision order for every operation:

1. Collection gate: the principal must hold one of the roles admitted to the
   collection for the operation, otherwise the whole operation is denied.
2. Field gate (read/write only): a field is readable when its read set is
   empty or shares a role with the principal; it is writable only when its
   write set is non-empty and shares a role with the principal. Reads
   default open, writes default closed.
3. Reads return readable fields only; unwritable input fields are dropped
   without error.
4. Filters, sorts and searches naming a field the principal cannot read are
   rejected with AccessDeniedError.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable

from fieldgate.auth.types import Operation, Principal
from fieldgate.errors import AccessDeniedError

if TYPE_CHECKING:
    from fieldgate.metadata.definitions import ActionSpec, CollectionSpec
    from fieldgate.metadata.fields import FieldSpec

# Envelope keys every admitted reader sees
SYSTEM_FIELDS = ("id", "createdAt", "updatedAt")

_COLLECTION_OPERATIONS = {
    Operation.READ: "read",
    Operation.WRITE: "write",
    Operation.DELETE: "delete",
}


def can_access_collection(
    principal: Principal | None,
    collection: "CollectionSpec",
    operation: Operation,
) -> bool:
    """Collection-level gate."""
    if principal is None or not principal.roles:
        return False
    op_name = _COLLECTION_OPERATIONS.get(operation)
    if op_name is None:
        return False
    return principal.has_any(collection.roles_for(op_name))


def authorize_collection(
    principal: Principal | None,
    collection: "CollectionSpec",
    operation: Operation,
) -> None:
    """Raise AccessDeniedError unless the collection gate passes."""
    if not can_access_collection(principal, collection, operation):
        raise AccessDeniedError(
            f"Not permitted to {operation.value} '{collection.name}'"
        )


def authorize_action(principal: Principal | None, action: "ActionSpec") -> None:
    """Raise AccessDeniedError unless the principal holds a required role."""
    if principal is None or not principal.has_any(action.roles):
        raise AccessDeniedError(f"Not permitted to run '{action.name}'")


def is_readable(principal: Principal | None, field_spec: "FieldSpec") -> bool:
    read_roles = field_spec.permissions.read
    if not read_roles:
        return True
    return principal is not None and principal.has_any(read_roles)


def is_writable(principal: Principal | None, field_spec: "FieldSpec") -> bool:
    write_roles = field_spec.permissions.write
    if not write_roles:
        return False
    return principal is not None and principal.has_any(write_roles)


def readable_fields(
    principal: Principal | None, collection: "CollectionSpec"
) -> list["FieldSpec"]:
    return [f for f in collection.fields if is_readable(principal, f)]


def writable_fields(
    principal: Principal | None, collection: "CollectionSpec"
) -> list["FieldSpec"]:
    return [f for f in collection.fields if is_writable(principal, f)]


def get_field_access(principal: Principal | None, field_spec: "FieldSpec") -> dict[str, bool]:
    """Return the effective read/write access for a field.

    Returns:
        {"read": bool, "write": bool}
    """
    return {
        "read": is_readable(principal, field_spec),
        "write": is_writable(principal, field_spec),
    }


def apply_field_read_policy(
    record: dict[str, Any],
    collection: "CollectionSpec",
    principal: Principal | None,
) -> dict[str, Any]:
    """Keep only system fields and fields the principal can read.

    Keys that are not declared fields are dropped too, so stale payload
    entries never leak.
    """
    visible = {f.name for f in readable_fields(principal, collection)}
    return {
        k: v for k, v in record.items()
        if k in SYSTEM_FIELDS or k in visible
    }


def apply_field_write_policy(
    data: dict[str, Any],
    collection: "CollectionSpec",
    principal: Principal | None,
) -> dict[str, Any]:
    """Drop input fields the principal cannot write. Never raises."""
    writable = {f.name for f in writable_fields(principal, collection)}
    return {k: v for k, v in data.items() if k in writable}


def require_readable(
    principal: Principal | None,
    collection: "CollectionSpec",
    field_names: Iterable[str],
    purpose: str = "filtering",
) -> None:
    """Reject references to fields the principal cannot read.

    Unknown fields get the same error as hidden ones, so the response does
    not reveal whether a hidden field exists.
    """
    for name in field_names:
        if name in SYSTEM_FIELDS:
            continue
        readable_field(principal, collection, name, purpose)


def readable_field(
    principal: Principal | None,
    collection: "CollectionSpec",
    name: str,
    purpose: str = "filtering",
) -> "FieldSpec":
    """Look up a payload field the principal may read, or raise AccessDeniedError."""
    field_spec = collection.get_field(name)
    if field_spec is None or not is_readable(principal, field_spec):
        raise AccessDeniedError(
            f"Field '{name}' is not available for {purpose}",
            field=name,
        )
    return field_spec


def visible_collections(
    principal: Principal | None, collections: Iterable["CollectionSpec"]
) -> list["CollectionSpec"]:
    """Collections the principal may read, in registry order."""
    return [c for c in collections if can_access_collection(principal, c, Operation.READ)]
