"""Schema validation of record payloads and action input.

Pure functions: type checks against each field's semantic type and required
checks on the full record. Checks that need storage (relation targets,
unique values) run in the record service.
"""

from typing import Any, Iterable

from fieldgate.errors import FieldIssue
from fieldgate.metadata.fields import FieldSpec


def check_values(fields: Iterable[FieldSpec], data: dict[str, Any]) -> list[FieldIssue]:
    """Type-check every submitted value against its field.

    Keys with no matching field are reported as UNKNOWN_FIELD.
    """
    by_name = {f.name: f for f in fields}
    issues: list[FieldIssue] = []
    for name, value in data.items():
        field_spec = by_name.get(name)
        if field_spec is None:
            issues.append(
                FieldIssue(message=f"Unknown field '{name}'", code="UNKNOWN_FIELD", field=name)
            )
            continue
        if value is None:
            continue
        problem = field_spec.check_value(value)
        if problem:
            issues.append(
                FieldIssue(
                    message=f"{field_spec.label} {problem}",
                    code="TYPE_MISMATCH",
                    field=name,
                )
            )
    return issues


def check_required(fields: Iterable[FieldSpec], record: dict[str, Any]) -> list[FieldIssue]:
    """Report required fields that are missing or null in the full record."""
    return [
        FieldIssue(message=f"{f.label} is required", code="REQUIRED", field=f.name)
        for f in fields
        if f.required and record.get(f.name) is None
    ]


def validate_input(fields: Iterable[FieldSpec], data: dict[str, Any]) -> list[FieldIssue]:
    """Validate a complete input form (used for action input)."""
    field_list = list(fields)
    return check_values(field_list, data) + check_required(field_list, data)
