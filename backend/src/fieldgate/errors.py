"""Error taxonomy for fieldgate.

Load-time errors (DefinitionError) are collected by the loader and never
abort startup. Every other error terminates the request that raised it and
is mapped to an HTTP status by the API layer.
"""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class FieldIssue:
    """A single field-level problem found while validating input.

    Attributes:
        message: Human-readable message
        code: Machine-readable code (e.g., "TYPE_MISMATCH")
        field: Field name, or None for record-level problems
        operator: Query operator involved, if any
    """

    message: str
    code: str
    field: str | None = None
    operator: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "field": self.field,
            "operator": self.operator,
        }


class FieldgateError(Exception):
    """Base class for all fieldgate errors."""

    code = "ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        field: str | None = None,
        operator: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.field = field
        self.operator = operator

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.field is not None:
            result["field"] = self.field
        if self.operator is not None:
            result["operator"] = self.operator
        return result


class DefinitionError(FieldgateError):
    """A collection or action definition could not be loaded."""

    code = "DEFINITION_ERROR"

    def __init__(self, message: str, *, source: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.source = source

    def __str__(self) -> str:
        if self.source:
            return f"{self.source}: {self.message}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["source"] = self.source
        return result


class NotFoundError(FieldgateError):
    code = "NOT_FOUND"
    status_code = 404


class AccessDeniedError(FieldgateError):
    code = "ACCESS_DENIED"
    status_code = 403


class ValidationError(FieldgateError):
    """Input failed type, operator or relation checks.

    Carries one FieldIssue per problem so callers can point at the
    offending field and operator.
    """

    code = "VALIDATION_ERROR"
    status_code = 422

    def __init__(self, issues: list[FieldIssue] | str, **kwargs: Any):
        if isinstance(issues, str):
            issues = [
                FieldIssue(
                    message=issues,
                    code=kwargs.get("code") or self.code,
                    field=kwargs.get("field"),
                    operator=kwargs.get("operator"),
                )
            ]
        self.issues = list(issues)
        first = self.issues[0] if self.issues else None
        kwargs.setdefault("field", first.field if first else None)
        kwargs.setdefault("operator", first.operator if first else None)
        message = "; ".join(i.message for i in self.issues) or "Validation failed"
        super().__init__(message, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["issues"] = [i.to_dict() for i in self.issues]
        return result


class ConflictError(FieldgateError):
    code = "CONFLICT"
    status_code = 409


class StorageError(FieldgateError):
    """Raised by (or on behalf of) the storage collaborator."""

    code = "STORAGE_ERROR"
    status_code = 502


class UpstreamTimeoutError(StorageError):
    """The storage call timed out. Idempotent reads may be retried."""

    code = "UPSTREAM_TIMEOUT"
    status_code = 504


class OperationCancelledError(FieldgateError):
    """The caller cancelled a write before it was persisted."""

    code = "CANCELLED"
    status_code = 499
