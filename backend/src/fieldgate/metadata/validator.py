"""
JSON Schema validation for definition units.

Checks the *shape* of parsed collection/action YAML documents before the
loader builds specs from them.

Usage:
    from fieldgate.metadata.validator import validate_document, validate_project_dir

    issues = validate_project_dir(Path("projects/garage"))
    for issue in issues:
        print(issue)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

from fieldgate.metadata.schemas import DEFS_SCHEMA, SCHEMAS

logger = logging.getLogger(__name__)

# Map unit sub-directory → schema kind
UNIT_DIRS: dict[str, str] = {
    "collections": "collection",
    "actions": "action",
}


@dataclass
class ValidationIssue:
    """A single schema finding for a definition file."""

    file: Path
    message: str
    path: str = ""  # location within the document, e.g. "fields[0]/type"
    severity: str = "error"

    def __str__(self) -> str:
        loc = f" at {self.path}" if self.path else ""
        return f"[{self.severity.upper()}] {self.file}{loc}: {self.message}"


_validators: dict[str, Draft202012Validator] = {}


def _load_registry() -> Registry:
    resources = [
        (schema["$id"], Resource(contents=schema, specification=DRAFT202012))
        for schema in (DEFS_SCHEMA, *SCHEMAS.values())
    ]
    return Registry().with_resources(resources)


def _get_validator(kind: str) -> Draft202012Validator:
    if kind not in _validators:
        _validators[kind] = Draft202012Validator(SCHEMAS[kind], registry=_load_registry())
    return _validators[kind]


def _preprocess_yaml_keys(obj: Any) -> Any:
    """
    Recursively turn non-string keys into strings.

    PyYAML (YAML 1.1) parses bare keys such as ``on``/``yes`` as booleans and
    numeric keys as ints; JSON Schema only matches string keys.
    """
    if isinstance(obj, dict):
        result: dict[Any, Any] = {}
        for k, v in obj.items():
            if k is True:
                new_key = "on"
            elif k is False:
                new_key = "off"
            else:
                new_key = str(k)
            result[new_key] = _preprocess_yaml_keys(v)
        return result
    if isinstance(obj, list):
        return [_preprocess_yaml_keys(item) for item in obj]
    return obj


def _json_path(error: ValidationError) -> str:
    """Convert a jsonschema error path to a readable string."""
    parts = []
    for p in error.absolute_path:
        if isinstance(p, int):
            parts.append(f"[{p}]")
        else:
            parts.append(str(p))
    return "/".join(parts).replace("/[", "[")


def validate_document(doc: Any, kind: str, file: Path) -> list[ValidationIssue]:
    """Validate an already-parsed document against the named schema kind.

    Args:
        doc:  Parsed YAML content.
        kind: ``"collection"`` or ``"action"``.
        file: Source path, used for issue reporting.
    """
    validator = _get_validator(kind)
    doc = _preprocess_yaml_keys(doc)
    return [
        ValidationIssue(file=file, message=error.message, path=_json_path(error))
        for error in sorted(validator.iter_errors(doc), key=lambda e: list(e.path))
    ]


def validate_yaml_file(yaml_path: Path, kind: str) -> list[ValidationIssue]:
    """Parse and validate a single YAML file."""
    try:
        with yaml_path.open() as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        return [ValidationIssue(file=yaml_path, message=f"YAML parse error: {exc}")]

    if raw is None:
        return [
            ValidationIssue(file=yaml_path, message="File is empty or contains only whitespace")
        ]

    return validate_document(raw, kind, yaml_path)


def validate_project_dir(project_dir: Path) -> list[ValidationIssue]:
    """
    Validate every definition unit under *project_dir*.

    Walks ``collections/`` and ``actions/``, validating each ``.yaml`` file.

    Returns:
        A flat list of issues across all files; empty means all files are valid.
    """
    if not project_dir.is_dir():
        return [
            ValidationIssue(
                file=project_dir,
                message=f"Project directory does not exist: {project_dir}",
            )
        ]

    all_issues: list[ValidationIssue] = []
    for subdir, kind in UNIT_DIRS.items():
        target = project_dir / subdir
        if not target.is_dir():
            continue
        for yaml_file in sorted(target.glob("*.yaml")):
            all_issues.extend(validate_yaml_file(yaml_file, kind))

    if all_issues:
        logger.debug("Schema validation found %d issue(s) in %s", len(all_issues), project_dir)
    return all_issues
