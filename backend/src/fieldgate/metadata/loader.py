"""Load collection and action definitions from YAML files.

Loading is two-phase. Phase 1 parses every unit independently; a unit that
fails to parse is recorded as a DefinitionError and skipped. Phase 2
validates the surviving units against each other (name collisions, relation
targets). The loader only returns data; installing it is the registry's job.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from fieldgate.errors import DefinitionError
from fieldgate.metadata.definitions import (
    ActionSpec,
    CollectionSpec,
    make_action,
    make_collection,
)
from fieldgate.metadata.fields import FieldSpec, build_field, permission_rule, ui_hint
from fieldgate.metadata.validator import UNIT_DIRS, validate_document

logger = logging.getLogger(__name__)


@dataclass
class LoadResult:
    """Outcome of loading one project.

    Attributes:
        collections: Valid collection specs, in load order
        actions: Valid action specs, in load order
        errors: DefinitionErrors for every rejected unit, in load order
    """

    collections: list[CollectionSpec] = field(default_factory=list)
    actions: list[ActionSpec] = field(default_factory=list)
    errors: list[DefinitionError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class DefinitionLoader:
    """Loads the definition units of a single project directory.

    Layout::

        <project_root>/
            collections/*.yaml   (top-level key ``collection``)
            actions/*.yaml       (top-level key ``action``)
    """

    def __init__(self, project_root: Path):
        self.project_root = Path(project_root)

    def load(self) -> LoadResult:
        """Load all units. Never raises for a bad unit."""
        result = LoadResult()
        parsed: list[CollectionSpec | ActionSpec] = []

        # Phase 1: parse each unit on its own
        for subdir, kind in UNIT_DIRS.items():
            unit_dir = self.project_root / subdir
            if not unit_dir.is_dir():
                continue
            for path in sorted(unit_dir.glob("*.yaml")):
                try:
                    parsed.append(self._parse_unit(path, kind))
                except DefinitionError as e:
                    if e.source is None:
                        e.source = str(path)
                    result.errors.append(e)

        # Phase 2: cross-unit validation
        self._validate(parsed, result)

        for error in result.errors:
            logger.warning("Definition rejected: %s", error)
        logger.info(
            "Loaded %d collection(s) and %d action(s) from %s (%d error(s))",
            len(result.collections),
            len(result.actions),
            self.project_root,
            len(result.errors),
        )
        return result

    def _parse_unit(self, path: Path, kind: str) -> CollectionSpec | ActionSpec:
        source = str(path)
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise DefinitionError(f"Cannot read definition: {e}", source=source) from e

        if not isinstance(data, dict):
            raise DefinitionError("Definition must be a mapping", source=source)

        issues = validate_document(data, kind, path)
        if issues:
            first = issues[0]
            loc = f" at {first.path}" if first.path else ""
            raise DefinitionError(f"Malformed {kind}{loc}: {first.message}", source=source)

        try:
            if kind == "collection":
                return self._resolve_collection(data, source)
            return self._resolve_action(data, source)
        except DefinitionError as e:
            e.source = source
            raise

    def _resolve_collection(self, data: dict, source: str) -> CollectionSpec:
        return make_collection(
            data["collection"],
            fields=[self._resolve_field(f) for f in data.get("fields", [])],
            roles=data["roles"],
            title=data.get("title"),
            singleton=data.get("singleton", False),
            snapshots=data.get("snapshots", True),
            template=data.get("template"),
            access=data.get("access"),
            label_field=data.get("labelField"),
            source=source,
        )

    def _resolve_action(self, data: dict, source: str) -> ActionSpec:
        return make_action(
            data["action"],
            fields=[self._resolve_field(f) for f in data.get("fields", [])],
            roles=data["roles"],
            title=data.get("title"),
            handler=data.get("handler"),
            source=source,
        )

    def _resolve_field(self, data: dict) -> FieldSpec:
        """Convert a field dict to a FieldSpec."""
        validation: dict[str, Any] = data.get("validation", {})
        perm_data = data.get("permissions") or {}
        relation = data.get("relation")

        return build_field(
            data["name"],
            data["type"],
            label=data.get("label"),
            values=data.get("values"),
            relation=relation.get("collection") if relation else None,
            searchable=data.get("searchable", False),
            required=validation.get("required", False),
            unique=validation.get("unique", False),
            min=validation.get("min"),
            max=validation.get("max"),
            max_length=validation.get("maxLength"),
            ui=ui_hint(data.get("ui")),
            permissions=permission_rule(perm_data.get("read"), perm_data.get("write")),
        )

    def _validate(
        self, parsed: list[CollectionSpec | ActionSpec], result: LoadResult
    ) -> None:
        # Collections and actions share one namespace; first registered wins
        claimed: dict[str, str | None] = {}
        accepted: list[CollectionSpec | ActionSpec] = []
        for spec in parsed:
            if spec.name in claimed:
                result.errors.append(
                    DefinitionError(
                        f"Name '{spec.name}' is already defined by {claimed[spec.name]}",
                        source=spec.source,
                    )
                )
                continue
            claimed[spec.name] = spec.source
            accepted.append(spec)

        # Rejecting a collection can leave other relations dangling; repeat
        # until stable
        rejected: dict[str, DefinitionError] = {}
        changed = True
        while changed:
            changed = False
            collection_names = {
                s.name for s in accepted
                if isinstance(s, CollectionSpec) and s.name not in rejected
            }
            for spec in accepted:
                if spec.name in rejected:
                    continue
                dangling = [
                    f for f in spec.fields
                    if f.type == "relation" and f.relation not in collection_names
                ]
                if dangling:
                    f = dangling[0]
                    rejected[spec.name] = DefinitionError(
                        f"Field '{f.name}' relates to unknown collection '{f.relation}'",
                        source=spec.source,
                        field=f.name,
                    )
                    changed = True

        for spec in accepted:
            if spec.name in rejected:
                result.errors.append(rejected[spec.name])
            elif isinstance(spec, CollectionSpec):
                result.collections.append(spec)
            else:
                result.actions.append(spec)


def load_projects(root: Path) -> dict[str, LoadResult]:
    """Load every project under *root*; each sub-directory is one project."""
    root = Path(root)
    results: dict[str, LoadResult] = {}
    if not root.is_dir():
        logger.warning("Projects directory does not exist: %s", root)
        return results
    for project_dir in sorted(p for p in root.iterdir() if p.is_dir()):
        if project_dir.name.startswith((".", "_")):
            continue
        results[project_dir.name] = DefinitionLoader(project_dir).load()
    return results
