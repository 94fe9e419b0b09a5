"""Process-wide registry of loaded collections and actions.

A Registry is immutable once built. Reloading builds a complete new Registry
off to the side and installs it with a single reference assignment, so
concurrent readers see either the old or the new registry, never a mix.
"""

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Iterator, Mapping

from fieldgate.errors import DefinitionError, NotFoundError
from fieldgate.metadata.definitions import ActionSpec, CollectionSpec
from fieldgate.metadata.loader import LoadResult, load_projects

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectSchema:
    name: str
    collections: Mapping[str, CollectionSpec]
    actions: Mapping[str, ActionSpec]


@dataclass(frozen=True)
class Registry:
    projects: tuple[str, ...] = ()
    schemas: Mapping[str, ProjectSchema] = field(
        default_factory=lambda: MappingProxyType({})
    )
    errors: tuple[DefinitionError, ...] = ()
    generation: int = 0

    def project(self, project: str) -> ProjectSchema:
        schema = self.schemas.get(project)
        if schema is None:
            raise NotFoundError(f"Project '{project}' not found")
        return schema

    def get_collection(self, project: str, name: str) -> CollectionSpec:
        spec = self.project(project).collections.get(name)
        if spec is None:
            raise NotFoundError(f"Collection '{name}' not found")
        return spec

    def get_action(self, project: str, name: str) -> ActionSpec:
        spec = self.project(project).actions.get(name)
        if spec is None:
            raise NotFoundError(f"Action '{name}' not found")
        return spec

    def find_collection(self, project: str, name: str) -> CollectionSpec | None:
        schema = self.schemas.get(project)
        return schema.collections.get(name) if schema else None

    def iter_collections(self, project: str) -> Iterator[CollectionSpec]:
        return iter(self.project(project).collections.values())

    def iter_actions(self, project: str) -> Iterator[ActionSpec]:
        return iter(self.project(project).actions.values())


def build_registry(results: Mapping[str, LoadResult], generation: int = 1) -> Registry:
    """Build an immutable Registry from per-project load results."""
    schemas: dict[str, ProjectSchema] = {}
    errors: list[DefinitionError] = []
    for project, result in results.items():
        schemas[project] = ProjectSchema(
            name=project,
            collections=MappingProxyType({c.name: c for c in result.collections}),
            actions=MappingProxyType({a.name: a for a in result.actions}),
        )
        errors.extend(result.errors)
    return Registry(
        projects=tuple(results.keys()),
        schemas=MappingProxyType(schemas),
        errors=tuple(errors),
        generation=generation,
    )


class RegistryHolder:
    """Holds the live Registry and swaps it atomically on reload.

    Readers call ``holder.current`` and keep the returned reference for the
    rest of their request. Only writers take the lock.
    """

    def __init__(self, registry: Registry | None = None, projects_path: Path | None = None):
        self._registry = registry or Registry()
        self._projects_path = projects_path
        self._lock = threading.Lock()

    @property
    def current(self) -> Registry:
        return self._registry

    @property
    def generation(self) -> int:
        return self._registry.generation

    def install(self, results: Mapping[str, LoadResult]) -> Registry:
        """Build a registry from load results and make it live."""
        with self._lock:
            registry = build_registry(results, generation=self._registry.generation + 1)
            self._registry = registry
        logger.info(
            "Installed registry generation %d: %d project(s), %d load error(s)",
            registry.generation,
            len(registry.projects),
            len(registry.errors),
        )
        return registry

    def reload(self, projects_path: Path | None = None) -> Registry:
        """Reload every project from disk and swap in the result."""
        path = projects_path or self._projects_path
        if path is None:
            raise ValueError("No projects path configured for reload")
        self._projects_path = path
        return self.install(load_projects(path))

    @classmethod
    def from_path(cls, projects_path: Path) -> "RegistryHolder":
        holder = cls(projects_path=projects_path)
        holder.reload()
        return holder
