"""Runtime settings, read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from fieldgate.persistence.config import DatabaseConfig
from fieldgate.query.translator import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

_TRUE = ("1", "true", "yes", "on")


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        parsed = int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None
    if parsed < 1:
        raise ValueError(f"{name} must be positive, got {parsed}")
    return parsed


@dataclass
class Settings:
    """Process configuration.

    Attributes:
        projects_path: Directory holding one sub-directory per project
        database: Record store configuration
        default_page_size: Page size when a request gives none
        max_page_size: Hard ceiling; larger requests are clamped
        snapshot_failure_fatal: Abort a mutation when its snapshot fails
        secret_key: JWT signing key
        auth_disabled: Take roles from the X-Roles header (development only)
        admin_role: Role allowed to reload the registry over HTTP
    """

    projects_path: Path = field(default_factory=lambda: Path("projects"))
    database: DatabaseConfig = field(default_factory=lambda: DatabaseConfig(url="memory://"))
    default_page_size: int = DEFAULT_PAGE_SIZE
    max_page_size: int = MAX_PAGE_SIZE
    snapshot_failure_fatal: bool = False
    secret_key: str = "dev-secret-key-change-in-production"
    auth_disabled: bool = False
    admin_role: str = "admin"

    @classmethod
    def from_env(cls, base_path: Path | None = None) -> Settings:
        """Create settings from FIELDGATE_* environment variables."""
        if base_path is None:
            cwd = Path.cwd()
            base_path = cwd.parent if cwd.name == "backend" else cwd

        projects_path = os.environ.get("FIELDGATE_PROJECTS_PATH")
        default_page_size = _env_int("FIELDGATE_DEFAULT_PAGE_SIZE", DEFAULT_PAGE_SIZE)
        max_page_size = _env_int("FIELDGATE_MAX_PAGE_SIZE", MAX_PAGE_SIZE)

        return cls(
            projects_path=Path(projects_path) if projects_path else base_path / "projects",
            database=DatabaseConfig.from_env(base_path),
            default_page_size=min(default_page_size, max_page_size),
            max_page_size=max_page_size,
            snapshot_failure_fatal=_env_flag("FIELDGATE_SNAPSHOT_FAILURE_FATAL"),
            secret_key=os.environ.get(
                "FIELDGATE_SECRET_KEY", "dev-secret-key-change-in-production"
            ),
            auth_disabled=_env_flag("FIELDGATE_DISABLE_AUTH"),
            admin_role=os.environ.get("FIELDGATE_ADMIN_ROLE", "admin"),
        )
