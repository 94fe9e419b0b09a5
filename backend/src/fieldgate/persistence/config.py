"""Database configuration and record store factory."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fieldgate.persistence.adapter import RecordStore


@dataclass
class DatabaseConfig:
    """Database connection configuration.

    Supports sqlite:/// and memory:// URL schemes.
    """

    url: str

    @classmethod
    def from_env(cls, base_path: Path | None = None) -> DatabaseConfig:
        """Create config from environment variables.

        Resolution order:
        1. DATABASE_URL env var (standard)
        2. FIELDGATE_DB_PATH env var (converted to sqlite:/// URL)
        3. Default: sqlite:///{base_path}/data/fieldgate.db
        """
        url = os.environ.get("DATABASE_URL")
        if url:
            return cls(url=url)

        db_path = os.environ.get("FIELDGATE_DB_PATH")
        if db_path:
            return cls(url=f"sqlite:///{db_path}")

        if base_path:
            return cls(url=f"sqlite:///{base_path / 'data' / 'fieldgate.db'}")

        return cls(url="sqlite:///fieldgate.db")

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def is_memory(self) -> bool:
        return self.url.startswith("memory://")

    @property
    def sqlite_path(self) -> str | None:
        """Filesystem path of a file-backed SQLite database, else None."""
        if not self.is_sqlite:
            return None
        path = self.url.replace("sqlite:///", "", 1)
        if not path or path == ":memory:" or path == self.url:
            return None
        return path


def create_store(config: DatabaseConfig) -> RecordStore:
    """Create a record store based on the database URL scheme.

    Args:
        config: Database configuration with URL.

    Returns:
        A RecordStore instance (not yet connected).

    Raises:
        ValueError: For unsupported URL schemes.
    """
    if config.is_memory:
        from fieldgate.persistence.memory import MemoryRecordStore

        return MemoryRecordStore()

    if config.is_sqlite:
        from fieldgate.persistence.sqlite import SQLiteRecordStore

        sqlite_path = config.sqlite_path
        if sqlite_path:
            Path(sqlite_path).parent.mkdir(parents=True, exist_ok=True)
        return SQLiteRecordStore(config.url)

    raise ValueError(f"Unsupported database URL scheme: {config.url}")
