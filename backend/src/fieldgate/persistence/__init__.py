"""Persistence layer - record stores and storage entities."""

from fieldgate.persistence.adapter import Link, Record, RecordStore, Snapshot
from fieldgate.persistence.config import DatabaseConfig, create_store

__all__ = ["Link", "Record", "RecordStore", "Snapshot", "DatabaseConfig", "create_store"]
