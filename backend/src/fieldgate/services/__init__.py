"""Request orchestration for fieldgate."""

from fieldgate.services.records import MutationResult, Page, RecordService

__all__ = ["MutationResult", "Page", "RecordService"]
