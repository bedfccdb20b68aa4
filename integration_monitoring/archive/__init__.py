"""Report archive."""

from .archive_store import ArchivedReport, ArchiveStats, ArchiveStore

__all__ = ["ArchiveStats", "ArchiveStore", "ArchivedReport"]
