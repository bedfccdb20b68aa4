"""Archive of generated monthly reports."""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from ..config import ArchiveConfig
from ..errors import ArchiveWriteError
from ..periods import Clock, subtract_months, utcnow
from ..reporting.report_generator import MonthlyReportSnapshot, report_file_name


logger = structlog.get_logger(__name__)


@dataclass
class ArchivedReport:
    """A stored report plus the metadata derived when it was archived."""
    id: str
    provider: str
    year: int
    month: int
    file_name: str
    file_size: int
    created_at: datetime
    report_data: Dict[str, Any]
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def report_date(self) -> datetime:
        return datetime(self.year, self.month, 1, tzinfo=self.created_at.tzinfo)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "provider": self.provider,
            "year": self.year,
            "month": self.month,
            "file_name": self.file_name,
            "file_size": self.file_size,
            "created_at": self.created_at.isoformat(),
            "report_data": self.report_data,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class ArchiveStats:
    total_reports: int
    total_size: int
    oldest_report: Optional[datetime]
    latest_report: Optional[datetime]
    reports_by_provider: Dict[str, int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_reports": self.total_reports,
            "total_size": self.total_size,
            "oldest_report": self.oldest_report.isoformat() if self.oldest_report else None,
            "latest_report": self.latest_report.isoformat() if self.latest_report else None,
            "reports_by_provider": dict(self.reports_by_provider),
        }


def _report_payload(report: Any) -> Dict[str, Any]:
    if isinstance(report, MonthlyReportSnapshot):
        return report.to_dict()
    if isinstance(report, dict):
        return report
    raise TypeError(f"Cannot archive report of type {type(report).__name__}")


def _report_month(data: Dict[str, Any]) -> tuple:
    start = datetime.fromisoformat(data["period"]["start_date"])
    return start.year, start.month


class ArchiveStore:
    """In-memory report archive keyed by id, optionally mirrored to disk."""

    def __init__(self, config: Optional[ArchiveConfig] = None, clock: Optional[Clock] = None):
        self.config = config or ArchiveConfig()
        self._clock = clock or utcnow
        self.reports: Dict[str, ArchivedReport] = {}
        self.pending_writes: List[ArchivedReport] = []

        self.archive_dir: Optional[Path] = None
        if self.config.directory:
            self.archive_dir = Path(self.config.directory)
            self.archive_dir.mkdir(parents=True, exist_ok=True)

    def archive_report(self, provider: str, report: Any, generated_by: str) -> ArchivedReport:
        """Store ``report`` under a fresh id.

        Raises:
            ArchiveWriteError: If the report cannot be serialized, or the
                directory mirror fails. In the latter case the report is
                kept in memory and queued for ``retry_pending_writes``.
        """
        try:
            data = _report_payload(report)
            payload = json.dumps(data, indent=2)
            year, month = _report_month(data)
        except (TypeError, ValueError, KeyError) as e:
            logger.error("Failed to serialize report", provider=provider, error=str(e))
            raise ArchiveWriteError(f"Failed to serialize report for {provider}: {e}") from e

        archived = ArchivedReport(
            id=str(uuid.uuid4()),
            provider=str(provider),
            year=year,
            month=month,
            file_name=report_file_name(provider, year, month),
            file_size=len(payload.encode("utf-8")),
            created_at=self._clock(),
            report_data=data,
            metadata={
                "total_errors": data.get("total_errors", 0),
                "total_cost": data.get("charges", {}).get("total_amount", 0.0),
                "generated_by": generated_by,
                "version": self.config.version,
            },
        )
        self.reports[archived.id] = archived

        if self.archive_dir is not None:
            try:
                self._write(archived, payload)
            except OSError as e:
                self.pending_writes.append(archived)
                logger.error("Failed to write archived report",
                             report_id=archived.id,
                             file_name=archived.file_name,
                             error=str(e))
                raise ArchiveWriteError(
                    f"Failed to write {archived.file_name}: {e}", report_id=archived.id
                ) from e

        logger.info("Archived report",
                    report_id=archived.id,
                    provider=archived.provider,
                    file_name=archived.file_name,
                    file_size=archived.file_size)
        return archived

    def _path_for(self, archived: ArchivedReport) -> Path:
        return self.archive_dir / f"{archived.id}-{archived.file_name}"

    def _write(self, archived: ArchivedReport, payload: str) -> None:
        with open(self._path_for(archived), "w", encoding="utf-8") as f:
            f.write(payload)
        logger.debug("Saved archived report", report_id=archived.id)

    def retry_pending_writes(self) -> int:
        """Re-attempt buffered directory writes; returns how many succeeded."""
        if self.archive_dir is None or not self.pending_writes:
            return 0

        still_pending: List[ArchivedReport] = []
        written = 0
        for archived in self.pending_writes:
            if archived.id not in self.reports:
                continue
            try:
                self._write(archived, json.dumps(archived.report_data, indent=2))
                written += 1
            except OSError as e:
                logger.warning("Retry of archived report write failed",
                               report_id=archived.id,
                               error=str(e))
                still_pending.append(archived)

        self.pending_writes = still_pending
        logger.info("Retried pending archive writes", written=written, pending=len(still_pending))
        return written

    def get_report(self, report_id: str) -> Optional[ArchivedReport]:
        return self.reports.get(report_id)

    def get_reports_by_provider(
        self,
        provider: str,
        year: Optional[int] = None,
        month: Optional[int] = None,
    ) -> List[ArchivedReport]:
        """Reports for ``provider``, newest report month first."""
        matches = [
            r for r in self.reports.values()
            if r.provider == str(provider)
            and (year is None or r.year == year)
            and (month is None or r.month == month)
        ]
        return sorted(matches, key=lambda r: (r.year, r.month), reverse=True)

    def search_archive(self, query: str) -> List[ArchivedReport]:
        needle = query.lower()
        results = []
        for report in self.reports.values():
            haystack = " ".join([
                report.provider.lower(),
                report.file_name.lower(),
                str(report.metadata.get("generated_by", "")).lower(),
                str(report.year),
                str(report.month),
            ])
            if needle in haystack:
                results.append(report)
        return results

    def get_archive_stats(self) -> ArchiveStats:
        reports = list(self.reports.values())
        by_provider: Dict[str, int] = {}
        for report in reports:
            by_provider[report.provider] = by_provider.get(report.provider, 0) + 1

        dates = [report.report_date for report in reports]
        return ArchiveStats(
            total_reports=len(reports),
            total_size=sum(report.file_size for report in reports),
            oldest_report=min(dates) if dates else None,
            latest_report=max(dates) if dates else None,
            reports_by_provider=by_provider,
        )

    def delete_report(self, report_id: str) -> bool:
        archived = self.reports.pop(report_id, None)
        if archived is None:
            return False
        if self.archive_dir is not None:
            self._path_for(archived).unlink(missing_ok=True)
        logger.info("Deleted archived report", report_id=report_id)
        return True

    def clear_old_reports(self, months_to_keep: Optional[int] = None) -> int:
        """Delete reports whose report month starts before now minus ``months_to_keep``."""
        months = months_to_keep if months_to_keep is not None else self.config.months_to_keep
        cutoff = subtract_months(self._clock(), months)

        expired = [r.id for r in self.reports.values() if r.report_date < cutoff]
        for report_id in expired:
            self.delete_report(report_id)

        if expired:
            logger.info("Cleared old archived reports", removed=len(expired), months_to_keep=months)
        return len(expired)
