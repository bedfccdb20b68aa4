"""Error event ingestion and time-windowed aggregation."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

import structlog

from ..enums import Provider
from ..errors import IngestionError
from ..periods import Clock, Period, month_period, utcnow


logger = structlog.get_logger(__name__)


@dataclass
class ErrorRecord:
    """A single error reported by an upstream integration.

    Only the resolution fields change after creation.
    """
    id: str
    provider: Provider
    timestamp: datetime
    category: str
    severity: str
    message: str
    stack_trace: Optional[str] = None
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "provider": self.provider.value,
            "timestamp": self.timestamp.isoformat(),
            "category": self.category,
            "severity": self.severity,
            "message": self.message,
            "stack_trace": self.stack_trace,
            "resolved": self.resolved,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "metadata": self.metadata,
        }


@dataclass
class ProviderStats:
    """Aggregate counts for one provider over a window."""
    total: int = 0
    by_category: Dict[str, int] = field(default_factory=dict)
    by_severity: Dict[str, int] = field(default_factory=dict)
    resolved: int = 0
    pending: int = 0

    def tally(self, record: ErrorRecord) -> None:
        self.total += 1
        self.by_category[record.category] = self.by_category.get(record.category, 0) + 1
        self.by_severity[record.severity] = self.by_severity.get(record.severity, 0) + 1
        if record.resolved:
            self.resolved += 1
        else:
            self.pending += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "by_category": dict(self.by_category),
            "by_severity": dict(self.by_severity),
            "resolution": {"resolved": self.resolved, "pending": self.pending},
        }


@dataclass
class ErrorReport:
    period: Period
    providers: Dict[Provider, ProviderStats]
    errors: List[ErrorRecord]

    def errors_for(self, provider: Provider) -> List[ErrorRecord]:
        return [record for record in self.errors if record.provider == provider]

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.period.to_dict(),
            "providers": {provider.value: stats.to_dict() for provider, stats in self.providers.items()},
            "errors": [record.to_dict() for record in self.errors],
        }


class ErrorCollector:
    """Owns the error record set and answers aggregate queries over it."""

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or utcnow
        self._errors: List[ErrorRecord] = []
        self._by_id: Dict[str, ErrorRecord] = {}

    def __len__(self) -> int:
        return len(self._errors)

    def add_error(
        self,
        provider: "Provider | str",
        category: str,
        severity: str,
        message: str,
        stack_trace: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ErrorRecord:
        """Append an error record stamped with the current time."""
        if not provider:
            raise IngestionError("Error event is missing a provider")
        if not message:
            raise IngestionError("Error event is missing a message")

        record = ErrorRecord(
            id=str(uuid.uuid4()),
            provider=Provider.coerce(provider),
            timestamp=self._clock(),
            category=category,
            severity=severity,
            message=message,
            stack_trace=stack_trace,
            metadata=dict(metadata or {}),
        )
        self._errors.append(record)
        self._by_id[record.id] = record

        logger.debug("Recorded error",
                     error_id=record.id,
                     provider=record.provider.value,
                     category=category,
                     severity=severity)
        return record

    def ingest(
        self,
        provider: "Provider | str",
        category: str,
        severity: str,
        message: str,
        stack_trace: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[ErrorRecord]:
        """Producer-facing ingestion. Malformed events are logged and dropped."""
        try:
            return self.add_error(provider, category, severity, message, stack_trace, metadata)
        except IngestionError as e:
            logger.warning("Dropped malformed error event",
                           provider=provider,
                           category=category,
                           error=str(e))
            return None

    def get_error_report(self, start: datetime, end: datetime) -> ErrorReport:
        """Records with ``start <= timestamp <= end`` and per-provider stats."""
        period = Period(start=start, end=end)
        providers = {provider: ProviderStats() for provider in Provider}
        matching: List[ErrorRecord] = []

        for record in self._errors:
            if not period.contains(record.timestamp):
                continue
            matching.append(record)
            providers[record.provider].tally(record)

        return ErrorReport(period=period, providers=providers, errors=matching)

    def query_stats(
        self,
        start: datetime,
        end: datetime,
        provider: "Provider | str | None" = None,
    ) -> "ProviderStats | Dict[Provider, ProviderStats]":
        report = self.get_error_report(start, end)
        if provider is None:
            return report.providers
        return report.providers[Provider.coerce(provider)]

    def get_monthly_report(self, year: int, month: int) -> ErrorReport:
        period = month_period(year, month, tz=self._clock().tzinfo)
        return self.get_error_report(period.start, period.end)

    def resolve_error(self, error_id: str) -> bool:
        """Mark an error resolved. Returns False when the id is unknown."""
        record = self._by_id.get(error_id)
        if record is None:
            logger.warning("Error not found", error_id=error_id)
            return False
        if not record.resolved:
            record.resolved = True
            record.resolved_at = self._clock()
        return True

    def get_errors_by_provider(self, provider: "Provider | str") -> List[ErrorRecord]:
        target = Provider.coerce(provider)
        return [record for record in self._errors if record.provider == target]

    def get_unresolved_errors(self) -> List[ErrorRecord]:
        return [record for record in self._errors if not record.resolved]

    def clear_old_errors(self, days_to_keep: int) -> int:
        """Retention sweep. Returns the number of records removed."""
        cutoff = self._clock() - timedelta(days=days_to_keep)
        kept = [record for record in self._errors if record.timestamp > cutoff]
        removed = len(self._errors) - len(kept)
        self._errors = kept
        self._by_id = {record.id: record for record in kept}

        if removed:
            logger.info("Cleared old errors", removed=removed, days_to_keep=days_to_keep)
        return removed

    def records(self) -> Iterable[ErrorRecord]:
        return iter(self._errors)
