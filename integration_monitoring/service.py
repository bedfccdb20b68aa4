"""Pipeline assembly and the caller-facing API."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog

from .archive.archive_store import ArchivedReport, ArchiveStore
from .billing.billing_engine import BillingEngine, ProviderBill
from .collector.error_collector import ErrorCollector, ErrorRecord, ProviderStats
from .config import MonitoringConfig
from .enums import Provider
from .escalation.connectivity import ConnectivityProbe, HttpHealthProbe
from .escalation.monitor import EscalationMonitor
from .notifications.channels import NotificationChannel, RelayChannel
from .notifications.dispatcher import NotificationDispatcher
from .periods import Clock, utcnow
from .reporting.report_generator import MonthlyReportSnapshot, ReportGenerator
from .reporting.status_report import HttpUnitSource, OperationalRequest, RequestBuffer, UnitSource
from .scheduler.report_scheduler import ReportScheduler


logger = structlog.get_logger(__name__)


@dataclass
class MonitoringPipeline:
    """Every component, constructed once and sharing references."""
    config: MonitoringConfig
    collector: ErrorCollector
    billing: BillingEngine
    dispatcher: NotificationDispatcher
    escalation: EscalationMonitor
    generator: ReportGenerator
    archive_store: ArchiveStore
    requests: RequestBuffer
    scheduler: ReportScheduler
    clock: Clock = utcnow

    async def start(self):
        self.dispatcher.start()
        await self.scheduler.start()
        logger.info("Monitoring pipeline started", environment=self.config.environment)

    async def stop(self):
        await self.scheduler.stop()
        await self.dispatcher.stop()
        logger.info("Monitoring pipeline stopped")

    def ingest(
        self,
        provider: "Provider | str",
        category: str,
        severity: str,
        message: str,
        stack_trace: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[ErrorRecord]:
        return self.collector.ingest(provider, category, severity, message, stack_trace, metadata)

    def query_stats(
        self,
        start: datetime,
        end: datetime,
        provider: "Provider | str | None" = None,
    ) -> "ProviderStats | Dict[Provider, ProviderStats]":
        return self.collector.query_stats(start, end, provider)

    def compute_bill(self, provider: "Provider | str", error_count: int) -> ProviderBill:
        return self.billing.calculate_provider_bill(Provider.coerce(provider).value, error_count)

    def generate_monthly_report(self, provider: "Provider | str", year: int, month: int) -> MonthlyReportSnapshot:
        return self.generator.generate_monthly_report(provider, year, month)

    async def run_scheduled_cycle(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        return await self.scheduler.run_scheduled_cycle(now)

    def archive(self, report: MonthlyReportSnapshot, generated_by: Optional[str] = None) -> ArchivedReport:
        return self.archive_store.archive_report(
            report.provider, report, generated_by or self.config.archive.generated_by
        )

    def list_archived(
        self,
        provider: "Provider | str | None" = None,
        year: Optional[int] = None,
        month: Optional[int] = None,
        query: Optional[str] = None,
    ) -> List[ArchivedReport]:
        """Archived reports filtered by provider/period and/or a search query."""
        if provider is not None:
            reports = self.archive_store.get_reports_by_provider(Provider.coerce(provider).value, year, month)
        else:
            reports = sorted(
                (r for r in self.archive_store.reports.values()
                 if (year is None or r.year == year) and (month is None or r.month == month)),
                key=lambda r: (r.year, r.month),
                reverse=True,
            )
        if query:
            matches = {r.id for r in self.archive_store.search_archive(query)}
            reports = [r for r in reports if r.id in matches]
        return reports

    def record_request(
        self,
        action: str,
        unit_number: str,
        actor: str,
        resident_name: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> OperationalRequest:
        request = OperationalRequest(
            action=action.upper(),
            unit_number=unit_number,
            actor=actor,
            timestamp=self.clock(),
            resident_name=resident_name,
            reason=reason,
        )
        self.requests.add(request)
        return request


def build_pipeline(
    config: MonitoringConfig,
    channel: Optional[NotificationChannel] = None,
    probe: Optional[ConnectivityProbe] = None,
    unit_source: Optional[UnitSource] = None,
    clock: Optional[Clock] = None,
) -> MonitoringPipeline:
    """Construct the pipeline. Collaborators default to the HTTP implementations."""
    clock = clock or utcnow

    if channel is None:
        channel = RelayChannel(config.notifications)
    if probe is None and config.probe.health_url:
        probe = HttpHealthProbe(config.probe.health_url, config.probe.timeout_seconds)
    if unit_source is None and config.units.api_url:
        unit_source = HttpUnitSource(config.units)

    collector = ErrorCollector(clock=clock)
    billing = BillingEngine.from_config(config.billing)
    dispatcher = NotificationDispatcher(channel, config.notifications)
    escalation = EscalationMonitor(dispatcher, config.escalation, clock=clock)
    generator = ReportGenerator(
        collector,
        billing,
        unit_source=unit_source,
        clock=clock,
        currency_symbol=config.billing.currency_symbol,
        timezone=config.schedule.timezone,
    )
    archive_store = ArchiveStore(config.archive, clock=clock)
    requests = RequestBuffer()
    scheduler = ReportScheduler(
        config,
        escalation=escalation,
        generator=generator,
        archive=archive_store,
        dispatcher=dispatcher,
        requests=requests,
        probe=probe,
        clock=clock,
    )

    logger.info("Built monitoring pipeline",
                providers=[p.value for p in config.providers],
                probe=probe is not None,
                unit_source=unit_source is not None)

    return MonitoringPipeline(
        config=config,
        collector=collector,
        billing=billing,
        dispatcher=dispatcher,
        escalation=escalation,
        generator=generator,
        archive_store=archive_store,
        requests=requests,
        scheduler=scheduler,
        clock=clock,
    )
