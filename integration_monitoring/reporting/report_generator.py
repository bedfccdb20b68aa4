"""Monthly provider reports and operational status snapshots."""

import json
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

import structlog
from jinja2 import Environment, FileSystemLoader

from ..billing.billing_engine import BillingEngine
from ..collector.error_collector import ErrorCollector, ErrorRecord
from ..config import NotificationConfig
from ..enums import Provider, ReportType
from ..notifications.channels import Attachment, EmailRecipient
from ..periods import Clock, Period, month_period, previous_month, utcnow
from .status_report import OperationalRequest, StatusSummary, UnitSource, summarize_units


logger = structlog.get_logger(__name__)

TOP_ERROR_LIMIT = 3


def report_file_name(provider: str, year: int, month: int) -> str:
    """Archive file name, e.g. ``mikrotik-error-report-2025-02.json``."""
    return f"{str(provider).lower()}-error-report-{year}-{month:02d}.json"


@dataclass(frozen=True)
class ErrorBreakdownEntry:
    category: str
    count: int
    percentage: float


@dataclass(frozen=True)
class TopError:
    message: str
    count: int
    last_occurrence: datetime


@dataclass(frozen=True)
class Charges:
    total_amount: Decimal
    breakdown: tuple


@dataclass(frozen=True)
class Trend:
    previous_month: int
    percentage_change: float


@dataclass(frozen=True)
class MonthlyReportSnapshot:
    """Per-provider error and billing summary for one calendar month."""
    provider: str
    period: Period
    total_errors: int
    error_breakdown: tuple
    charges: Charges
    top_errors: tuple
    trends: Trend
    generated_at: datetime

    @property
    def year(self) -> int:
        return self.period.start.year

    @property
    def month(self) -> int:
        return self.period.start.month

    @property
    def file_name(self) -> str:
        return report_file_name(self.provider, self.year, self.month)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "period": self.period.to_dict(),
            "total_errors": self.total_errors,
            "error_breakdown": [
                {"category": e.category, "count": e.count, "percentage": e.percentage}
                for e in self.error_breakdown
            ],
            "charges": {
                "total_amount": float(self.charges.total_amount),
                "breakdown": [charge.to_dict() for charge in self.charges.breakdown],
            },
            "top_errors": [
                {"message": e.message, "count": e.count, "last_occurrence": e.last_occurrence.isoformat()}
                for e in self.top_errors
            ],
            "trends": {
                "previous_month": self.trends.previous_month,
                "percentage_change": self.trends.percentage_change,
            },
            "generated_at": self.generated_at.isoformat(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


@dataclass(frozen=True)
class MonthlyEmail:
    to: str
    cc: tuple
    subject: str
    body: str
    attachment: Attachment

    @property
    def recipients(self) -> List[EmailRecipient]:
        return [EmailRecipient(email=self.to, name="Provider Support", kind="TO")] + [
            EmailRecipient(email=address, name="Operations", kind="CC") for address in self.cc
        ]


def percentage_change(current: int, previous: int) -> float:
    """Month-over-month change. A zero baseline reports +100%."""
    if previous == 0:
        return 100.0
    return (current - previous) / previous * 100


def top_errors(errors: List[ErrorRecord], limit: int = TOP_ERROR_LIMIT) -> List[TopError]:
    """Most frequent messages, each with its latest occurrence."""
    grouped: Dict[str, List[Any]] = {}
    for record in errors:
        entry = grouped.get(record.message)
        if entry is None:
            grouped[record.message] = [1, record.timestamp]
        else:
            entry[0] += 1
            if record.timestamp > entry[1]:
                entry[1] = record.timestamp

    ranked = sorted(grouped.items(), key=lambda item: item[1][0], reverse=True)
    return [
        TopError(message=message, count=count, last_occurrence=last)
        for message, (count, last) in ranked[:limit]
    ]


class ReportGenerator:
    """Builds monthly provider snapshots and operational status reports."""

    def __init__(
        self,
        collector: ErrorCollector,
        billing: BillingEngine,
        unit_source: Optional[UnitSource] = None,
        clock: Optional[Clock] = None,
        currency_symbol: str = "R",
        timezone: str = "UTC",
    ):
        self.collector = collector
        self.billing = billing
        self.unit_source = unit_source
        self._clock = clock or utcnow
        self.currency_symbol = currency_symbol
        # Month boundaries are wall-clock months in the reporting timezone
        self.tz = ZoneInfo(timezone)

        template_dir = Path(__file__).parent / "templates"
        self.jinja_env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=False,
        )
        self.jinja_env.filters["money"] = self._format_money
        self.jinja_env.filters["pct"] = lambda value: f"{value:.1f}%"
        self.jinja_env.filters["number"] = lambda value: f"{value:,}"

    def _format_money(self, amount: Any) -> str:
        return f"{self.currency_symbol}{float(amount):,.2f}"

    def generate_monthly_report(self, provider: "Provider | str", year: int, month: int) -> MonthlyReportSnapshot:
        """Error breakdown, top errors, charges and trend for one provider-month."""
        target = Provider.coerce(provider)
        period = month_period(year, month, tz=self.tz)
        prev_year, prev_month = previous_month(year, month)
        prev_period = month_period(prev_year, prev_month, tz=self.tz)

        current_report = self.collector.get_error_report(period.start, period.end)
        previous_report = self.collector.get_error_report(prev_period.start, prev_period.end)

        stats = current_report.providers[target]
        previous_total = previous_report.providers[target].total

        breakdown = tuple(
            ErrorBreakdownEntry(
                category=category,
                count=count,
                percentage=count / stats.total * 100,
            )
            for category, count in stats.by_category.items()
        )

        bill = self.billing.calculate_provider_bill(target.value, stats.total)

        snapshot = MonthlyReportSnapshot(
            provider=target.value,
            period=period,
            total_errors=stats.total,
            error_breakdown=breakdown,
            charges=Charges(total_amount=bill.total_cost, breakdown=bill.breakdown),
            top_errors=tuple(top_errors(current_report.errors_for(target))),
            trends=Trend(
                previous_month=previous_total,
                percentage_change=percentage_change(stats.total, previous_total),
            ),
            generated_at=self._clock(),
        )

        logger.info("Generated monthly report",
                    provider=target.value,
                    year=year,
                    month=month,
                    total_errors=stats.total,
                    total_cost=float(bill.total_cost))
        return snapshot

    def format_monthly_email(self, snapshot: MonthlyReportSnapshot, notifications: NotificationConfig) -> MonthlyEmail:
        """Provider email with the JSON report attached."""
        month_label = snapshot.period.start.strftime("%B %Y")
        body = self.jinja_env.get_template("monthly_report_email.txt.j2").render(
            report=snapshot,
            month_label=month_label,
        )
        return MonthlyEmail(
            to=notifications.provider_emails.get(snapshot.provider, notifications.support_email),
            cc=(notifications.support_email, notifications.creator_email),
            subject=f"Monthly Error Report - {snapshot.provider} - {month_label}",
            body=body.strip(),
            attachment=Attachment(filename=snapshot.file_name, content=snapshot.to_json()),
        )

    async def generate_status_report(self) -> StatusSummary:
        """Current unit status with deactivation age in whole days."""
        if self.unit_source is None:
            logger.warning("No unit source configured, status report is empty")
            return StatusSummary(total_units=0, active_units=0)

        units = await self.unit_source.get_all_units()
        summary = summarize_units(units, self._clock())

        logger.info("Generated status report",
                    total_units=summary.total_units,
                    deactivated=len(summary.deactivated_units))
        return summary

    def render_operational_report(
        self,
        name: str,
        report_type: ReportType,
        requests: List[OperationalRequest],
        status: StatusSummary,
        alert_summary: Optional[Dict[str, int]] = None,
    ) -> str:
        """Combined operational report text for the messaging channel."""
        return self.jinja_env.get_template("operational_report.txt.j2").render(
            name=name,
            report_type=report_type.value,
            generated_at=self._clock(),
            requests=requests,
            status=status,
            alert_summary=alert_summary,
        ).strip()
