"""Ad-hoc alert recording, immediate routing and batched alert reports."""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import structlog

from ..config import EscalationConfig
from ..enums import AlertCategory, ReportType, Severity
from ..periods import Clock, utcnow


logger = structlog.get_logger(__name__)

IMMEDIATE_CATEGORIES = frozenset({AlertCategory.SECURITY, AlertCategory.SYSTEM_HEALTH})

REPORT_TITLES = {
    ReportType.MORNING: "🌅 Morning Alert Report",
    ReportType.MIDDAY: "☀️ Midday Alert Report",
    ReportType.EVENING: "🌙 Evening Alert Report",
}


@dataclass
class Alert:
    """An alert raised by an internal detector. Only resolution fields change."""
    id: str
    category: AlertCategory
    severity: Severity
    message: str
    timestamp: datetime
    details: Optional[Dict[str, Any]] = None
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category.value,
            "severity": self.severity.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "details": self.details,
            "resolved": self.resolved,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolved_by": self.resolved_by,
        }


@dataclass
class AlertReport:
    timestamp: datetime
    report_type: ReportType
    critical: List[Alert] = field(default_factory=list)
    high: List[Alert] = field(default_factory=list)
    other: List[Alert] = field(default_factory=list)

    @property
    def alerts(self) -> List[Alert]:
        return self.critical + self.high + self.other

    @property
    def summary(self) -> Dict[str, int]:
        alerts = self.alerts
        return {
            "total": len(alerts),
            "critical": len(self.critical),
            "high": len(self.high),
            "resolved": sum(1 for a in alerts if a.resolved),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "report_type": self.report_type.value,
            "alerts": {
                "critical": [a.to_dict() for a in self.critical],
                "high": [a.to_dict() for a in self.high],
                "other": [a.to_dict() for a in self.other],
            },
            "summary": self.summary,
        }


class AlertManager:
    """Owns the alert list and the last batched-report time."""

    def __init__(self, config: Optional[EscalationConfig] = None, clock: Optional[Clock] = None):
        self.config = config or EscalationConfig()
        self._clock = clock or utcnow
        self.alerts: List[Alert] = []
        self.last_report_time: datetime = self._clock()

    def add_alert(
        self,
        category: "AlertCategory | str",
        severity: "Severity | str",
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> Alert:
        alert = Alert(
            id=str(uuid.uuid4()),
            category=AlertCategory(category),
            severity=Severity(severity),
            message=message,
            timestamp=self._clock(),
            details=details,
        )
        self.alerts.append(alert)
        logger.info("Recorded alert",
                    alert_id=alert.id,
                    category=alert.category.value,
                    severity=alert.severity.value)
        return alert

    def requires_immediate_attention(self, alert: Alert) -> bool:
        if alert.severity != Severity.CRITICAL:
            return False
        if alert.category in IMMEDIATE_CATEGORIES:
            return True
        return alert.category == AlertCategory.CONNECTIVITY and self.is_extended_outage()

    def is_extended_outage(self) -> bool:
        """At least N unresolved connectivity alerts inside the trailing window."""
        since = self._clock() - timedelta(minutes=self.config.extended_outage_window_minutes)
        recent = [
            a for a in self.alerts
            if a.category == AlertCategory.CONNECTIVITY and not a.resolved and a.timestamp > since
        ]
        return len(recent) >= self.config.extended_outage_min_alerts

    def collect_report(self, report_type: "ReportType | str") -> AlertReport:
        """Partition alerts raised since the last report and advance the report time."""
        now = self._clock()
        pending = [a for a in self.alerts if a.timestamp > self.last_report_time]

        report = AlertReport(timestamp=now, report_type=ReportType(report_type))
        for alert in pending:
            if alert.severity == Severity.CRITICAL:
                report.critical.append(alert)
            elif alert.severity == Severity.HIGH:
                report.high.append(alert)
            else:
                report.other.append(alert)

        self.last_report_time = now
        return report

    def resolve_alert(self, alert_id: str, resolved_by: str) -> bool:
        for alert in self.alerts:
            if alert.id == alert_id:
                alert.resolved = True
                alert.resolved_at = self._clock()
                alert.resolved_by = resolved_by
                logger.info("Resolved alert", alert_id=alert_id, resolved_by=resolved_by)
                return True
        logger.warning("Alert not found", alert_id=alert_id)
        return False

    def get_unresolved_alerts(self) -> List[Alert]:
        return [a for a in self.alerts if not a.resolved]

    def get_alerts_by_category(self, category: "AlertCategory | str") -> List[Alert]:
        target = AlertCategory(category)
        return [a for a in self.alerts if a.category == target]


def format_alert_message(alert: Alert) -> str:
    """Format an alert for immediate notification."""
    lines = [
        f"🚨 {alert.severity.value} Alert: {alert.category.value}",
        "",
        alert.message,
        "",
        f"Time: {alert.timestamp.strftime('%Y-%m-%d %H:%M:%S')}",
    ]
    if alert.details:
        lines.append(f"Details: {json.dumps(alert.details, indent=2, default=str)}")
    return "\n".join(lines)


def _format_alert_entry(alert: Alert) -> str:
    state = "✅ Resolved" if alert.resolved else "🔄 Pending"
    return f"• {alert.timestamp.strftime('%H:%M:%S')}: {alert.message}\n  {state}"


def format_alert_report(report: AlertReport) -> str:
    summary = report.summary
    lines = [
        REPORT_TITLES[report.report_type],
        report.timestamp.strftime("%Y-%m-%d %H:%M"),
        "",
        "📊 Summary:",
        f"• Total Alerts: {summary['total']}",
        f"• Critical: {summary['critical']}",
        f"• High Priority: {summary['high']}",
        f"• Resolved: {summary['resolved']}",
    ]

    sections = (
        ("⚠️ Critical Alerts:", report.critical),
        ("⚡ High Priority Alerts:", report.high),
        ("📝 Other Alerts:", report.other),
    )
    for title, alerts in sections:
        if alerts:
            lines += ["", title]
            lines += [_format_alert_entry(alert) for alert in alerts]

    return "\n".join(lines)
