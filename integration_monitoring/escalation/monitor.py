"""Escalation monitor: connectivity failures and alert routing."""

from typing import Any, Dict, List, Optional

import structlog

from ..config import EscalationConfig
from ..enums import AlertCategory, ReportType, Severity
from ..notifications.dispatcher import NotificationDispatcher
from ..periods import Clock, utcnow
from .alerts import Alert, AlertManager, AlertReport, format_alert_message, format_alert_report
from .connectivity import (
    ConnectivityProbe,
    ConnectivityStatus,
    ConnectivityTracker,
    IssueReport,
    ProbeResult,
    format_issue_email,
)
from .policy import EscalationPolicy


logger = structlog.get_logger(__name__)


class EscalationMonitor:
    """Decides when to notify immediately and when to batch.

    Notifications are handed to the dispatcher queue, so delivery failures
    never touch failure counters or alert bookkeeping.
    """

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        config: Optional[EscalationConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self.dispatcher = dispatcher
        self.config = config or EscalationConfig()
        self.policy = EscalationPolicy.from_config(self.config)
        self._clock = clock or utcnow
        self.alert_manager = AlertManager(self.config, self._clock)
        self.targets: Dict[str, ConnectivityTracker] = {}
        self.issue_reports: List[IssueReport] = []

    def tracker(self, target: str) -> ConnectivityTracker:
        if target not in self.targets:
            self.targets[target] = ConnectivityTracker(
                target=target,
                policy=self.policy,
                config=self.config,
                clock=self._clock,
            )
        return self.targets[target]

    def consecutive_failures(self, target: str) -> int:
        return self.tracker(target).consecutive_failures

    def last_status(self, target: str) -> Optional[ConnectivityStatus]:
        return self.tracker(target).last_status

    def record_probe(self, target: str, result: ProbeResult) -> Optional[IssueReport]:
        """Apply a probe result to the target's state and emit an issue report if due."""
        issue = self.tracker(target).record(result)
        if issue is not None:
            self.issue_reports.append(issue)
            subject, body = format_issue_email(issue)
            self.dispatcher.submit_email(subject, body, priority="high" if issue.severity == Severity.CRITICAL else "normal")
            logger.info("Emitted connectivity issue report",
                        target=target,
                        issue_id=issue.id,
                        issue_type=issue.type.value,
                        severity=issue.severity.value,
                        consecutive_failures=issue.consecutive_failures)
        return issue

    async def check_connectivity(self, target: str, probe: ConnectivityProbe) -> Optional[IssueReport]:
        try:
            result = await probe.check()
        except Exception as e:
            logger.error("Connectivity probe raised", target=target, error=str(e))
            result = ProbeResult(ok=False, latency_ms=0)
        return self.record_probe(target, result)

    def add_alert(
        self,
        category: "AlertCategory | str",
        severity: "Severity | str",
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> Alert:
        alert = self.alert_manager.add_alert(category, severity, message, details)
        if self.alert_manager.requires_immediate_attention(alert):
            self._notify_immediately(alert)
        return alert

    def _notify_immediately(self, alert: Alert) -> None:
        text = format_alert_message(alert)
        self.dispatcher.submit_message(text, priority="high")
        self.dispatcher.submit_email(f"[{alert.severity.value}] Technical Error - {self.config.site_name}", text, priority="high")
        logger.warning("Dispatched immediate alert notification",
                       alert_id=alert.id,
                       category=alert.category.value)

    def generate_report(self, report_type: "ReportType | str") -> AlertReport:
        """Batch alerts since the last report; sends only when something is pending."""
        report = self.alert_manager.collect_report(report_type)
        summary = report.summary

        if summary["total"] > 0:
            text = format_alert_report(report)
            self.dispatcher.submit_message(text)
            self.dispatcher.submit_email(f"[HIGH] Technical Error - {self.config.site_name}", text)
            logger.info("Dispatched alert report",
                        report_type=report.report_type.value,
                        **summary)
        else:
            logger.info("No pending alerts for report", report_type=report.report_type.value)

        return report

    def resolve_alert(self, alert_id: str, resolved_by: str) -> bool:
        return self.alert_manager.resolve_alert(alert_id, resolved_by)

    def get_unresolved_alerts(self) -> List[Alert]:
        return self.alert_manager.get_unresolved_alerts()

    def get_alerts_by_category(self, category: "AlertCategory | str") -> List[Alert]:
        return self.alert_manager.get_alerts_by_category(category)
