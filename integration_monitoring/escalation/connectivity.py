"""Connectivity probing and consecutive-failure tracking."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

import httpx
import structlog

from ..config import EscalationConfig
from ..enums import IssueType, Severity
from ..periods import Clock, utcnow
from .policy import DEFAULT_POLICY, EscalationPolicy

logger = structlog.get_logger(__name__)


STEPS_TAKEN = (
    "Automatic connection retry attempts performed",
    "System logs analyzed for error patterns",
    "Authentication credentials verified",
    "API endpoint availability checked",
)

COMMON_RESOLUTION = (
    "Verify router accessibility and network connectivity",
    "Check for recent configuration changes by third-party management",
    "Review system logs for detailed error messages",
)


@dataclass(frozen=True)
class ProbeResult:
    ok: bool
    latency_ms: int


class ConnectivityProbe(Protocol):
    async def check(self) -> ProbeResult: ...


class HttpHealthProbe:
    """Probe that treats any 2xx from a health endpoint as connected."""

    def __init__(self, url: str, timeout_seconds: float = 10.0, client: httpx.AsyncClient | None = None):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def check(self) -> ProbeResult:
        started = time.monotonic()
        try:
            if self._client is not None:
                resp = await self._client.get(self.url, timeout=self.timeout_seconds)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    resp = await client.get(self.url)
            ok = resp.is_success
        except httpx.HTTPError as e:
            logger.debug("Health probe request failed", url=self.url, error=str(e))
            ok = False
        latency_ms = int((time.monotonic() - started) * 1000)
        return ProbeResult(ok=ok, latency_ms=latency_ms)


@dataclass(frozen=True)
class ConnectivityStatus:
    is_connected: bool
    last_checked: datetime
    response_time: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_connected": self.is_connected,
            "last_checked": self.last_checked.isoformat(),
            "response_time": self.response_time,
        }


@dataclass(frozen=True)
class IssueReport:
    id: str
    type: IssueType
    severity: Severity
    timestamp: datetime
    target: str
    site_name: str
    consecutive_failures: int
    description: str
    possible_cause: str
    steps_taken: tuple = STEPS_TAKEN
    suggested_resolution: tuple = COMMON_RESOLUTION
    third_party_involved: bool = True
    status: str = "OPEN"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "severity": self.severity.value,
            "timestamp": self.timestamp.isoformat(),
            "target": self.target,
            "site_name": self.site_name,
            "consecutive_failures": self.consecutive_failures,
            "description": self.description,
            "possible_cause": self.possible_cause,
            "steps_taken": list(self.steps_taken),
            "suggested_resolution": list(self.suggested_resolution),
            "third_party_involved": self.third_party_involved,
            "status": self.status,
        }


@dataclass
class ConnectivityTracker:
    """Escalation state for one monitored target.

    ``consecutive_failures`` resets to 0 on success and grows by exactly one
    per failed probe.
    """
    target: str
    policy: EscalationPolicy = DEFAULT_POLICY
    config: EscalationConfig = field(default_factory=EscalationConfig)
    clock: Clock = utcnow
    consecutive_failures: int = 0
    last_status: ConnectivityStatus | None = None

    @property
    def severity(self) -> Severity:
        return self.policy.severity_for(self.consecutive_failures)

    def record(self, result: ProbeResult) -> IssueReport | None:
        """Apply one probe result; returns an issue report when one is due."""
        status = ConnectivityStatus(
            is_connected=result.ok,
            last_checked=self.clock(),
            response_time=result.latency_ms,
        )
        self.last_status = status

        if result.ok:
            if self.consecutive_failures:
                logger.info("Connectivity restored",
                            target=self.target,
                            after_failures=self.consecutive_failures)
            self.consecutive_failures = 0
            return None

        self.consecutive_failures += 1
        severity = self.severity
        logger.warning("Connectivity check failed",
                       target=self.target,
                       consecutive_failures=self.consecutive_failures,
                       severity=severity.value,
                       response_time_ms=result.latency_ms)

        if not self.policy.should_report(self.consecutive_failures):
            return None
        return self._build_issue(status, severity)

    def _issue_type(self, status: ConnectivityStatus) -> IssueType:
        if status.response_time > self.config.slow_response_ms:
            return IssueType.CONNECTION_ERROR
        if self.consecutive_failures > 5:
            return IssueType.CONFIGURATION_CONFLICT
        return IssueType.API_ERROR

    def _possible_cause(self, status: ConnectivityStatus) -> str:
        if status.response_time > self.config.slow_response_ms:
            return "High latency detected, possibly due to network congestion or router overload."
        if self.consecutive_failures > 5:
            return ("Persistent connection failures suggest possible configuration conflicts "
                    "or authentication issues.")
        return "Intermittent connection issues, possibly due to recent router configuration changes."

    def _build_issue(self, status: ConnectivityStatus, severity: Severity) -> IssueReport:
        issue_type = self._issue_type(status)
        resolution = list(COMMON_RESOLUTION)
        if issue_type == IssueType.CONNECTION_ERROR:
            resolution += [
                "Analyze network traffic and bandwidth usage",
                "Check for potential network bottlenecks",
            ]
        elif issue_type == IssueType.CONFIGURATION_CONFLICT:
            resolution += [
                "Review recent configuration changes",
                "Coordinate with third-party management for configuration alignment",
                "Verify API access permissions",
            ]

        return IssueReport(
            id=str(uuid.uuid4()),
            type=issue_type,
            severity=severity,
            timestamp=status.last_checked,
            target=self.target,
            site_name=self.config.site_name,
            consecutive_failures=self.consecutive_failures,
            description=(
                f"Connection to {self.target} is failing with {self.consecutive_failures} "
                f"consecutive failures. Last response time: {status.response_time}ms. "
                "This is affecting the management system's ability to process requests."
            ),
            possible_cause=self._possible_cause(status),
            suggested_resolution=tuple(resolution),
        )


def format_issue_email(issue: IssueReport) -> tuple[str, str]:
    """Subject and body for an issue report email."""
    subject = f"[{issue.severity.value}] {issue.target} {issue.type.value} - {issue.site_name}"

    lines = [
        "Dear Support Team,",
        "",
        f"We have detected a {issue.severity.value.lower()} severity issue with {issue.target} "
        f"at {issue.site_name}. Below are the details:",
        "",
        f"Issue Type: {issue.type.value.replace('_', ' ')}",
        f"Severity: {issue.severity.value}",
        f"Detected At: {issue.timestamp.strftime('%Y-%m-%d %H:%M:%S %Z').strip()}",
        f"Status: {issue.status}",
        "",
        "Description:",
        issue.description,
        "",
        "Possible Cause:",
        issue.possible_cause,
        "",
    ]

    if issue.third_party_involved:
        lines += [
            "Third-Party Involvement:",
            "This device is managed by a third-party provider. Recent changes to its configuration "
            "may have created conflicts with our system. We recommend coordinating with the "
            "third-party team to resolve any potential conflicts.",
            "",
        ]

    lines.append("Steps Already Taken:")
    lines += [f"{i}. {step}" for i, step in enumerate(issue.steps_taken, start=1)]
    lines.append("")
    lines.append("Suggested Resolution:")
    lines += [f"{i}. {step}" for i, step in enumerate(issue.suggested_resolution, start=1)]
    lines += ["", "This is an automated report from the integration monitoring system."]

    return subject, "\n".join(lines)
