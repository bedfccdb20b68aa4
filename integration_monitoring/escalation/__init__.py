"""Connectivity escalation and alert routing."""

from .alerts import Alert, AlertManager, AlertReport
from .connectivity import ConnectivityStatus, ConnectivityTracker, HttpHealthProbe, IssueReport, ProbeResult
from .monitor import EscalationMonitor
from .policy import EscalationPolicy

__all__ = [
    "Alert",
    "AlertManager",
    "AlertReport",
    "ConnectivityStatus",
    "ConnectivityTracker",
    "EscalationMonitor",
    "EscalationPolicy",
    "HttpHealthProbe",
    "IssueReport",
    "ProbeResult",
]
