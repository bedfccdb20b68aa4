"""Scheduling of report cycles and connectivity probes."""

from .job_scheduler import JobScheduler
from .report_scheduler import ReportScheduler, build_slots
from .slots import Slot, SlotGuard

__all__ = ["JobScheduler", "ReportScheduler", "Slot", "SlotGuard", "build_slots"]
