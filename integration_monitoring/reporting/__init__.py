"""Monthly provider reports and operational status reports."""

from .report_generator import (
    MonthlyEmail,
    MonthlyReportSnapshot,
    ReportGenerator,
    percentage_change,
    report_file_name,
    top_errors,
)
from .status_report import (
    DeactivatedUnit,
    HttpUnitSource,
    OperationalRequest,
    RequestBuffer,
    StatusSummary,
    UnitSource,
    summarize_units,
)

__all__ = [
    "DeactivatedUnit",
    "HttpUnitSource",
    "MonthlyEmail",
    "MonthlyReportSnapshot",
    "OperationalRequest",
    "ReportGenerator",
    "RequestBuffer",
    "StatusSummary",
    "UnitSource",
    "percentage_change",
    "report_file_name",
    "summarize_units",
    "top_errors",
]
