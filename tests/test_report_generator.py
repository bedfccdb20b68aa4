from __future__ import annotations

import json
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from integration_monitoring.billing import BillingEngine
from integration_monitoring.collector import ErrorCollector
from integration_monitoring.config import NotificationConfig
from integration_monitoring.enums import ReportType
from integration_monitoring.reporting import (
    OperationalRequest,
    ReportGenerator,
    percentage_change,
    report_file_name,
)


@pytest.fixture
def collector(clock) -> ErrorCollector:
    return ErrorCollector(clock=clock)


@pytest.fixture
def generator(collector, clock, make_unit_source, units) -> ReportGenerator:
    return ReportGenerator(collector, BillingEngine(), unit_source=make_unit_source(units), clock=clock)


def _add(collector: ErrorCollector, clock, when: tuple, count: int, message: str, category: str = "connection") -> None:
    clock.set(*when)
    for _ in range(count):
        collector.add_error("MIKROTIK", category, "high", message)


def test_zero_previous_month_reports_plus_100(generator, collector, clock) -> None:
    _add(collector, clock, (2025, 2, 3, 10, 0), 12, "Router timeout")

    snapshot = generator.generate_monthly_report("MIKROTIK", 2025, 2)

    assert snapshot.total_errors == 12
    assert snapshot.trends.previous_month == 0
    assert snapshot.trends.percentage_change == 100


def test_trend_against_previous_month(generator, collector, clock) -> None:
    _add(collector, clock, (2024, 12, 31, 23, 0), 10, "Router timeout")
    _add(collector, clock, (2025, 1, 15, 9, 0), 15, "Router timeout")

    snapshot = generator.generate_monthly_report("MIKROTIK", 2025, 1)

    assert snapshot.trends.previous_month == 10
    assert snapshot.trends.percentage_change == pytest.approx(50.0)
    assert percentage_change(5, 10) == pytest.approx(-50.0)


def test_breakdown_top_errors_and_charges(generator, collector, clock) -> None:
    _add(collector, clock, (2025, 2, 1, 8, 0), 4, "Router timeout")
    _add(collector, clock, (2025, 2, 2, 8, 0), 2, "Auth rejected", category="auth")
    _add(collector, clock, (2025, 2, 20, 8, 0), 1, "Router timeout")
    _add(collector, clock, (2025, 2, 21, 8, 0), 1, "Config drift", category="config")
    _add(collector, clock, (2025, 2, 22, 8, 0), 1, "Unknown VLAN", category="config")

    snapshot = generator.generate_monthly_report("MIKROTIK", 2025, 2)

    assert snapshot.total_errors == 9
    breakdown = {e.category: (e.count, round(e.percentage, 2)) for e in snapshot.error_breakdown}
    assert breakdown == {"connection": (5, 55.56), "auth": (2, 22.22), "config": (2, 22.22)}

    assert [(e.message, e.count) for e in snapshot.top_errors] == [
        ("Router timeout", 5),
        ("Auth rejected", 2),
        ("Config drift", 1),
    ]
    assert snapshot.top_errors[0].last_occurrence == datetime(2025, 2, 20, 8, 0, tzinfo=timezone.utc)
    assert snapshot.charges.total_amount == Decimal("0.90")
    assert snapshot.file_name == "mikrotik-error-report-2025-02.json"


def test_snapshot_serializes_to_json(generator, collector, clock) -> None:
    _add(collector, clock, (2025, 2, 1, 8, 0), 3, "Router timeout")
    data = json.loads(generator.generate_monthly_report("MIKROTIK", 2025, 2).to_json())

    assert data["provider"] == "MIKROTIK"
    assert data["period"]["start_date"].startswith("2025-02-01T00:00:00")
    assert data["period"]["end_date"].startswith("2025-02-28T23:59:59.999999")
    assert data["charges"]["total_amount"] == pytest.approx(0.3)
    assert data["trends"] == {"previous_month": 0, "percentage_change": 100.0}


def test_monthly_email(generator, collector, clock) -> None:
    _add(collector, clock, (2025, 2, 1, 8, 0), 3, "Router timeout")
    snapshot = generator.generate_monthly_report("MIKROTIK", 2025, 2)

    email = generator.format_monthly_email(snapshot, NotificationConfig())

    assert email.subject == "Monthly Error Report - MIKROTIK - February 2025"
    assert email.attachment.filename == "mikrotik-error-report-2025-02.json"
    assert json.loads(email.attachment.content)["total_errors"] == 3
    assert [(r.email, r.kind) for r in email.recipients] == [
        ("support@mikrotik.com", "TO"),
        ("support@surelink.com", "CC"),
        ("creator@surelink.com", "CC"),
    ]
    assert "Total errors: 3" in email.body
    assert "R0.30" in email.body
    assert "Router timeout" in email.body


def test_report_file_name_accepts_enum_and_string() -> None:
    from integration_monitoring.enums import Provider

    assert report_file_name(Provider.WHATSAPP, 2025, 11) == "whatsapp-error-report-2025-11.json"
    assert report_file_name("P", 2025, 2) == "p-error-report-2025-02.json"


@pytest.mark.asyncio
async def test_status_report_floors_days_deactivated(generator, clock) -> None:
    clock.set(2025, 3, 1, 9, 0)

    summary = await generator.generate_status_report()

    assert summary.total_units == 3
    assert summary.active_units == 2
    [unit] = summary.deactivated_units
    assert unit.unit_number == "B204"
    assert unit.deactivation_reason == "Moved out"
    assert unit.days_deactivated == 2


@pytest.mark.asyncio
async def test_status_report_without_unit_source(collector, clock) -> None:
    generator = ReportGenerator(collector, BillingEngine(), clock=clock)
    summary = await generator.generate_status_report()
    assert summary.total_units == 0
    assert summary.deactivated_units == ()


@pytest.mark.asyncio
async def test_operational_report_text(generator, clock) -> None:
    status = await generator.generate_status_report()
    request = OperationalRequest(
        action="DEACTIVATE",
        unit_number="B204",
        actor="ops",
        timestamp=clock.now,
        resident_name="Sipho K",
        reason="Moved out",
    )

    text = generator.render_operational_report(
        "Opening Report",
        ReportType.MORNING,
        [request],
        status,
        {"total": 2, "critical": 1, "high": 0, "resolved": 0},
    )

    assert text.startswith("📋 Opening Report (MORNING)")
    assert "DEACTIVATE unit B204 (Sipho K) by ops: Moved out" in text
    assert "Units: 2 active of 3" in text
    assert "Alerts: 2 (1 critical, 0 high)" in text


def test_unit_without_active_flag_counts_as_deactivated(clock) -> None:
    from integration_monitoring.reporting import summarize_units

    summary = summarize_units(
        [
            {"unitNumber": "A101", "active": True},
            {"unitNumber": "D412", "residentName": "Naledi P"},
            {"unitNumber": "E515", "active": None},
        ],
        clock.now,
    )

    assert summary.active_units == 1
    assert [u.unit_number for u in summary.deactivated_units] == ["D412", "E515"]
    assert summary.deactivated_units[0].days_deactivated is None


def test_monthly_window_follows_reporting_timezone(collector, clock) -> None:
    generator = ReportGenerator(collector, BillingEngine(), clock=clock, timezone="Africa/Johannesburg")
    # 23:30 UTC on Jan 31 is 01:30 on Feb 1 in Johannesburg
    clock.set(2025, 1, 31, 23, 30)
    collector.add_error("MIKROTIK", "connection", "high", "Router timeout")

    february = generator.generate_monthly_report("MIKROTIK", 2025, 2)

    assert february.total_errors == 1
    assert february.trends.previous_month == 0
    assert generator.generate_monthly_report("MIKROTIK", 2025, 1).total_errors == 0
    assert february.period.start.isoformat() == "2025-02-01T00:00:00+02:00"
