from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from integration_monitoring.config import MonitoringConfig
from integration_monitoring.enums import Provider
from integration_monitoring.escalation import HttpHealthProbe
from integration_monitoring.notifications import RelayChannel
from integration_monitoring.reporting import HttpUnitSource
from integration_monitoring.service import build_pipeline


def test_components_share_references(pipeline) -> None:
    assert pipeline.generator.collector is pipeline.collector
    assert pipeline.generator.billing is pipeline.billing
    assert pipeline.escalation.dispatcher is pipeline.dispatcher
    assert pipeline.scheduler.archive is pipeline.archive_store
    assert pipeline.scheduler.requests is pipeline.requests


def test_default_collaborators_come_from_config() -> None:
    config = MonitoringConfig(
        probe={"health_url": "https://router.example/health"},
        units={"api_url": "https://units.example/api"},
    )
    pipeline = build_pipeline(config)

    assert isinstance(pipeline.dispatcher.channel, RelayChannel)
    assert isinstance(pipeline.scheduler.probe, HttpHealthProbe)
    assert isinstance(pipeline.generator.unit_source, HttpUnitSource)


def test_ingest_and_query(pipeline, clock) -> None:
    pipeline.ingest("mikrotik", "connection", "high", "Router timeout")
    pipeline.ingest("MIKROTIK", "connection", "high", "")
    pipeline.ingest("sms-gateway", "api", "low", "Quota exceeded")

    window = (datetime(2025, 3, 1, tzinfo=timezone.utc), clock.now)
    assert pipeline.query_stats(*window, provider=Provider.MIKROTIK).total == 1
    assert pipeline.query_stats(*window)[Provider.OTHER].total == 1


def test_compute_bill(pipeline) -> None:
    bill = pipeline.compute_bill("whatsapp", 1200)
    assert bill.provider == "WHATSAPP"
    assert bill.total_cost == Decimal("118.00")


def test_generate_archive_and_list(pipeline, clock) -> None:
    clock.set(2025, 1, 10, 9, 0)
    pipeline.ingest("MIKROTIK", "connection", "high", "Router timeout")
    clock.set(2025, 2, 10, 9, 0)
    pipeline.ingest("MIKROTIK", "connection", "high", "Router timeout")
    pipeline.ingest("MIKROTIK", "config", "medium", "VLAN mismatch")

    january = pipeline.archive(pipeline.generate_monthly_report("MIKROTIK", 2025, 1))
    february = pipeline.archive(pipeline.generate_monthly_report("MIKROTIK", 2025, 2), generated_by="op1")
    pipeline.archive(pipeline.generate_monthly_report("CLERK", 2025, 2))

    assert february.metadata["generated_by"] == "op1"
    assert january.metadata["generated_by"] == "scheduler"
    assert february.report_data["trends"]["percentage_change"] == 100.0

    assert [r.id for r in pipeline.list_archived("MIKROTIK")] == [february.id, january.id]
    assert len(pipeline.list_archived(year=2025, month=2)) == 2
    assert [r.id for r in pipeline.list_archived(query="op1")] == [february.id]
    assert pipeline.list_archived("CLERK", query="mikrotik") == []


def test_record_request(pipeline, clock) -> None:
    request = pipeline.record_request("activate", "A101", "ops")
    assert request.action == "ACTIVATE"
    assert request.timestamp == clock.now
    assert pipeline.requests.pending() == [request]
