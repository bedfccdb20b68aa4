from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import structlog

from integration_monitoring.config import MonitoringConfig
from integration_monitoring.errors import NotificationDispatchError
from integration_monitoring.escalation.connectivity import ProbeResult
from integration_monitoring.service import build_pipeline


@pytest.fixture(autouse=True)
def _structlog_to_stderr():
    """Keep log lines out of captured stdout so CLI output can be asserted."""
    structlog.configure(logger_factory=structlog.PrintLoggerFactory(sys.stderr))
    yield
    structlog.reset_defaults()


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, *args: int) -> datetime:
        self.now = datetime(*args, tzinfo=timezone.utc)
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeChannel:
    """Records sends; the first ``fail_times`` calls raise."""

    def __init__(self, fail_times: int = 0) -> None:
        self.fail_times = fail_times
        self.calls = 0
        self.messages: list[str] = []
        self.emails: list[dict[str, Any]] = []

    def _maybe_fail(self) -> None:
        self.calls += 1
        if self.calls <= self.fail_times:
            raise NotificationDispatchError("relay unavailable", channel="fake", status_code=503)

    async def send_message(self, text: str) -> None:
        self._maybe_fail()
        self.messages.append(text)

    async def send_email(self, subject, body, attachments=None, recipients=None) -> None:
        self._maybe_fail()
        self.emails.append({
            "subject": subject,
            "body": body,
            "attachments": attachments or [],
            "recipients": recipients or [],
        })


class FakeProbe:
    def __init__(self, results: list[ProbeResult | Exception]) -> None:
        self.results = list(results)

    async def check(self) -> ProbeResult:
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class FakeUnitSource:
    def __init__(self, units: list[dict[str, Any]], delay: float = 0.0) -> None:
        self.units = units
        self.delay = delay

    async def get_all_units(self) -> list[dict[str, Any]]:
        if self.delay:
            await asyncio.sleep(self.delay)
        return list(self.units)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 3, 1, 7, 59, tzinfo=timezone.utc))


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def make_channel():
    return FakeChannel


@pytest.fixture
def make_probe():
    return FakeProbe


@pytest.fixture
def make_unit_source():
    return FakeUnitSource


@pytest.fixture
def units() -> list[dict[str, Any]]:
    return [
        {"unitNumber": "A101", "residentName": "Thandi M", "active": True},
        {
            "unitNumber": "B204",
            "residentName": "Sipho K",
            "active": False,
            "deactivationReason": "Moved out",
            "deactivatedBy": "ops@surelink.com",
            "deactivatedAt": "2025-02-26T09:30:00Z",
        },
        {"unit_number": "C310", "resident_name": "Lerato N", "active": True},
    ]


@pytest.fixture
def config() -> MonitoringConfig:
    return MonitoringConfig()


@pytest.fixture
def pipeline(config: MonitoringConfig, channel: FakeChannel, clock: FakeClock, units):
    return build_pipeline(config, channel=channel, unit_source=FakeUnitSource(units), clock=clock)
