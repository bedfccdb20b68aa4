"""Unit status snapshots and the operational request buffer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

import httpx
import structlog

from ..config import UnitsConfig
from ..periods import whole_days_between

logger = structlog.get_logger(__name__)


class UnitSource(Protocol):
    async def get_all_units(self) -> list[dict[str, Any]]: ...


class HttpUnitSource:
    """Reads the unit inventory from the network-access controller API."""

    def __init__(self, config: UnitsConfig, client: httpx.AsyncClient | None = None, timeout_seconds: float = 15.0):
        if not config.api_url:
            raise ValueError("units.api_url is not configured")
        self.config = config
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def get_all_units(self) -> list[dict[str, Any]]:
        url = f"{self.config.api_url.rstrip('/')}/units"
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"

        if self._client is not None:
            resp = await self._client.get(url, headers=headers, timeout=self.timeout_seconds)
        else:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                resp = await client.get(url, headers=headers)
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, list):
            raise ValueError(f"Unexpected units payload: {type(data).__name__}")
        return data


@dataclass(frozen=True)
class DeactivatedUnit:
    unit_number: str
    resident_name: str
    deactivation_reason: str | None
    deactivated_by: str | None
    deactivated_at: datetime | None
    days_deactivated: int | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "unit_number": self.unit_number,
            "resident_name": self.resident_name,
            "deactivation_reason": self.deactivation_reason,
            "deactivated_by": self.deactivated_by,
            "deactivated_at": self.deactivated_at.isoformat() if self.deactivated_at else None,
            "days_deactivated": self.days_deactivated,
        }


@dataclass(frozen=True)
class StatusSummary:
    total_units: int
    active_units: int
    deactivated_units: tuple = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_units": self.total_units,
            "active_units": self.active_units,
            "deactivated_units": [unit.to_dict() for unit in self.deactivated_units],
        }


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _field(unit: dict[str, Any], snake: str, camel: str) -> Any:
    return unit.get(snake, unit.get(camel))


def summarize_units(units: list[dict[str, Any]], now: datetime) -> StatusSummary:
    """Partition units into active and deactivated, with days since deactivation."""
    deactivated: list[DeactivatedUnit] = []
    for unit in units:
        if unit.get("active"):
            continue
        deactivated_at = _parse_timestamp(_field(unit, "deactivated_at", "deactivatedAt"))
        deactivated.append(DeactivatedUnit(
            unit_number=str(_field(unit, "unit_number", "unitNumber")),
            resident_name=str(_field(unit, "resident_name", "residentName") or ""),
            deactivation_reason=_field(unit, "deactivation_reason", "deactivationReason"),
            deactivated_by=_field(unit, "deactivated_by", "deactivatedBy"),
            deactivated_at=deactivated_at,
            days_deactivated=whole_days_between(deactivated_at, now) if deactivated_at else None,
        ))

    return StatusSummary(
        total_units=len(units),
        active_units=len(units) - len(deactivated),
        deactivated_units=tuple(deactivated),
    )


@dataclass(frozen=True)
class OperationalRequest:
    """An operator action recorded between operational report cycles."""
    action: str  # "ACTIVATE" or "DEACTIVATE"
    unit_number: str
    actor: str
    timestamp: datetime
    resident_name: str | None = None
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "unit_number": self.unit_number,
            "resident_name": self.resident_name,
            "actor": self.actor,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class RequestBuffer:
    """Pending operational requests since the last operational cycle."""
    requests: list[OperationalRequest] = field(default_factory=list)
    last_cleared: datetime | None = None

    def add(self, request: OperationalRequest) -> None:
        self.requests.append(request)
        logger.debug("Buffered operational request",
                     action=request.action,
                     unit_number=request.unit_number)

    def pending(self) -> list[OperationalRequest]:
        return list(self.requests)

    def clear(self, now: datetime) -> int:
        count = len(self.requests)
        self.requests = []
        self.last_cleared = now
        return count
