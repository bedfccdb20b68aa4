"""Wall-clock slots and the last-fired guard.

A slot fires at most once per scheduled instant, however many times the
scheduler polls. A poll that lands after the instant (a late wake-up)
still fires it once.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import structlog

from ..enums import ReportType

logger = structlog.get_logger(__name__)

MONTHLY_SLOT = "monthly"


@dataclass(frozen=True)
class Slot:
    key: str
    name: str
    hour: int = 0
    minute: int = 0
    report_type: ReportType | None = None
    monthly: bool = False

    def latest_instant(self, local_now: datetime) -> datetime:
        """Most recent scheduled instant ``<= local_now``."""
        if self.monthly:
            return local_now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        candidate = local_now.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
        if candidate > local_now:
            candidate = (candidate - timedelta(days=1)).replace(hour=self.hour, minute=self.minute)
        return candidate


@dataclass
class SlotGuard:
    """Remembers the last fired instant per slot.

    Slots whose instant precedes ``not_before`` never fire, so a process
    start does not replay the day's earlier reports.
    """
    timezone: str
    not_before: datetime
    last_fired: dict[str, datetime] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.tz = ZoneInfo(self.timezone)

    def local(self, now: datetime) -> datetime:
        return now.astimezone(self.tz)

    def claim(self, slot: Slot, now: datetime) -> datetime | None:
        """Return the instant to fire for ``slot``, marking it fired, or None."""
        instant = slot.latest_instant(self.local(now))
        last = self.last_fired.get(slot.key)

        if last is None:
            if instant < self.not_before:
                return None
        elif last >= instant:
            logger.debug("Slot already fired", slot=slot.key, instant=instant.isoformat())
            return None

        if now - instant > timedelta(minutes=1):
            logger.warning("Late slot trigger",
                           slot=slot.key,
                           instant=instant.isoformat(),
                           lateness_seconds=(now - instant).total_seconds())

        self.last_fired[slot.key] = instant
        return instant
