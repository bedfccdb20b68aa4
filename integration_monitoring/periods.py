"""Calendar helpers for reporting windows."""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any, Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Period:
    """Closed time window ``[start, end]``."""
    start: datetime
    end: datetime

    def contains(self, ts: datetime) -> bool:
        return self.start <= ts <= self.end

    def to_dict(self) -> dict[str, Any]:
        return {"start_date": self.start.isoformat(), "end_date": self.end.isoformat()}


def month_period(year: int, month: int, tz: tzinfo | None = timezone.utc) -> Period:
    """First instant to last instant (microsecond precision) of a calendar month."""
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month: {month}")
    last_day = calendar.monthrange(year, month)[1]
    start = datetime(year, month, 1, tzinfo=tz)
    end = datetime(year, month, last_day, 23, 59, 59, 999999, tzinfo=tz)
    return Period(start=start, end=end)


def previous_month(year: int, month: int) -> tuple[int, int]:
    if month == 1:
        return year - 1, 12
    return year, month - 1


def subtract_months(ts: datetime, months: int) -> datetime:
    """Shift a timestamp back by whole months, clamping the day to the target month."""
    total = ts.year * 12 + (ts.month - 1) - months
    year, month_index = divmod(total, 12)
    month = month_index + 1
    day = min(ts.day, calendar.monthrange(year, month)[1])
    return ts.replace(year=year, month=month, day=day)


def whole_days_between(earlier: datetime, later: datetime) -> int:
    return int((later - earlier) // timedelta(days=1))
