"""Escalation threshold table for consecutive connectivity failures."""

from dataclasses import dataclass
from typing import FrozenSet, List, Tuple

from ..config import EscalationConfig
from ..enums import Severity


@dataclass(frozen=True)
class EscalationPolicy:
    """Maps a consecutive-failure count to a severity and a report decision.

    ``thresholds`` is ordered by ``min_failures`` descending; the first
    threshold the count reaches wins. Counts below every threshold are LOW.
    """
    thresholds: Tuple[Tuple[int, Severity], ...]
    report_at: FrozenSet[int]
    report_every: int

    @classmethod
    def from_config(cls, config: EscalationConfig) -> "EscalationPolicy":
        ordered = sorted(
            ((t.min_failures, t.severity) for t in config.severity_thresholds),
            key=lambda pair: pair[0],
            reverse=True,
        )
        return cls(
            thresholds=tuple(ordered),
            report_at=frozenset(config.report_at_failures),
            report_every=config.report_every_failures,
        )

    def severity_for(self, failures: int) -> Severity:
        for min_failures, severity in self.thresholds:
            if failures >= min_failures:
                return severity
        return Severity.LOW

    def should_report(self, failures: int) -> bool:
        if failures <= 0:
            return False
        return failures in self.report_at or failures % self.report_every == 0

    def table(self, up_to: int) -> List[Tuple[int, Severity, bool]]:
        """``(failure_count, severity, should_report)`` rows for counts 1..up_to."""
        return [(n, self.severity_for(n), self.should_report(n)) for n in range(1, up_to + 1)]


DEFAULT_POLICY = EscalationPolicy.from_config(EscalationConfig())
