"""
Tiered billing calculations.

Maps an error count to a monetary charge using volume-discounted brackets.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional, Sequence

import structlog

from ..collector.error_collector import ErrorReport
from ..config import BillingConfig


logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")


@dataclass(frozen=True)
class BillingTier:
    """Billing bracket. ``max_errors`` is a cumulative ceiling, None for unbounded."""
    max_errors: Optional[int]
    rate_per_error: Decimal


@dataclass(frozen=True)
class TierCharge:
    tier: str
    errors: int
    rate: Decimal
    cost: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tier": self.tier,
            "errors": self.errors,
            "rate": float(self.rate),
            "cost": float(self.cost),
        }


@dataclass(frozen=True)
class ProviderBill:
    provider: str
    total_errors: int
    breakdown: tuple
    total_cost: Decimal

    @property
    def blended_rate(self) -> Decimal:
        if self.total_errors == 0:
            return Decimal("0")
        return self.total_cost / Decimal(self.total_errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "total_errors": self.total_errors,
            "breakdown": [charge.to_dict() for charge in self.breakdown],
            "total_cost": float(self.total_cost),
        }


@dataclass(frozen=True)
class BillingReport:
    """Bills for every provider over one period."""
    start_date: str
    end_date: str
    bills: tuple
    total_errors: int
    total_cost: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": {"start_date": self.start_date, "end_date": self.end_date},
            "bills": [bill.to_dict() for bill in self.bills],
            "total_errors": self.total_errors,
            "total_cost": float(self.total_cost),
        }


def _format_count(value: int) -> str:
    return f"{value:,}"


def tiers_from_config(config: BillingConfig) -> List[BillingTier]:
    return [
        BillingTier(
            max_errors=tier.max_errors,
            rate_per_error=Decimal(str(tier.rate_per_error)),
        )
        for tier in config.tiers
    ]


class BillingEngine:
    """Pure tiered billing over an ordered bracket table."""

    def __init__(self, tiers: Optional[Sequence[BillingTier]] = None):
        self.tiers: List[BillingTier] = list(tiers) if tiers is not None else tiers_from_config(BillingConfig())
        if not self.tiers or self.tiers[-1].max_errors is not None:
            raise ValueError("Billing tiers must end with an unbounded tier")

    @classmethod
    def from_config(cls, config: BillingConfig) -> "BillingEngine":
        return cls(tiers_from_config(config))

    def tier_name(self, index: int) -> str:
        """Human label for a bracket, e.g. "1,001 - 5,000"."""
        tier = self.tiers[index]
        floor = self.tiers[index - 1].max_errors if index > 0 else 0
        if tier.max_errors is None:
            return f"Over {_format_count(floor)}"
        if floor == 0:
            return f"Up to {_format_count(tier.max_errors)}"
        return f"{_format_count(floor + 1)} - {_format_count(tier.max_errors)}"

    def calculate_provider_bill(self, provider: str, error_count: int) -> ProviderBill:
        """Charge ``error_count`` errors bracket by bracket.

        Each bracket absorbs at most its own width (ceiling minus the previous
        ceiling). The total is rounded half-up to cents.

        Raises:
            ValueError: If error_count is negative
        """
        if error_count < 0:
            raise ValueError(f"error_count must be >= 0, got {error_count}")

        remaining = int(error_count)
        floor = 0
        total = Decimal("0")
        breakdown: List[TierCharge] = []

        for index, tier in enumerate(self.tiers):
            if remaining <= 0:
                break

            if tier.max_errors is None:
                in_tier = remaining
            else:
                in_tier = min(remaining, tier.max_errors - floor)
                floor = tier.max_errors

            cost = Decimal(in_tier) * tier.rate_per_error
            total += cost
            breakdown.append(TierCharge(
                tier=self.tier_name(index),
                errors=in_tier,
                rate=tier.rate_per_error,
                cost=cost.quantize(CENT, rounding=ROUND_HALF_UP),
            ))
            remaining -= in_tier

        return ProviderBill(
            provider=str(provider),
            total_errors=int(error_count),
            breakdown=tuple(breakdown),
            total_cost=total.quantize(CENT, rounding=ROUND_HALF_UP),
        )

    def generate_billing_report(self, error_report: ErrorReport) -> BillingReport:
        """Bill every provider in ``error_report``, highest error volume first."""
        bills = [
            self.calculate_provider_bill(provider.value, stats.total)
            for provider, stats in error_report.providers.items()
        ]
        bills.sort(key=lambda bill: bill.total_errors, reverse=True)

        total_errors = sum(bill.total_errors for bill in bills)
        total_cost = sum((bill.total_cost for bill in bills), Decimal("0"))

        logger.info("Generated billing report",
                    providers=len(bills),
                    total_errors=total_errors,
                    total_cost=float(total_cost))

        return BillingReport(
            start_date=error_report.period.start.isoformat(),
            end_date=error_report.period.end.isoformat(),
            bills=tuple(bills),
            total_errors=total_errors,
            total_cost=total_cost.quantize(CENT, rounding=ROUND_HALF_UP),
        )
