"""Tiered error billing."""

from .billing_engine import BillingEngine, BillingReport, BillingTier, ProviderBill, TierCharge

__all__ = ["BillingEngine", "BillingReport", "BillingTier", "ProviderBill", "TierCharge"]
