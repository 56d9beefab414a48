"""Pure settlement calculators: splits, pricing breakdowns, refunds."""

from settlement_engine.calculators.pricing_builder import PricingBreakdownBuilder
from settlement_engine.calculators.refund_policy import RefundPolicyEngine
from settlement_engine.calculators.split_calculator import SplitCalculator, calculate_split
from settlement_engine.types import (
    CancellationPolicy,
    CancellationTier,
    PayeeCategory,
    PaymentSplit,
    PricingBreakdown,
    RefundQuote,
    RefundReason,
    RefundStatus,
    RefundTransaction,
)

__all__ = [
    "PricingBreakdownBuilder",
    "RefundPolicyEngine",
    "SplitCalculator",
    "calculate_split",
    "CancellationPolicy",
    "CancellationTier",
    "PayeeCategory",
    "PaymentSplit",
    "PricingBreakdown",
    "RefundQuote",
    "RefundReason",
    "RefundStatus",
    "RefundTransaction",
]
