"""Pricing breakdown builder.

Computes the full breakdown for a booking at confirmation time. The result is
frozen on the booking; settlement later derives the payment split from it
without re-running pricing, so pricing policy and payout policy can change
independently.
"""

from __future__ import annotations

from settlement_engine.calculators.split_calculator import SplitCalculator
from settlement_engine.types import (
    PayeeCategory,
    Percentage,
    PricingBreakdown,
    percentage_of,
    round_half_up,
    to_decimal,
)
from settlement_engine.errors import InvalidPricingInput, InvalidSplitInput
from settlement_engine.policy import PricingConfig


class PricingBreakdownBuilder:
    """Builds immutable pricing breakdowns."""

    def __init__(self, config: PricingConfig | None = None):
        self.config = config or PricingConfig()
        self._splitter = SplitCalculator(self.config.platform_fee_percentage)

    def travel_fee(self, distance: Percentage, rate_per_unit: Percentage | None) -> int:
        """Travel fee in minor units, or 0 when the service charges no rate.

        Rounding to two decimals of the major unit is rounding to a whole
        minor unit, which is what this returns.
        """
        if rate_per_unit is None:
            return 0
        distance_dec = to_decimal(distance)
        rate_dec = to_decimal(rate_per_unit)
        if distance_dec < 0:
            raise InvalidPricingInput(f"distance cannot be negative, got {distance}")
        if rate_dec < 0:
            raise InvalidPricingInput(f"rate_per_unit cannot be negative, got {rate_per_unit}")
        return round_half_up(distance_dec * rate_dec)

    def build(
        self,
        *,
        service_price: int,
        advance_percentage: Percentage,
        retention_amount: int | None = None,
        distance: Percentage = 0,
        rate_per_unit: Percentage | None = None,
        applied_credits: int = 0,
        payee_category: PayeeCategory | str = PayeeCategory.INDEPENDENT,
        temple_share_percentage: Percentage | None = None,
    ) -> PricingBreakdown:
        """Compute the breakdown.

        Args:
            service_price: Base price of the service in minor units.
            advance_percentage: Share of the final price charged up front (1-100).
            retention_amount: Loyalty retention; defaults to the configured
                amount. Capped at the final price.
            distance: Travel distance in the service's distance unit.
            rate_per_unit: Travel rate in minor units per distance unit.
            applied_credits: Loyalty credit the devotee elects to apply. The
                caller bounds this to what the ledger actually holds.
            payee_category: Used for the informational temple share.
            temple_share_percentage: Temple share for employee payees.

        Returns:
            PricingBreakdown satisfying all breakdown invariants.

        Raises:
            InvalidPricingInput: On out-of-range inputs.
        """
        advance_pct = to_decimal(advance_percentage)
        if advance_pct < 1 or advance_pct > 100:
            raise InvalidPricingInput(
                f"advance_percentage must be between 1 and 100, got {advance_percentage}"
            )
        if service_price < self.config.minimum_service_price:
            raise InvalidPricingInput(
                f"service_price {service_price} is below the minimum "
                f"{self.config.minimum_service_price}"
            )
        if applied_credits < 0:
            raise InvalidPricingInput(f"applied_credits cannot be negative, got {applied_credits}")

        if retention_amount is None:
            retention_amount = self.config.default_retention_amount
        if retention_amount < 0:
            raise InvalidPricingInput(
                f"retention_amount cannot be negative, got {retention_amount}"
            )

        travel_fee = self.travel_fee(distance, rate_per_unit)
        subtotal = service_price + travel_fee
        # Credits can never drive the price negative.
        discount_applied = min(applied_credits, subtotal)
        final_price = subtotal - discount_applied

        advance_amount = percentage_of(final_price, advance_pct)
        remaining_amount = final_price - advance_amount

        retention = min(retention_amount, final_price)
        try:
            split = self._splitter.calculate(
                final_price=final_price,
                retention_amount=retention,
                payee_category=payee_category,
                temple_share_percentage=temple_share_percentage,
            )
        except InvalidSplitInput as exc:
            raise InvalidPricingInput(str(exc)) from exc

        return PricingBreakdown(
            service_price=service_price,
            travel_fee=travel_fee,
            discount_applied=discount_applied,
            loyalty_credit_used=discount_applied,
            subtotal=subtotal,
            platform_fee=split.platform_amount,
            temple_share=split.temple_amount,
            payee_earnings=split.payee_amount,
            final_price=final_price,
            advance_amount=advance_amount,
            remaining_amount=remaining_amount,
            retention_amount=retention,
        )

    @staticmethod
    def revalidate(breakdown: PricingBreakdown) -> PricingBreakdown:
        """Re-check a frozen breakdown before settlement.

        Raises:
            InvalidPricingInput: If any invariant is violated.
        """
        issues = breakdown.validate()
        if issues:
            raise InvalidPricingInput("Pricing breakdown failed validation: " + "; ".join(issues))
        return breakdown

