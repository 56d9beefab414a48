"""Payment split calculator.

Divides a booking's final price between the payee, the temple (for temple
employees) and the platform, after the loyalty retention is withheld.

Rounding rules:
- Platform and temple shares are rounded half-up to whole minor units.
- The payee absorbs the rounding remainder, so the three shares always sum
  to ``final_price - retention_amount`` exactly.
"""

from __future__ import annotations

from decimal import Decimal

from settlement_engine.types import (
    HUNDRED,
    PayeeCategory,
    PaymentSplit,
    Percentage,
    percentage_of,
    to_decimal,
)
from settlement_engine.errors import InvalidSplitInput


class SplitCalculator:
    """Pure split computation. Safe to call repeatedly and concurrently."""

    def __init__(self, platform_fee_percentage: Percentage = 5):
        self.platform_fee_percentage = self._check_percentage(
            "platform_fee_percentage", platform_fee_percentage
        )

    @staticmethod
    def _check_percentage(name: str, value: Percentage) -> Decimal:
        pct = to_decimal(value)
        if pct < 0 or pct > HUNDRED:
            raise InvalidSplitInput(f"{name} must be between 0 and 100, got {value}")
        return pct

    def calculate(
        self,
        *,
        final_price: int,
        retention_amount: int,
        payee_category: PayeeCategory | str,
        temple_share_percentage: Percentage | None = None,
        platform_fee_percentage: Percentage | None = None,
    ) -> PaymentSplit:
        """Compute the split for one booking.

        Args:
            final_price: Price after discounts, in minor units.
            retention_amount: Portion withheld as loyalty credit.
            payee_category: independent, employee or owner.
            temple_share_percentage: Temple share, only used for employees.
            platform_fee_percentage: Overrides the calculator's platform fee.

        Returns:
            PaymentSplit whose amounts sum to ``final_price - retention_amount``.

        Raises:
            InvalidSplitInput: On negative amounts, retention above the price,
                or percentages outside [0, 100].
        """
        try:
            category = PayeeCategory(payee_category)
        except ValueError as exc:
            raise InvalidSplitInput(f"unknown payee_category {payee_category!r}") from exc

        if final_price < 0:
            raise InvalidSplitInput(f"final_price cannot be negative, got {final_price}")
        if retention_amount < 0:
            raise InvalidSplitInput(
                f"retention_amount cannot be negative, got {retention_amount}"
            )
        if retention_amount > final_price:
            raise InvalidSplitInput(
                f"retention_amount ({retention_amount}) exceeds final_price ({final_price})"
            )

        platform_pct = (
            self._check_percentage("platform_fee_percentage", platform_fee_percentage)
            if platform_fee_percentage is not None
            else self.platform_fee_percentage
        )

        temple_pct = Decimal("0")
        if temple_share_percentage is not None:
            requested = self._check_percentage("temple_share_percentage", temple_share_percentage)
            if category == PayeeCategory.EMPLOYEE:
                temple_pct = requested

        if platform_pct + temple_pct > HUNDRED:
            raise InvalidSplitInput("platform and temple percentages exceed 100")

        amount_after_retention = final_price - retention_amount
        platform_amount = percentage_of(amount_after_retention, platform_pct)
        temple_amount = (
            percentage_of(amount_after_retention, temple_pct) if temple_pct else 0
        )
        payee_amount = amount_after_retention - platform_amount - temple_amount

        return PaymentSplit(
            payee_amount=payee_amount,
            temple_amount=temple_amount,
            platform_amount=platform_amount,
            retention_amount=retention_amount,
            payee_percentage=HUNDRED - platform_pct - temple_pct,
            temple_percentage=temple_pct,
            platform_percentage=platform_pct,
        )


def calculate_split(
    final_price: int,
    retention_amount: int,
    payee_category: PayeeCategory | str,
    temple_share_percentage: Percentage | None = None,
    platform_fee_percentage: Percentage = 5,
) -> PaymentSplit:
    """Functional shortcut for ``SplitCalculator(...).calculate(...)``."""
    return SplitCalculator(platform_fee_percentage).calculate(
        final_price=final_price,
        retention_amount=retention_amount,
        payee_category=payee_category,
        temple_share_percentage=temple_share_percentage,
    )
