"""Settlement policy configuration.

Explicit configuration for the settlement engine. No defaults that move money
without a gate.

Pattern:
    config = SettlementConfig(
        split=SplitConfig(),
        pricing=PricingConfig(minimum_service_price=2500),
        escrow=EscrowConfig(hold_days=1),
        early_release=EarlyReleaseCriteria(),
        gateway=GatewayConfig(sandbox=False, webhook_secret="..."),
    )

Rules:
    1. No env vars. Policy is explicit.
    2. No globals. Each workflow instance has its own config.
    3. Immutable after creation (frozen dataclasses).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from settlement_engine.types import (
    CancellationPolicy,
    Percentage,
    to_decimal,
)


def _check_percentage(name: str, value: Percentage) -> None:
    pct = to_decimal(value)
    if pct < 0 or pct > 100:
        raise ValueError(f"{name} must be between 0 and 100")


@dataclass(frozen=True)
class SplitConfig:
    """
    Payment split configuration.

    Attributes:
        platform_fee_percentage: Platform share of the post-retention amount.
            Default 5.
        default_temple_share_percentage: Temple share for employee payees
            that have no explicit agreement. Default 30.
    """

    platform_fee_percentage: Percentage = 5
    default_temple_share_percentage: Percentage = 30

    def __post_init__(self) -> None:
        """Validate configuration."""
        _check_percentage("platform_fee_percentage", self.platform_fee_percentage)
        _check_percentage("default_temple_share_percentage", self.default_temple_share_percentage)


@dataclass(frozen=True)
class PricingConfig:
    """
    Pricing configuration.

    Attributes:
        minimum_service_price: Smallest bookable service price in minor
            units. Default 2500.
        platform_fee_percentage: Used for the informational platform fee in
            the breakdown. Default 5.
        default_retention_amount: Retention withheld per booking when the
            service does not specify one. Default 2500.
    """

    minimum_service_price: int = 2500
    platform_fee_percentage: Percentage = 5
    default_retention_amount: int = 2500

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.minimum_service_price < 0:
            raise ValueError("minimum_service_price cannot be negative")
        if self.default_retention_amount < 0:
            raise ValueError("default_retention_amount cannot be negative")
        _check_percentage("platform_fee_percentage", self.platform_fee_percentage)


@dataclass(frozen=True)
class EscrowConfig:
    """
    Escrow hold configuration.

    Attributes:
        hold_days: Days between service completion and release. Default 1.
        auto_release_enabled: If False, the due-release sweep does nothing and
            releases must be triggered explicitly. Default True.
    """

    hold_days: int = 1
    auto_release_enabled: bool = True

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.hold_days < 0:
            raise ValueError("hold_days cannot be negative")
        if self.hold_days > 30:
            raise ValueError("hold_days cannot exceed 30")


@dataclass(frozen=True)
class EarlyReleaseCriteria:
    """
    Conjunctive gate for early escrow release.

    Attributes:
        min_rating: Minimum average rating. Default 4.5.
        min_completed_bookings: Minimum completed bookings. Default 10.
        recent_window: How many recent bookings the cancellation rate covers.
            Default 20.
        max_cancellation_rate: Highest allowed cancellation rate over the
            window, as a fraction. Default 0.10.
        require_verified: Payee must be verified. Default True.
    """

    min_rating: Decimal = Decimal("4.5")
    min_completed_bookings: int = 10
    recent_window: int = 20
    max_cancellation_rate: Decimal = Decimal("0.10")
    require_verified: bool = True

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.recent_window < 1:
            raise ValueError("recent_window must be at least 1")
        if not (0 <= to_decimal(self.max_cancellation_rate) <= 1):
            raise ValueError("max_cancellation_rate must be between 0 and 1")


@dataclass(frozen=True)
class LoyaltyConfig:
    """
    Loyalty credit configuration.

    Attributes:
        credit_ttl_days: Days until an issued credit expires. None = never.
    """

    credit_ttl_days: int | None = None

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.credit_ttl_days is not None and self.credit_ttl_days < 1:
            raise ValueError("credit_ttl_days must be at least 1 or None")


@dataclass(frozen=True)
class GatewayConfig:
    """
    Payment gateway configuration.

    Attributes:
        name: Gateway identifier used in logs.
        sandbox: If True, the gateway points at a test environment.
        timeout_seconds: Request timeout for every gateway call. Default 30.
        currency: Settlement currency code. Default "usd".
        webhook_secret: Shared secret for validating incoming webhooks.
    """

    name: str = "stub"
    sandbox: bool = True
    timeout_seconds: int = 30
    currency: str = "usd"
    webhook_secret: str | None = None

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not self.name:
            raise ValueError("name is required")
        if self.timeout_seconds < 1 or self.timeout_seconds > 120:
            raise ValueError("timeout_seconds must be between 1 and 120")


def default_refund_policy() -> CancellationPolicy:
    """Standard cancellation policy: free at 48h, then 25/50/100% fees."""
    return CancellationPolicy.build(
        free_until_hours=48,
        no_refund_hours=0,
        tiers=[(48, 0), (24, 25), (12, 50), (0, 100)],
        emergency_exceptions=["death", "hospital", "medical", "natural disaster"],
    )


@dataclass(frozen=True)
class SettlementConfig:
    """
    Complete settlement configuration.

    Attributes:
        split: Split percentages.
        pricing: Pricing limits.
        escrow: Hold period.
        early_release: Early release gate.
        loyalty: Loyalty credit behaviour.
        gateway: Gateway connection settings.
        refund_policy: Policy used when a service defines none.
    """

    split: SplitConfig = field(default_factory=SplitConfig)
    pricing: PricingConfig = field(default_factory=PricingConfig)
    escrow: EscrowConfig = field(default_factory=EscrowConfig)
    early_release: EarlyReleaseCriteria = field(default_factory=EarlyReleaseCriteria)
    loyalty: LoyaltyConfig = field(default_factory=LoyaltyConfig)
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    refund_policy: CancellationPolicy = field(default_factory=default_refund_policy)


def validate_production_config(config: SettlementConfig) -> list[str]:
    """
    Validate that a configuration is safe for production.

    Returns a list of warnings/errors. Empty list = safe.
    """
    issues: list[str] = []

    if config.gateway.sandbox:
        issues.append(f"WARNING: Gateway '{config.gateway.name}' is in sandbox mode")

    if not config.gateway.webhook_secret:
        issues.append(f"WARNING: Gateway '{config.gateway.name}' has no webhook_secret")

    if not config.refund_policy.tiers:
        issues.append(
            "WARNING: Refund policy has no tiers; every cancellation inside the free "
            "window will refund nothing"
        )

    return issues
