"""Settlement models.

Covers the persisted settlement records:
- Escrow records (one per completed booking)
- Refund transactions (append-only, one per cancellation)
- Loyalty credits and their redemption history
- Connected payee sub-accounts

Bookings themselves live outside this engine and are referenced by id only.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement_engine.models.base import Base, TimestampMixin, utcnow


class EscrowRecord(TimestampMixin, Base):
    """Held payout for a completed booking.

    Mutated only by EscrowManager. Terminal at released, released_early
    or failed.
    """

    __tablename__ = "escrow_record"

    booking_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    payee_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="scheduled")
    hold_started_at: Mapped[datetime] = mapped_column(nullable=False)
    scheduled_release_on: Mapped[date] = mapped_column(nullable=False)

    # Split at settlement time (minor units)
    payee_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    temple_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    platform_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    retention_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    transfer_ref: Mapped[str | None] = mapped_column(String(128))
    transfer_status: Mapped[str | None] = mapped_column(String(20))
    released_at: Mapped[datetime | None] = mapped_column()
    failure_code: Mapped[str | None] = mapped_column(String(64))
    failure_reason: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint(
            "status IN ('scheduled', 'released', 'released_early', 'failed')",
            name="escrow_record_status_ck",
        ),
        CheckConstraint("payee_amount >= 0", name="escrow_record_amount_ck"),
        Index("escrow_record_due", "status", "scheduled_release_on"),
    )


class RefundRecord(TimestampMixin, Base):
    """Refund issued for a cancelled booking.

    Append-only: amounts never change after insert. Only the gateway
    status fields move, and never out of a terminal status.
    """

    __tablename__ = "refund_transaction"

    refund_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    booking_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    original_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    refund_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    cancellation_fee: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reason: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    initiated_by: Mapped[str] = mapped_column(String(64), nullable=False)
    approved_by: Mapped[str | None] = mapped_column(String(64))
    description: Mapped[str | None] = mapped_column(Text)
    idempotency_key: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    gateway_refund_ref: Mapped[str | None] = mapped_column(String(128), unique=True)
    failure_reason: Mapped[str | None] = mapped_column(Text)
    metadata_json: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'succeeded', 'failed', 'cancelled')",
            name="refund_transaction_status_ck",
        ),
        CheckConstraint(
            "refund_amount + cancellation_fee = original_amount",
            name="refund_transaction_conservation_ck",
        ),
    )


class LoyaltyCredit(TimestampMixin, Base):
    """Credit owned by a (devotee, payee) pair.

    Never deleted; only status-transitioned to expired or fully_used.
    """

    __tablename__ = "loyalty_credit"

    credit_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    devotee_id: Mapped[str] = mapped_column(String(64), nullable=False)
    payee_id: Mapped[str] = mapped_column(String(64), nullable=False)
    source_booking_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    original_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    used_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    expires_at: Mapped[datetime | None] = mapped_column()

    redemptions: Mapped[list["LoyaltyRedemption"]] = relationship(
        back_populates="credit", order_by="LoyaltyRedemption.redemption_id"
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'expired', 'fully_used')", name="loyalty_credit_status_ck"
        ),
        CheckConstraint(
            "used_amount >= 0 AND used_amount <= original_amount",
            name="loyalty_credit_usage_ck",
        ),
        Index("loyalty_credit_pair", "devotee_id", "payee_id", "status"),
    )

    @property
    def remaining_amount(self) -> int:
        return self.original_amount - self.used_amount


class LoyaltyRedemption(Base):
    """Usage history entry for a loyalty credit."""

    __tablename__ = "loyalty_redemption"

    redemption_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    credit_id: Mapped[int] = mapped_column(
        ForeignKey("loyalty_credit.credit_id"), nullable=False, index=True
    )
    booking_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    redeemed_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    credit: Mapped[LoyaltyCredit] = relationship(back_populates="redemptions")


class ConnectAccount(TimestampMixin, Base):
    """A payee's sub-account at the payment gateway.

    Never deleted; deactivation keeps the record for audit.
    """

    __tablename__ = "connect_account"

    connect_account_id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )
    payee_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    account_ref: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    account_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    charges_enabled: Mapped[bool] = mapped_column(nullable=False, default=False)
    payouts_enabled: Mapped[bool] = mapped_column(nullable=False, default=False)
    requirements_json: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)
    bank_account_json: Mapped[dict[str, Any] | None] = mapped_column()
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)
    onboarding_started_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    last_refreshed_at: Mapped[datetime | None] = mapped_column()
    deactivated_at: Mapped[datetime | None] = mapped_column()

    __table_args__ = (
        CheckConstraint(
            "account_status IN ('pending', 'restricted', 'enabled')",
            name="connect_account_status_ck",
        ),
    )

    @property
    def currently_due(self) -> list[str]:
        return list((self.requirements_json or {}).get("currently_due", []))
