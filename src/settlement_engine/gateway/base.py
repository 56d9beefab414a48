"""Base protocol and types for the external payment gateway.

The gateway moves money between bank accounts (transfers to payee
sub-accounts, refunds of captured charges) and reports sub-account state.
Every call may fail or time out and must be idempotent on its key; the
settlement engine never retries on its own.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Any, Protocol


class GatewayError(Exception):
    """Typed failure of a gateway call.

    Attributes:
        code: Gateway error code (e.g. "timeout", "card_declined").
        retryable: True when the same call may be retried safely with the
            same idempotency key (network errors, timeouts, rate limits).
    """

    def __init__(self, message: str, *, code: str = "api_error", retryable: bool = False):
        self.code = code
        self.retryable = retryable
        super().__init__(message)


@dataclass(frozen=True)
class TransferResult:
    """Result of creating a transfer to a connected sub-account."""

    transfer_ref: str
    amount: int
    destination_account_ref: str
    status: str  # raw gateway status: pending/in_transit/paid/failed/reversed/...
    idempotency_key: str
    available_on: datetime.date | None = None


@dataclass(frozen=True)
class RefundResult:
    """Result of creating a refund against an original charge."""

    refund_ref: str
    amount: int
    status: str  # raw gateway status: pending/succeeded/failed/canceled
    idempotency_key: str
    failure_reason: str | None = None


@dataclass(frozen=True)
class AccountRequirements:
    """Outstanding verification requirements of a sub-account."""

    currently_due: tuple[str, ...] = ()
    eventually_due: tuple[str, ...] = ()
    past_due: tuple[str, ...] = ()
    errors: tuple[dict[str, str], ...] = ()


@dataclass(frozen=True)
class BankAccountSummary:
    """Non-sensitive summary of the payout bank account."""

    last4: str
    currency: str
    bank_name: str | None = None


@dataclass(frozen=True)
class RawAccountState:
    """Sub-account state exactly as the gateway reports it."""

    account_ref: str
    charges_enabled: bool
    payouts_enabled: bool
    requirements: AccountRequirements = field(default_factory=AccountRequirements)
    bank_account: BankAccountSummary | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> RawAccountState:
        """Build from a gateway account object (webhook or API payload)."""
        requirements = payload.get("requirements") or {}
        external = (payload.get("external_accounts") or {}).get("data") or []
        bank = None
        if external:
            first = external[0]
            bank = BankAccountSummary(
                last4=str(first.get("last4", "")),
                currency=str(first.get("currency", "")),
                bank_name=first.get("bank_name"),
            )
        return cls(
            account_ref=str(payload["id"]),
            charges_enabled=bool(payload.get("charges_enabled", False)),
            payouts_enabled=bool(payload.get("payouts_enabled", False)),
            requirements=AccountRequirements(
                currently_due=tuple(requirements.get("currently_due") or ()),
                eventually_due=tuple(requirements.get("eventually_due") or ()),
                past_due=tuple(requirements.get("past_due") or ()),
                errors=tuple(requirements.get("errors") or ()),
            ),
            bank_account=bank,
            metadata=dict(payload.get("metadata") or {}),
        )


class PaymentGateway(Protocol):
    """Protocol for payment gateway adapters.

    Implementations may use a vendor SDK, plain HTTP or a message queue.
    Calls with an idempotency key already seen must return the original
    result instead of moving money again.
    """

    gateway_name: str

    def create_transfer(
        self,
        *,
        amount: int,
        destination_account_ref: str,
        idempotency_key: str,
        metadata: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> TransferResult:
        """Transfer ``amount`` minor units to a connected sub-account.

        Raises:
            GatewayError: On decline, validation, network or timeout failures.
        """
        ...

    def create_refund(
        self,
        *,
        original_charge_ref: str,
        amount: int,
        reason: str,
        idempotency_key: str,
        timeout: float | None = None,
    ) -> RefundResult:
        """Refund part or all of a captured charge.

        Raises:
            GatewayError: On decline, validation, network or timeout failures.
        """
        ...

    def get_account_status(
        self,
        account_ref: str,
        *,
        timeout: float | None = None,
    ) -> RawAccountState:
        """Fetch the current state of a connected sub-account.

        Raises:
            GatewayError: If the account cannot be fetched.
        """
        ...


def idempotency_key(booking_id: str, operation: str) -> str:
    """Idempotency key for a money-moving operation on a booking."""
    return f"{booking_id}:{operation}"
