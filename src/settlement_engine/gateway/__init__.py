"""Payment gateway boundary: protocol, result types and stub adapter."""

from settlement_engine.gateway.base import (
    AccountRequirements,
    BankAccountSummary,
    GatewayError,
    PaymentGateway,
    RawAccountState,
    RefundResult,
    TransferResult,
    idempotency_key,
)
from settlement_engine.gateway.stub import StubPaymentGateway

__all__ = [
    "AccountRequirements",
    "BankAccountSummary",
    "GatewayError",
    "PaymentGateway",
    "RawAccountState",
    "RefundResult",
    "TransferResult",
    "idempotency_key",
    "StubPaymentGateway",
]
