"""Domain exceptions for the settlement engine.

Validation errors are raised synchronously, before any gateway call, and are
never retried. Gateway failures are typed separately (see
``settlement_engine.gateway.base.GatewayError``) so the orchestrator can
decide whether a retry is safe.
"""

from __future__ import annotations


class SettlementError(Exception):
    """Base class for all settlement engine errors."""


class InvalidSplitInput(SettlementError):
    """Raised when split inputs are out of range."""


class InvalidPricingInput(SettlementError):
    """Raised when a pricing breakdown cannot be built or fails re-validation."""


class InvalidRefundPolicy(SettlementError):
    """Raised when a cancellation policy is internally inconsistent."""


class ApprovalRequired(SettlementError):
    """Raised when the emergency refund path is used without an approver."""


class NotEligibleForEarlyRelease(SettlementError):
    """Raised when early escrow release is requested for an ineligible payee."""

    def __init__(self, payee_id: str, reasons: list[str]):
        self.payee_id = payee_id
        self.reasons = reasons
        msg = f"Payee '{payee_id}' is not eligible for early release"
        if reasons:
            msg += ": " + "; ".join(reasons)
        super().__init__(msg)


class EscrowNotFound(SettlementError):
    """Raised when no escrow record exists for a booking."""

    def __init__(self, booking_id: str):
        self.booking_id = booking_id
        super().__init__(f"No escrow record for booking '{booking_id}'")


class ConnectAccountNotFound(SettlementError):
    """Raised when a payee has no connected sub-account."""

    def __init__(self, payee_id: str):
        self.payee_id = payee_id
        super().__init__(f"No connect account for payee '{payee_id}'")


class BookingNotFound(SettlementError):
    """Raised when the booking store has no record for an id."""

    def __init__(self, booking_id: str):
        self.booking_id = booking_id
        super().__init__(f"Booking '{booking_id}' not found")


class InsufficientLoyaltyCredit(SettlementError):
    """Raised when a redemption exceeds the pair's available credit."""

    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(
            f"Requested {requested} of loyalty credit, only {available} available"
        )


class RefundAlreadyIssued(SettlementError):
    """Raised when a booking's advance has already been refunded in full."""

    def __init__(self, booking_id: str, refunded: int):
        self.booking_id = booking_id
        self.refunded = refunded
        super().__init__(f"Booking '{booking_id}' already refunded {refunded}")


class PayeeNotFound(SettlementError):
    """Raised when the booking store has no track record for a payee."""

    def __init__(self, payee_id: str):
        self.payee_id = payee_id
        super().__init__(f"Payee '{payee_id}' not found")
