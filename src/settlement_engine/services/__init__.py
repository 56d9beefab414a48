"""Stateful settlement services backed by the database."""

from settlement_engine.services.connect_accounts import (
    AccountStatus,
    ConnectAccountLifecycle,
    TransferStatus,
    can_receive_payouts,
    map_account_status,
    map_transfer_status,
    onboarding_status_message,
)
from settlement_engine.services.escrow_manager import (
    EligibilityResult,
    EscrowManager,
    ReleaseOutcome,
    cancellation_rate,
    estimate_payout_date,
    next_business_day,
)
from settlement_engine.services.loyalty_ledger import LoyaltyLedger
from settlement_engine.services.refund_service import (
    RefundService,
    map_refund_status,
)
from settlement_engine.services.state_machine import (
    BookingStateMachine,
    EscrowStateMachine,
    EscrowStatus,
    InvalidTransitionError,
    LoyaltyCreditStateMachine,
    LoyaltyCreditStatus,
    RefundStateMachine,
)

__all__ = [
    # Connect accounts
    "AccountStatus",
    "ConnectAccountLifecycle",
    "TransferStatus",
    "can_receive_payouts",
    "map_account_status",
    "map_transfer_status",
    "onboarding_status_message",
    # Escrow
    "EligibilityResult",
    "EscrowManager",
    "ReleaseOutcome",
    "cancellation_rate",
    "estimate_payout_date",
    "next_business_day",
    # Loyalty
    "LoyaltyLedger",
    # Refunds
    "RefundService",
    "map_refund_status",
    # State machines
    "BookingStateMachine",
    "EscrowStateMachine",
    "EscrowStatus",
    "InvalidTransitionError",
    "LoyaltyCreditStateMachine",
    "LoyaltyCreditStatus",
    "RefundStateMachine",
]
