"""Domain events for settlement operations."""

from settlement_engine.events.emitter import EventEmitter, EventHandler, Subscription
from settlement_engine.events.types import (
    ConnectAccountStatusChanged,
    DomainEvent,
    EscrowReleased,
    EscrowReleasedEarly,
    EscrowReleaseFailed,
    EscrowRescheduled,
    EscrowScheduled,
    EventCategory,
    EventMetadata,
    LoyaltyCreditIssued,
    LoyaltyCreditRedeemed,
    RefundIssued,
    RefundStatusChanged,
)

__all__ = [
    # Emitter
    "EventEmitter",
    "EventHandler",
    "Subscription",
    # Base
    "DomainEvent",
    "EventCategory",
    "EventMetadata",
    # Escrow
    "EscrowScheduled",
    "EscrowRescheduled",
    "EscrowReleased",
    "EscrowReleasedEarly",
    "EscrowReleaseFailed",
    # Refund
    "RefundIssued",
    "RefundStatusChanged",
    # Loyalty
    "LoyaltyCreditIssued",
    "LoyaltyCreditRedeemed",
    # Account
    "ConnectAccountStatusChanged",
]
