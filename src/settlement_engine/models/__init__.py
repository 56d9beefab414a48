"""SQLAlchemy ORM models for settlement records."""

from settlement_engine.models.base import Base, TimestampMixin, UtcDateTime
from settlement_engine.models.settlement import (
    ConnectAccount,
    EscrowRecord,
    LoyaltyCredit,
    LoyaltyRedemption,
    RefundRecord,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "UtcDateTime",
    "ConnectAccount",
    "EscrowRecord",
    "LoyaltyCredit",
    "LoyaltyRedemption",
    "RefundRecord",
]
