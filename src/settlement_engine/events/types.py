"""Domain event types for settlement operations.

Events are frozen dataclasses named after what happened. The class name is
the routing key; payloads carry amounts in minor units and serialize to
plain JSON for audit sinks and payee notifications.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class EventCategory(str, Enum):
    """Settlement area an event belongs to."""

    ESCROW = "escrow"
    REFUND = "refund"
    LOYALTY = "loyalty"
    ACCOUNT = "account"


@dataclass(frozen=True)
class EventMetadata:
    """Metadata attached to every domain event."""

    event_id: UUID
    timestamp: datetime
    correlation_id: str | None  # booking id
    actor_type: str  # system, scheduler, webhook or operator
    source_service: str
    version: int = 1

    @classmethod
    def create(
        cls,
        correlation_id: str | None = None,
        actor_type: str = "system",
        source_service: str = "settlement",
    ) -> EventMetadata:
        return cls(
            event_id=uuid4(),
            timestamp=datetime.now(timezone.utc),
            correlation_id=correlation_id,
            actor_type=actor_type,
            source_service=source_service,
        )


@dataclass(frozen=True)
class DomainEvent:
    """Something that happened to a booking's money."""

    metadata: EventMetadata

    @property
    def event_type(self) -> str:
        return self.__class__.__name__

    @property
    def category(self) -> EventCategory:
        raise NotImplementedError(f"{type(self).__name__} has no category")

    def to_dict(self) -> dict[str, Any]:
        data = _serialize(asdict(self))
        data["event_type"] = self.event_type
        data["category"] = self.category.value
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


def _serialize(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {k: _serialize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_serialize(v) for v in obj]
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    return obj


# --- Escrow ---


@dataclass(frozen=True)
class EscrowScheduled(DomainEvent):
    """Funds for a completed booking are held until the release date."""

    booking_id: str
    payee_id: str
    amount: int
    release_on: date

    @property
    def category(self) -> EventCategory:
        return EventCategory.ESCROW


@dataclass(frozen=True)
class EscrowRescheduled(DomainEvent):
    """A scheduled release moved to a different date."""

    booking_id: str
    previous_release_on: date
    release_on: date

    @property
    def category(self) -> EventCategory:
        return EventCategory.ESCROW


@dataclass(frozen=True)
class EscrowReleased(DomainEvent):
    """Held funds were transferred on or after the release date."""

    booking_id: str
    payee_id: str
    amount: int
    transfer_ref: str | None

    @property
    def category(self) -> EventCategory:
        return EventCategory.ESCROW


@dataclass(frozen=True)
class EscrowReleasedEarly(DomainEvent):
    """Held funds were transferred before the release date."""

    booking_id: str
    payee_id: str
    amount: int
    transfer_ref: str | None
    scheduled_release_on: date

    @property
    def category(self) -> EventCategory:
        return EventCategory.ESCROW


@dataclass(frozen=True)
class EscrowReleaseFailed(DomainEvent):
    """A release transfer failed and needs operator attention."""

    booking_id: str
    payee_id: str
    failure_code: str
    failure_reason: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.ESCROW


# --- Refund ---


@dataclass(frozen=True)
class RefundIssued(DomainEvent):
    """A refund was requested from the gateway (or recorded as zero)."""

    booking_id: str
    refund_amount: int
    cancellation_fee: int
    reason: str
    status: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.REFUND


@dataclass(frozen=True)
class RefundStatusChanged(DomainEvent):
    """The gateway reported a new status for a refund."""

    booking_id: str
    refund_ref: str
    previous_status: str
    status: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.REFUND


# --- Loyalty ---


@dataclass(frozen=True)
class LoyaltyCreditIssued(DomainEvent):
    """Retention from a completed booking became loyalty credit."""

    credit_id: int
    devotee_id: str
    payee_id: str
    amount: int
    source_booking_id: str
    expires_at: datetime | None

    @property
    def category(self) -> EventCategory:
        return EventCategory.LOYALTY


@dataclass(frozen=True)
class LoyaltyCreditRedeemed(DomainEvent):
    """Loyalty credit was consumed against a booking."""

    devotee_id: str
    payee_id: str
    booking_id: str
    amount: int
    remaining_balance: int

    @property
    def category(self) -> EventCategory:
        return EventCategory.LOYALTY


# --- Account ---


@dataclass(frozen=True)
class ConnectAccountStatusChanged(DomainEvent):
    """A payee's sub-account changed internal status."""

    payee_id: str
    account_ref: str
    previous_status: str | None
    status: str
    can_receive_payouts: bool

    @property
    def category(self) -> EventCategory:
        return EventCategory.ACCOUNT
