"""Booking-side collaborators consumed by the settlement engine.

The booking database lives outside this engine. The engine only needs
read-only lookups of bookings and payee track records (``BookingStore``)
and an injectable ``Clock`` so that time-based rules stay deterministic
under test.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Protocol

from settlement_engine.types import (
    CancellationPolicy,
    PayeeCategory,
    PricingBreakdown,
)


class BookingStatus(str, Enum):
    """Booking lifecycle status values."""

    REQUESTED = "requested"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


@dataclass(frozen=True)
class Payee:
    """Service provider (priest) receiving settlement funds."""

    payee_id: str
    category: PayeeCategory = PayeeCategory.INDEPENDENT
    temple_share_percentage: Decimal | None = None
    rating: Decimal | None = None
    completed_booking_count: int = 0
    is_verified: bool = False
    temple_account_ref: str | None = None


@dataclass(frozen=True)
class Booking:
    """A devotee's booking of a payee's service.

    Pricing is frozen at confirmation and owned by the booking.
    """

    booking_id: str
    devotee_id: str
    payee_id: str
    service_id: str
    scheduled_start: datetime
    scheduled_end: datetime
    pricing: PricingBreakdown
    status: str = BookingStatus.REQUESTED
    charge_ref: str | None = None
    cancellation_policy: CancellationPolicy | None = None


class BookingStore(Protocol):
    """Read-only booking queries used by settlement and eligibility checks."""

    def get_booking(self, booking_id: str) -> Booking | None:
        """Return a booking by id, or None."""
        ...

    def get_recent_bookings(self, payee_id: str, limit: int) -> list[Booking]:
        """Return the payee's most recent bookings, newest first."""
        ...

    def get_payee(self, payee_id: str) -> Payee | None:
        """Return the payee's verified track record, or None."""
        ...


class InMemoryBookingStore:
    """Dictionary-backed ``BookingStore`` for development and tests."""

    def __init__(
        self, bookings: list[Booking] | None = None, payees: list[Payee] | None = None
    ):
        self._bookings: dict[str, Booking] = {}
        self._payees: dict[str, Payee] = {p.payee_id: p for p in payees or []}
        self._lock = threading.Lock()
        for booking in bookings or []:
            self.put(booking)

    def put(self, booking: Booking) -> None:
        with self._lock:
            self._bookings[booking.booking_id] = booking

    def put_payee(self, payee: Payee) -> None:
        with self._lock:
            self._payees[payee.payee_id] = payee

    def get_payee(self, payee_id: str) -> Payee | None:
        return self._payees.get(payee_id)

    def get_booking(self, booking_id: str) -> Booking | None:
        return self._bookings.get(booking_id)

    def get_recent_bookings(self, payee_id: str, limit: int) -> list[Booking]:
        with self._lock:
            matching = [b for b in self._bookings.values() if b.payee_id == payee_id]
        matching.sort(key=lambda b: b.scheduled_start, reverse=True)
        return matching[:limit]


class Clock(Protocol):
    """Source of the current time."""

    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


@dataclass
class FixedClock:
    """Clock frozen at a given instant (for tests and replays)."""

    current: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        """Move the clock forward by ``timedelta(**kwargs)``."""
        self.current = self.current + timedelta(**kwargs)
