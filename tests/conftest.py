"""Pytest fixtures for settlement engine tests."""

from __future__ import annotations

from collections.abc import Callable, Generator
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from settlement_engine.bookings import (
    Booking,
    BookingStatus,
    FixedClock,
    InMemoryBookingStore,
    Payee,
)
from settlement_engine.calculators import PricingBreakdownBuilder
from settlement_engine.database import get_engine
from settlement_engine.events import DomainEvent, EventEmitter
from settlement_engine.gateway import RawAccountState, StubPaymentGateway
from settlement_engine.models import Base
from settlement_engine.policy import SettlementConfig
from settlement_engine.services import ConnectAccountLifecycle
from settlement_engine.types import PayeeCategory, PricingBreakdown
from settlement_engine.workflow import SettlementWorkflow

# In-memory SQLite shared across threads through a StaticPool
TEST_DATABASE_URL = "sqlite://"

# Wednesday
NOW = datetime(2026, 3, 4, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """Fresh database per test."""
    engine = get_engine(TEST_DATABASE_URL)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
def session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Database session rolled back after each test."""
    with session_factory() as session:
        yield session
        session.rollback()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def gateway() -> StubPaymentGateway:
    return StubPaymentGateway()


@pytest.fixture
def bookings() -> InMemoryBookingStore:
    return InMemoryBookingStore()


@pytest.fixture
def config() -> SettlementConfig:
    return SettlementConfig()


class EventRecorder:
    """Collects every event emitted during a test."""

    def __init__(self, emitter: EventEmitter):
        self.events: list[DomainEvent] = []
        emitter.on_all(self.events.append)

    def of_type(self, event_type: type) -> list[DomainEvent]:
        return [e for e in self.events if isinstance(e, event_type)]

    @property
    def types(self) -> list[str]:
        return [e.event_type for e in self.events]


@pytest.fixture
def emitter() -> EventEmitter:
    return EventEmitter()


@pytest.fixture
def recorder(emitter: EventEmitter) -> EventRecorder:
    return EventRecorder(emitter)


@pytest.fixture
def workflow(
    session: Session,
    gateway: StubPaymentGateway,
    bookings: InMemoryBookingStore,
    config: SettlementConfig,
    clock: FixedClock,
    emitter: EventEmitter,
) -> SettlementWorkflow:
    return SettlementWorkflow(
        session, gateway, bookings, config=config, clock=clock, emitter=emitter
    )


# =============================================================================
# Factories
# =============================================================================


def standard_pricing(
    service_price: int = 10000,
    advance_percentage: int = 50,
    retention_amount: int = 500,
) -> PricingBreakdown:
    """10000 price, 5000 advance, 500 retention, 9025 to an independent payee."""
    return PricingBreakdownBuilder().build(
        service_price=service_price,
        advance_percentage=advance_percentage,
        retention_amount=retention_amount,
    )


@pytest.fixture
def make_booking(
    bookings: InMemoryBookingStore, clock: FixedClock
) -> Callable[..., Booking]:
    """Create and store a booking; defaults to confirmed, three days out."""

    def _make(
        booking_id: str = "bk_1",
        *,
        payee_id: str = "payee_1",
        devotee_id: str = "devotee_1",
        status: str = BookingStatus.CONFIRMED,
        hours_until_start: float = 72,
        pricing: PricingBreakdown | None = None,
        charge_ref: str | None = "ch_1",
    ) -> Booking:
        start = clock.now() + timedelta(hours=hours_until_start)
        booking = Booking(
            booking_id=booking_id,
            devotee_id=devotee_id,
            payee_id=payee_id,
            service_id="svc_puja",
            scheduled_start=start,
            scheduled_end=start + timedelta(hours=2),
            pricing=pricing or standard_pricing(),
            status=status,
            charge_ref=charge_ref,
        )
        bookings.put(booking)
        return booking

    return _make


@pytest.fixture
def payee() -> Payee:
    """Payee that passes the default early-release gate."""
    return Payee(
        payee_id="payee_1",
        category=PayeeCategory.INDEPENDENT,
        rating=Decimal("4.8"),
        completed_booking_count=25,
        is_verified=True,
    )


@pytest.fixture
def enable_account(
    session: Session, gateway: StubPaymentGateway, clock: FixedClock
) -> Callable[..., None]:
    """Onboard a payee and mark the sub-account fully enabled."""

    def _enable(payee_id: str = "payee_1") -> None:
        accounts = ConnectAccountLifecycle(session, gateway, clock=clock)
        account_ref = f"acct_{payee_id}"
        accounts.start_onboarding(payee_id, account_ref)
        gateway.set_account_state(
            RawAccountState(account_ref=account_ref, charges_enabled=True, payouts_enabled=True)
        )
        accounts.refresh_status(payee_id)

    return _enable
