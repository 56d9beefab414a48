"""Loyalty credit ledger.

Retention withheld from a completed booking becomes credit owned by the
(devotee, payee) pair and is only redeemable against that same payee.
Credits are never deleted; they move from active to fully_used or expired.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_engine.bookings import Booking, Clock, SystemClock
from settlement_engine.database import entity_lock
from settlement_engine.errors import InsufficientLoyaltyCredit
from settlement_engine.events import (
    EventEmitter,
    EventMetadata,
    LoyaltyCreditIssued,
    LoyaltyCreditRedeemed,
)
from settlement_engine.models import LoyaltyCredit, LoyaltyRedemption
from settlement_engine.policy import LoyaltyConfig
from settlement_engine.services.state_machine import (
    LoyaltyCreditStateMachine,
    LoyaltyCreditStatus,
)

logger = logging.getLogger(__name__)


class LoyaltyLedger:
    """Issues, redeems and expires pair-scoped loyalty credit."""

    def __init__(
        self,
        db: Session,
        *,
        config: LoyaltyConfig | None = None,
        clock: Clock | None = None,
        emitter: EventEmitter | None = None,
    ):
        self.db = db
        self.config = config or LoyaltyConfig()
        self.clock = clock or SystemClock()
        self.emitter = emitter

    def issue_retention_credit(self, booking: Booking) -> LoyaltyCredit | None:
        """Turn a completed booking's retention into active credit.

        Returns the existing credit if the booking was already processed,
        and None when the booking retained nothing.
        """
        amount = booking.pricing.retention_amount
        if amount <= 0:
            return None

        existing = self.db.execute(
            select(LoyaltyCredit).where(LoyaltyCredit.source_booking_id == booking.booking_id)
        ).scalar_one_or_none()
        if existing is not None:
            return existing

        now = self.clock.now()
        expires_at = None
        if self.config.credit_ttl_days is not None:
            expires_at = now + timedelta(days=self.config.credit_ttl_days)

        credit = LoyaltyCredit(
            devotee_id=booking.devotee_id,
            payee_id=booking.payee_id,
            source_booking_id=booking.booking_id,
            original_amount=amount,
            used_amount=0,
            status=LoyaltyCreditStatus.ACTIVE.value,
            expires_at=expires_at,
            created_at=now,
            updated_at=now,
        )
        self.db.add(credit)
        self.db.flush()

        logger.info(
            "Issued %s loyalty credit to devotee %s for payee %s (booking %s)",
            amount,
            booking.devotee_id,
            booking.payee_id,
            booking.booking_id,
        )
        if self.emitter is not None:
            self.emitter.emit(
                LoyaltyCreditIssued(
                    metadata=EventMetadata.create(correlation_id=booking.booking_id),
                    credit_id=credit.credit_id,
                    devotee_id=credit.devotee_id,
                    payee_id=credit.payee_id,
                    amount=amount,
                    source_booking_id=booking.booking_id,
                    expires_at=expires_at,
                )
            )
        return credit

    def available_credits(
        self,
        devotee_id: str,
        payee_id: str,
        *,
        as_of: datetime | None = None,
        for_update: bool = False,
    ) -> list[LoyaltyCredit]:
        """Active, unexpired credits of the pair, soonest expiry first."""
        as_of = as_of or self.clock.now()
        stmt = (
            select(LoyaltyCredit)
            .where(
                LoyaltyCredit.devotee_id == devotee_id,
                LoyaltyCredit.payee_id == payee_id,
                LoyaltyCredit.status == LoyaltyCreditStatus.ACTIVE.value,
                LoyaltyCredit.used_amount < LoyaltyCredit.original_amount,
                (LoyaltyCredit.expires_at.is_(None)) | (LoyaltyCredit.expires_at > as_of),
            )
            .order_by(
                LoyaltyCredit.expires_at.is_(None),
                LoyaltyCredit.expires_at,
                LoyaltyCredit.credit_id,
            )
        )
        if for_update:
            stmt = stmt.with_for_update()
        return list(self.db.execute(stmt).scalars().all())

    def available_balance(
        self, devotee_id: str, payee_id: str, *, as_of: datetime | None = None
    ) -> int:
        return sum(c.remaining_amount for c in self.available_credits(devotee_id, payee_id, as_of=as_of))

    def redeem(
        self, devotee_id: str, payee_id: str, amount: int, booking_id: str
    ) -> list[LoyaltyRedemption]:
        """Consume ``amount`` of the pair's credit against a booking.

        Credits closest to expiry are used first. Each credit touched gets a
        redemption history entry.

        Raises:
            InsufficientLoyaltyCredit: If the pair holds less than ``amount``.
        """
        if amount <= 0:
            raise ValueError(f"Redemption amount must be positive, got {amount}")

        with entity_lock("loyalty", f"{devotee_id}:{payee_id}"):
            now = self.clock.now()
            credits = self.available_credits(devotee_id, payee_id, as_of=now, for_update=True)
            available = sum(c.remaining_amount for c in credits)
            if amount > available:
                raise InsufficientLoyaltyCredit(amount, available)

            redemptions: list[LoyaltyRedemption] = []
            outstanding = amount
            for credit in credits:
                if outstanding == 0:
                    break
                take = min(credit.remaining_amount, outstanding)
                credit.used_amount += take
                outstanding -= take
                redemption = LoyaltyRedemption(
                    credit=credit, booking_id=booking_id, amount=take, redeemed_at=now
                )
                self.db.add(redemption)
                redemptions.append(redemption)
                if credit.remaining_amount == 0:
                    LoyaltyCreditStateMachine.validate_transition(
                        credit.status, LoyaltyCreditStatus.FULLY_USED
                    )
                    credit.status = LoyaltyCreditStatus.FULLY_USED.value

            self.db.flush()

        logger.info(
            "Redeemed %s loyalty credit for devotee %s with payee %s (booking %s)",
            amount,
            devotee_id,
            payee_id,
            booking_id,
        )
        if self.emitter is not None:
            self.emitter.emit(
                LoyaltyCreditRedeemed(
                    metadata=EventMetadata.create(correlation_id=booking_id),
                    devotee_id=devotee_id,
                    payee_id=payee_id,
                    booking_id=booking_id,
                    amount=amount,
                    remaining_balance=available - amount,
                )
            )
        return redemptions

    def expire_credits(self, as_of: datetime | None = None) -> int:
        """Move active credits past their expiry to expired. Returns the count."""
        as_of = as_of or self.clock.now()
        credits = self.db.execute(
            select(LoyaltyCredit)
            .where(
                LoyaltyCredit.status == LoyaltyCreditStatus.ACTIVE.value,
                LoyaltyCredit.expires_at.is_not(None),
                LoyaltyCredit.expires_at <= as_of,
            )
            .with_for_update()
        ).scalars().all()

        for credit in credits:
            LoyaltyCreditStateMachine.validate_transition(credit.status, LoyaltyCreditStatus.EXPIRED)
            credit.status = LoyaltyCreditStatus.EXPIRED.value
        self.db.flush()

        if credits:
            logger.info("Expired %d loyalty credits as of %s", len(credits), as_of)
        return len(credits)
