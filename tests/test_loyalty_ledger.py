"""Tests for the loyalty credit ledger."""

from datetime import timedelta

import pytest

from settlement_engine.calculators import PricingBreakdownBuilder
from settlement_engine.errors import InsufficientLoyaltyCredit
from settlement_engine.events import LoyaltyCreditIssued, LoyaltyCreditRedeemed
from settlement_engine.policy import LoyaltyConfig, PricingConfig
from settlement_engine.services import LoyaltyLedger


def pricing_with_retention(retention: int):
    return PricingBreakdownBuilder().build(
        service_price=10000, advance_percentage=50, retention_amount=retention
    )


@pytest.fixture
def ledger(workflow) -> LoyaltyLedger:
    return workflow.loyalty


@pytest.fixture
def expiring_ledger(session, clock, emitter) -> LoyaltyLedger:
    return LoyaltyLedger(
        session, config=LoyaltyConfig(credit_ttl_days=30), clock=clock, emitter=emitter
    )


class TestIssueCredit:
    """Test credit issuance from retention."""

    def test_issue_retention_credit(self, ledger, make_booking, recorder):
        booking = make_booking(pricing=pricing_with_retention(3000))

        credit = ledger.issue_retention_credit(booking)

        assert credit.original_amount == 3000
        assert credit.used_amount == 0
        assert credit.remaining_amount == 3000
        assert credit.status == "active"
        assert credit.expires_at is None
        assert credit.devotee_id == "devotee_1"
        assert credit.payee_id == "payee_1"
        events = recorder.of_type(LoyaltyCreditIssued)
        assert events[0].amount == 3000

    def test_issue_is_idempotent_per_booking(self, ledger, make_booking, recorder):
        booking = make_booking()

        first = ledger.issue_retention_credit(booking)
        second = ledger.issue_retention_credit(booking)

        assert first is second
        assert len(recorder.of_type(LoyaltyCreditIssued)) == 1

    def test_zero_retention_issues_nothing(self, ledger, make_booking):
        booking = make_booking(pricing=pricing_with_retention(0))

        assert ledger.issue_retention_credit(booking) is None

    def test_ttl_sets_expiry(self, expiring_ledger, make_booking, clock):
        credit = expiring_ledger.issue_retention_credit(make_booking())

        assert credit.expires_at == clock.now() + timedelta(days=30)


class TestRedeem:
    """Test pair-scoped redemption."""

    def test_credit_untouched_until_redeemed(self, ledger, make_booking):
        """Applying credit at pricing time does not consume it."""
        ledger.issue_retention_credit(make_booking(pricing=pricing_with_retention(3000)))
        breakdown = PricingBreakdownBuilder(PricingConfig(minimum_service_price=1000)).build(
            service_price=2000, advance_percentage=50, retention_amount=0, applied_credits=3000
        )

        assert breakdown.discount_applied == 2000
        assert ledger.available_balance("devotee_1", "payee_1") == 3000

        ledger.redeem("devotee_1", "payee_1", breakdown.discount_applied, "bk_next")

        credit = ledger.available_credits("devotee_1", "payee_1")[0]
        assert credit.used_amount == 2000
        assert credit.remaining_amount == 1000
        assert ledger.available_balance("devotee_1", "payee_1") == 1000

    def test_redeem_records_history(self, ledger, make_booking, recorder):
        ledger.issue_retention_credit(make_booking())

        redemptions = ledger.redeem("devotee_1", "payee_1", 200, "bk_next")

        assert len(redemptions) == 1
        assert redemptions[0].amount == 200
        assert redemptions[0].booking_id == "bk_next"
        assert redemptions[0].credit.redemptions == redemptions
        event = recorder.of_type(LoyaltyCreditRedeemed)[0]
        assert event.remaining_balance == 300

    def test_redeem_spans_credits_and_marks_fully_used(self, ledger, make_booking):
        first = ledger.issue_retention_credit(make_booking("bk_1"))
        second = ledger.issue_retention_credit(make_booking("bk_2"))

        redemptions = ledger.redeem("devotee_1", "payee_1", 700, "bk_next")

        assert [r.amount for r in redemptions] == [500, 200]
        assert first.status == "fully_used"
        assert second.status == "active"
        assert second.remaining_amount == 300

    def test_credit_scoped_to_payee(self, ledger, make_booking):
        ledger.issue_retention_credit(make_booking())

        assert ledger.available_balance("devotee_1", "payee_2") == 0
        with pytest.raises(InsufficientLoyaltyCredit) as exc_info:
            ledger.redeem("devotee_1", "payee_2", 100, "bk_next")

        assert exc_info.value.available == 0

    def test_overdraw_rejected(self, ledger, make_booking):
        ledger.issue_retention_credit(make_booking())

        with pytest.raises(InsufficientLoyaltyCredit):
            ledger.redeem("devotee_1", "payee_1", 501, "bk_next")

        assert ledger.available_balance("devotee_1", "payee_1") == 500

    def test_non_positive_amount_rejected(self, ledger):
        with pytest.raises(ValueError):
            ledger.redeem("devotee_1", "payee_1", 0, "bk_next")

    def test_soonest_expiry_used_first(self, session, clock, emitter, make_booking):
        short = LoyaltyLedger(
            session, config=LoyaltyConfig(credit_ttl_days=10), clock=clock, emitter=emitter
        )
        forever = LoyaltyLedger(session, clock=clock, emitter=emitter)
        no_expiry = forever.issue_retention_credit(make_booking("bk_1"))
        expiring = short.issue_retention_credit(make_booking("bk_2"))

        forever.redeem("devotee_1", "payee_1", 500, "bk_next")

        assert expiring.status == "fully_used"
        assert no_expiry.remaining_amount == 500


class TestExpiry:
    """Test credit expiry."""

    def test_expire_credits(self, expiring_ledger, make_booking, clock):
        credit = expiring_ledger.issue_retention_credit(make_booking())
        clock.advance(days=31)

        assert expiring_ledger.available_balance("devotee_1", "payee_1") == 0
        assert expiring_ledger.expire_credits() == 1
        assert credit.status == "expired"
        assert expiring_ledger.expire_credits() == 0

    def test_unexpired_credit_kept(self, expiring_ledger, make_booking, clock):
        expiring_ledger.issue_retention_credit(make_booking())
        clock.advance(days=29)

        assert expiring_ledger.expire_credits() == 0
        assert expiring_ledger.available_balance("devotee_1", "payee_1") == 500
