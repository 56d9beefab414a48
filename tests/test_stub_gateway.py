"""Tests for the stub payment gateway."""

import pytest

from settlement_engine.gateway import GatewayError, RawAccountState, StubPaymentGateway


class TestTransfers:
    def test_create_transfer(self):
        gateway = StubPaymentGateway()

        result = gateway.create_transfer(
            amount=9025, destination_account_ref="acct_1", idempotency_key="bk_1:escrow_release"
        )

        assert result.transfer_ref.startswith("tr_stub_")
        assert result.status == "paid"
        assert result.amount == 9025
        assert gateway.transfers_for("acct_1")[0]["amount"] == 9025

    def test_same_key_returns_same_transfer(self):
        """The stub honours idempotency keys like a real processor."""
        gateway = StubPaymentGateway()
        kwargs = dict(amount=9025, destination_account_ref="acct_1", idempotency_key="k1")

        first = gateway.create_transfer(**kwargs)
        second = gateway.create_transfer(**kwargs)

        assert first == second
        assert gateway.transfer_count == 1

    def test_pending_until_simulated(self):
        gateway = StubPaymentGateway(auto_pay=False)
        result = gateway.create_transfer(
            amount=100, destination_account_ref="acct_1", idempotency_key="k1"
        )
        assert result.status == "pending"

        gateway.simulate_transfer_status(result.transfer_ref, "paid")

        again = gateway.create_transfer(
            amount=100, destination_account_ref="acct_1", idempotency_key="k1"
        )
        assert again.status == "paid"

    def test_non_positive_amount(self):
        with pytest.raises(GatewayError) as exc_info:
            StubPaymentGateway().create_transfer(
                amount=0, destination_account_ref="acct_1", idempotency_key="k1"
            )

        assert exc_info.value.code == "invalid_amount"
        assert exc_info.value.retryable is False


class TestRefunds:
    def test_create_refund(self):
        gateway = StubPaymentGateway()

        result = gateway.create_refund(
            original_charge_ref="ch_1",
            amount=2500,
            reason="requested_by_customer",
            idempotency_key="bk_1:refund",
        )

        assert result.status == "succeeded"
        assert gateway.refund_count == 1

    def test_simulate_refund_status(self):
        gateway = StubPaymentGateway()
        kwargs = dict(
            original_charge_ref="ch_1", amount=2500, reason="disputed", idempotency_key="k1"
        )
        result = gateway.create_refund(**kwargs)

        gateway.simulate_refund_status(result.refund_ref, "failed", "expired_card")

        again = gateway.create_refund(**kwargs)
        assert again.status == "failed"
        assert again.failure_reason == "expired_card"


class TestFailures:
    def test_fail_next_applies_once(self):
        gateway = StubPaymentGateway()
        gateway.fail_next(code="rate_limit")

        with pytest.raises(GatewayError) as exc_info:
            gateway.create_transfer(amount=1, destination_account_ref="a", idempotency_key="k")

        assert exc_info.value.code == "rate_limit"
        assert exc_info.value.retryable is True
        assert gateway.create_transfer(
            amount=1, destination_account_ref="a", idempotency_key="k"
        ).status == "paid"
        assert gateway.calls == [("create_transfer", "k"), ("create_transfer", "k")]

    def test_unknown_account(self):
        with pytest.raises(GatewayError) as exc_info:
            StubPaymentGateway().get_account_status("acct_missing")

        assert exc_info.value.code == "resource_missing"

    def test_account_state(self):
        gateway = StubPaymentGateway()
        state = RawAccountState(account_ref="acct_1", charges_enabled=True, payouts_enabled=False)
        gateway.set_account_state(state)

        assert gateway.get_account_status("acct_1") == state
