"""Tests for connected sub-account lifecycle."""

import pytest

from settlement_engine.errors import ConnectAccountNotFound
from settlement_engine.events import ConnectAccountStatusChanged
from settlement_engine.gateway import (
    AccountRequirements,
    BankAccountSummary,
    GatewayError,
    RawAccountState,
)
from settlement_engine.services import (
    AccountStatus,
    ConnectAccountLifecycle,
    TransferStatus,
    can_receive_payouts,
    map_account_status,
    map_transfer_status,
    onboarding_status_message,
)


def raw_state(
    charges=True,
    payouts=True,
    currently_due=(),
    eventually_due=(),
    errors=(),
    account_ref="acct_payee_1",
):
    return RawAccountState(
        account_ref=account_ref,
        charges_enabled=charges,
        payouts_enabled=payouts,
        requirements=AccountRequirements(
            currently_due=tuple(currently_due),
            eventually_due=tuple(eventually_due),
            errors=tuple(errors),
        ),
    )


@pytest.fixture
def accounts(workflow) -> ConnectAccountLifecycle:
    return workflow.accounts


class TestStatusMapping:
    """Test raw gateway state to internal status mapping."""

    def test_enabled(self):
        assert map_account_status(raw_state()) == AccountStatus.ENABLED

    def test_requirements_due_is_pending(self):
        state = raw_state(currently_due=["individual.id_number"])
        assert map_account_status(state) == AccountStatus.PENDING

    def test_disabled_capability_is_restricted(self):
        """Restricted even when no requirements are listed."""
        assert map_account_status(raw_state(payouts=False)) == AccountStatus.RESTRICTED
        assert map_account_status(raw_state(charges=False)) == AccountStatus.RESTRICTED

    def test_transfer_status_mapping(self):
        assert map_transfer_status("paid") == TransferStatus.PAID
        assert map_transfer_status("IN_TRANSIT") == TransferStatus.IN_TRANSIT
        assert map_transfer_status("mystery") == TransferStatus.PENDING
        assert map_transfer_status(None) == TransferStatus.PENDING

    def test_from_payload(self):
        state = RawAccountState.from_payload(
            {
                "id": "acct_1",
                "charges_enabled": True,
                "payouts_enabled": True,
                "requirements": {"currently_due": ["tos_acceptance.date"]},
                "external_accounts": {"data": [{"last4": "6789", "currency": "usd"}]},
            }
        )

        assert state.account_ref == "acct_1"
        assert state.requirements.currently_due == ("tos_acceptance.date",)
        assert state.bank_account == BankAccountSummary(last4="6789", currency="usd")


class TestLifecycle:
    """Test onboarding, refresh and deactivation."""

    def test_start_onboarding(self, accounts, recorder):
        account = accounts.start_onboarding("payee_1", "acct_payee_1")

        assert account.account_status == "pending"
        assert account.is_active is True
        assert can_receive_payouts(account) is False
        events = recorder.of_type(ConnectAccountStatusChanged)
        assert events[0].previous_status is None
        assert events[0].status == "pending"

    def test_start_onboarding_is_idempotent(self, accounts):
        first = accounts.start_onboarding("payee_1", "acct_payee_1")
        second = accounts.start_onboarding("payee_1", "acct_payee_1")

        assert first is second

    def test_start_onboarding_with_different_account(self, accounts):
        accounts.start_onboarding("payee_1", "acct_payee_1")

        with pytest.raises(ValueError, match="already has account"):
            accounts.start_onboarding("payee_1", "acct_other")

    def test_refresh_enables_account(self, accounts, gateway, recorder):
        accounts.start_onboarding("payee_1", "acct_payee_1")
        gateway.set_account_state(raw_state())

        account = accounts.refresh_status("payee_1")

        assert account.account_status == "enabled"
        assert accounts.can_payee_receive_payouts("payee_1") is True
        changed = recorder.of_type(ConnectAccountStatusChanged)[-1]
        assert changed.previous_status == "pending"
        assert changed.can_receive_payouts is True

    def test_refresh_without_status_change_emits_nothing(self, accounts, gateway, recorder):
        accounts.start_onboarding("payee_1", "acct_payee_1")
        gateway.set_account_state(raw_state())
        accounts.refresh_status("payee_1")
        count = len(recorder.events)

        accounts.refresh_status("payee_1")

        assert len(recorder.events) == count

    def test_refresh_unknown_payee(self, accounts):
        with pytest.raises(ConnectAccountNotFound):
            accounts.refresh_status("payee_missing")

    def test_refresh_gateway_error_leaves_record(self, accounts, gateway):
        accounts.start_onboarding("payee_1", "acct_payee_1")
        gateway.fail_next(code="rate_limit")

        with pytest.raises(GatewayError):
            accounts.refresh_status("payee_1")

        assert accounts.get_account("payee_1").account_status == "pending"

    def test_apply_update_stores_requirements_and_bank(self, accounts):
        accounts.start_onboarding("payee_1", "acct_payee_1")
        state = RawAccountState(
            account_ref="acct_payee_1",
            charges_enabled=True,
            payouts_enabled=True,
            requirements=AccountRequirements(currently_due=("external_account",)),
            bank_account=BankAccountSummary(last4="1234", currency="usd", bank_name="SBI"),
        )

        account = accounts.apply_account_update(state)

        assert account.account_status == "pending"
        assert account.currently_due == ["external_account"]
        assert account.bank_account_json["last4"] == "1234"
        assert can_receive_payouts(account) is False

    def test_apply_update_for_unknown_account(self, accounts):
        assert accounts.apply_account_update(raw_state(account_ref="acct_unknown")) is None

    def test_restricted_account_cannot_receive_payouts(self, accounts):
        accounts.start_onboarding("payee_1", "acct_payee_1")

        account = accounts.apply_account_update(raw_state(payouts=False))

        assert account.account_status == "restricted"
        assert can_receive_payouts(account) is False

    def test_deactivate_keeps_record(self, accounts, gateway):
        accounts.start_onboarding("payee_1", "acct_payee_1")
        gateway.set_account_state(raw_state())
        accounts.refresh_status("payee_1")

        account = accounts.deactivate("payee_1")

        assert account.is_active is False
        assert account.deactivated_at is not None
        assert accounts.get_account("payee_1") is not None
        assert accounts.can_payee_receive_payouts("payee_1") is False

    def test_no_account_cannot_receive_payouts(self, accounts):
        assert accounts.can_payee_receive_payouts("payee_missing") is False


class TestOnboardingMessages:
    """Test payee-facing status messages."""

    def test_messages(self, accounts):
        account = accounts.start_onboarding("payee_1", "acct_payee_1")
        assert onboarding_status_message(account) == "Your account is being reviewed."

        accounts.apply_account_update(raw_state(currently_due=["a", "b"]))
        assert onboarding_status_message(account) == (
            "Please complete 2 required items to activate your account."
        )

        accounts.apply_account_update(
            raw_state(payouts=False, errors=[{"code": "invalid_address"}])
        )
        assert onboarding_status_message(account) == (
            "There are issues with your account that need to be resolved."
        )

        accounts.apply_account_update(raw_state(payouts=False, eventually_due=["x"]))
        assert onboarding_status_message(account) == (
            "Your account is active but additional information will be required soon."
        )

        accounts.apply_account_update(raw_state())
        assert onboarding_status_message(account) == (
            "Your account is fully set up and ready to receive payments."
        )

        accounts.deactivate("payee_1")
        assert onboarding_status_message(account) == "Your payout account has been deactivated."
