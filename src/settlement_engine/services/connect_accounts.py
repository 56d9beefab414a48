"""Connected sub-account lifecycle.

Tracks onboarding and verification of each payee's sub-account at the
payment gateway and maps the gateway's raw account state into an internal
three-value status:

- enabled: charges and payouts enabled, nothing currently due
- restricted: charges or payouts disabled, even with no requirements listed
- pending: both capabilities enabled but requirements currently due

``can_receive_payouts`` is the single gate every transfer path checks
before moving money.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_engine.bookings import Clock, SystemClock
from settlement_engine.database import entity_lock
from settlement_engine.errors import ConnectAccountNotFound
from settlement_engine.events import ConnectAccountStatusChanged, EventEmitter, EventMetadata
from settlement_engine.gateway import PaymentGateway, RawAccountState
from settlement_engine.models import ConnectAccount

logger = logging.getLogger(__name__)


class AccountStatus(str, Enum):
    """Internal sub-account status."""

    PENDING = "pending"
    RESTRICTED = "restricted"
    ENABLED = "enabled"


class TransferStatus(str, Enum):
    """Internal transfer status."""

    PENDING = "pending"
    IN_TRANSIT = "in_transit"
    PAID = "paid"
    FAILED = "failed"
    REVERSED = "reversed"


_TRANSFER_STATUS_MAP = {status.value: status for status in TransferStatus}


def map_account_status(state: RawAccountState) -> AccountStatus:
    """Map a gateway account state onto the internal status."""
    if not (state.charges_enabled and state.payouts_enabled):
        return AccountStatus.RESTRICTED
    if state.requirements.currently_due:
        return AccountStatus.PENDING
    return AccountStatus.ENABLED


def map_transfer_status(external_status: str | None) -> TransferStatus:
    """Map a gateway transfer status; unknown values stay pending."""
    status = _TRANSFER_STATUS_MAP.get((external_status or "").lower())
    if status is None:
        logger.warning("Unknown transfer status %r mapped to pending", external_status)
        return TransferStatus.PENDING
    return status


def can_receive_payouts(account: ConnectAccount | None) -> bool:
    """True iff charges and payouts are enabled and nothing is currently due."""
    if account is None or not account.is_active:
        return False
    return bool(
        account.charges_enabled and account.payouts_enabled and not account.currently_due
    )


def onboarding_status_message(account: ConnectAccount) -> str:
    """Human-readable onboarding status for the payee."""
    requirements = account.requirements_json or {}
    if not account.is_active:
        return "Your payout account has been deactivated."
    if account.account_status == AccountStatus.ENABLED:
        return "Your account is fully set up and ready to receive payments."
    if requirements.get("errors"):
        return "There are issues with your account that need to be resolved."
    currently_due = requirements.get("currently_due") or []
    if currently_due:
        return f"Please complete {len(currently_due)} required items to activate your account."
    if requirements.get("eventually_due"):
        return "Your account is active but additional information will be required soon."
    return "Your account is being reviewed."


class ConnectAccountLifecycle:
    """Persisted lifecycle of payee sub-accounts.

    Mutations of one payee's account are serialized with a row lock plus an
    in-process entity lock. Callers own the transaction.
    """

    def __init__(
        self,
        db: Session,
        gateway: PaymentGateway,
        *,
        emitter: EventEmitter | None = None,
        clock: Clock | None = None,
        timeout: float | None = None,
    ):
        self.db = db
        self.gateway = gateway
        self.emitter = emitter
        self.clock = clock or SystemClock()
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_account(self, payee_id: str, *, for_update: bool = False) -> ConnectAccount | None:
        stmt = select(ConnectAccount).where(ConnectAccount.payee_id == payee_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def require_account(self, payee_id: str, *, for_update: bool = False) -> ConnectAccount:
        account = self.get_account(payee_id, for_update=for_update)
        if account is None:
            raise ConnectAccountNotFound(payee_id)
        return account

    def get_by_account_ref(
        self, account_ref: str, *, for_update: bool = False
    ) -> ConnectAccount | None:
        stmt = select(ConnectAccount).where(ConnectAccount.account_ref == account_ref)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def can_payee_receive_payouts(self, payee_id: str) -> bool:
        """Payout gate for a payee; False when no account exists."""
        return can_receive_payouts(self.get_account(payee_id))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_onboarding(self, payee_id: str, account_ref: str) -> ConnectAccount:
        """Record a newly created sub-account in pending status.

        Repeating the call for the same payee returns the existing record.
        """
        with entity_lock("connect_account", payee_id):
            existing = self.get_account(payee_id, for_update=True)
            if existing is not None:
                if existing.account_ref != account_ref:
                    raise ValueError(
                        f"Payee '{payee_id}' already has account {existing.account_ref}"
                    )
                return existing

            account = ConnectAccount(
                payee_id=payee_id,
                account_ref=account_ref,
                account_status=AccountStatus.PENDING.value,
                charges_enabled=False,
                payouts_enabled=False,
                requirements_json={},
                is_active=True,
                onboarding_started_at=self.clock.now(),
            )
            self.db.add(account)
            self.db.flush()
            logger.info("Started onboarding for payee %s (account %s)", payee_id, account_ref)
            self._emit(account, previous_status=None)
            return account

    def refresh_status(self, payee_id: str) -> ConnectAccount:
        """Fetch the account from the gateway and apply it.

        Raises:
            ConnectAccountNotFound: If the payee has no account.
            GatewayError: If the gateway call fails; the record is unchanged.
        """
        account = self.require_account(payee_id)
        state = self.gateway.get_account_status(account.account_ref, timeout=self.timeout)
        updated = self.apply_account_update(state)
        if updated is None:
            raise ConnectAccountNotFound(payee_id)
        return updated

    def apply_account_update(self, state: RawAccountState) -> ConnectAccount | None:
        """Apply a gateway account state (from a refresh or a webhook).

        Returns None when the account is unknown to this engine.
        """
        account = self.get_by_account_ref(state.account_ref)
        if account is None:
            logger.warning("Ignoring update for unknown account %s", state.account_ref)
            return None

        with entity_lock("connect_account", account.payee_id):
            self.db.refresh(account, with_for_update=True)
            previous_status = account.account_status
            new_status = map_account_status(state)

            account.account_status = new_status.value
            account.charges_enabled = state.charges_enabled
            account.payouts_enabled = state.payouts_enabled
            account.requirements_json = _requirements_json(state)
            account.bank_account_json = (
                {
                    "last4": state.bank_account.last4,
                    "currency": state.bank_account.currency,
                    "bank_name": state.bank_account.bank_name,
                }
                if state.bank_account is not None
                else account.bank_account_json
            )
            account.last_refreshed_at = self.clock.now()
            self.db.flush()

            if previous_status != new_status.value:
                logger.info(
                    "Account %s for payee %s: %s -> %s",
                    account.account_ref,
                    account.payee_id,
                    previous_status,
                    new_status.value,
                )
                self._emit(account, previous_status=previous_status)
            return account

    def deactivate(self, payee_id: str) -> ConnectAccount:
        """Stop payouts to a payee; the record is kept for audit."""
        with entity_lock("connect_account", payee_id):
            account = self.require_account(payee_id, for_update=True)
            if account.is_active:
                account.is_active = False
                account.deactivated_at = self.clock.now()
                self.db.flush()
                logger.info("Deactivated account %s for payee %s", account.account_ref, payee_id)
            return account

    def _emit(self, account: ConnectAccount, previous_status: str | None) -> None:
        if self.emitter is None:
            return
        self.emitter.emit(
            ConnectAccountStatusChanged(
                metadata=EventMetadata.create(correlation_id=account.payee_id),
                payee_id=account.payee_id,
                account_ref=account.account_ref,
                previous_status=previous_status,
                status=account.account_status,
                can_receive_payouts=can_receive_payouts(account),
            )
        )


def _requirements_json(state: RawAccountState) -> dict[str, Any]:
    requirements = state.requirements
    return {
        "currently_due": list(requirements.currently_due),
        "eventually_due": list(requirements.eventually_due),
        "past_due": list(requirements.past_due),
        "errors": [dict(error) for error in requirements.errors],
    }
