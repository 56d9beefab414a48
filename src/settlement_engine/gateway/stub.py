"""Stub payment gateway for local development and testing.

Replace with an adapter for a real processor SDK in production.
"""

from __future__ import annotations

import datetime
import threading
import uuid
from typing import Any

from settlement_engine.gateway.base import (
    GatewayError,
    RawAccountState,
    RefundResult,
    TransferResult,
)


class StubPaymentGateway:
    """In-memory gateway that honours idempotency keys.

    In production, this would:
    - Call the processor's transfer and refund APIs
    - Pass the idempotency key as a request header
    - Translate processor errors into GatewayError (retryable or not)
    """

    gateway_name = "stub"

    def __init__(self, auto_pay: bool = True):
        """Initialize stub gateway.

        Args:
            auto_pay: If True, transfers report as paid immediately.
                      If False, transfers stay pending until simulated.
        """
        self.auto_pay = auto_pay
        self._lock = threading.Lock()
        self._transfers: dict[str, dict[str, Any]] = {}
        self._refunds: dict[str, dict[str, Any]] = {}
        self._accounts: dict[str, RawAccountState] = {}
        self._pending_errors: list[GatewayError] = []
        self.calls: list[tuple[str, str]] = []

    # ------------------------------------------------------------------
    # PaymentGateway protocol
    # ------------------------------------------------------------------

    def create_transfer(
        self,
        *,
        amount: int,
        destination_account_ref: str,
        idempotency_key: str,
        metadata: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> TransferResult:
        """Create a transfer (stub implementation)."""
        with self._lock:
            self.calls.append(("create_transfer", idempotency_key))
            self._raise_pending_error()

            existing = self._by_key(self._transfers, idempotency_key)
            if existing is not None:
                return self._transfer_result(existing)

            if amount <= 0:
                raise GatewayError("Transfer amount must be positive", code="invalid_amount")

            transfer_ref = f"tr_stub_{uuid.uuid4().hex[:16]}"
            record = {
                "transfer_ref": transfer_ref,
                "amount": amount,
                "destination": destination_account_ref,
                "status": "paid" if self.auto_pay else "pending",
                "idempotency_key": idempotency_key,
                "metadata": dict(metadata or {}),
                "available_on": datetime.date.today() + datetime.timedelta(days=2),
            }
            self._transfers[transfer_ref] = record
            return self._transfer_result(record)

    def create_refund(
        self,
        *,
        original_charge_ref: str,
        amount: int,
        reason: str,
        idempotency_key: str,
        timeout: float | None = None,
    ) -> RefundResult:
        """Create a refund (stub implementation)."""
        with self._lock:
            self.calls.append(("create_refund", idempotency_key))
            self._raise_pending_error()

            existing = self._by_key(self._refunds, idempotency_key)
            if existing is not None:
                return self._refund_result(existing)

            if amount <= 0:
                raise GatewayError("Refund amount must be positive", code="invalid_amount")

            refund_ref = f"re_stub_{uuid.uuid4().hex[:16]}"
            record = {
                "refund_ref": refund_ref,
                "charge": original_charge_ref,
                "amount": amount,
                "reason": reason,
                "status": "succeeded",
                "idempotency_key": idempotency_key,
                "failure_reason": None,
            }
            self._refunds[refund_ref] = record
            return self._refund_result(record)

    def get_account_status(
        self,
        account_ref: str,
        *,
        timeout: float | None = None,
    ) -> RawAccountState:
        """Return the simulated account state."""
        with self._lock:
            self.calls.append(("get_account_status", account_ref))
            self._raise_pending_error()
            state = self._accounts.get(account_ref)
            if state is None:
                raise GatewayError(f"Account {account_ref} not found", code="resource_missing")
            return state

    # ------------------------------------------------------------------
    # Simulation helpers (for testing)
    # ------------------------------------------------------------------

    def set_account_state(self, state: RawAccountState) -> None:
        """Register or replace the state reported for an account."""
        with self._lock:
            self._accounts[state.account_ref] = state

    def fail_next(self, code: str = "timeout", retryable: bool = True, message: str = "") -> None:
        """Make the next gateway call raise a GatewayError."""
        with self._lock:
            self._pending_errors.append(
                GatewayError(message or f"Simulated {code}", code=code, retryable=retryable)
            )

    def simulate_transfer_status(self, transfer_ref: str, status: str) -> None:
        """Change a transfer's status, e.g. to "paid" or "failed"."""
        with self._lock:
            if transfer_ref in self._transfers:
                self._transfers[transfer_ref]["status"] = status

    def simulate_refund_status(
        self, refund_ref: str, status: str, failure_reason: str | None = None
    ) -> None:
        """Change a refund's status."""
        with self._lock:
            if refund_ref in self._refunds:
                self._refunds[refund_ref]["status"] = status
                self._refunds[refund_ref]["failure_reason"] = failure_reason

    def transfers_for(self, destination_account_ref: str) -> list[dict[str, Any]]:
        """All distinct transfers sent to an account."""
        return [t for t in self._transfers.values() if t["destination"] == destination_account_ref]

    @property
    def transfer_count(self) -> int:
        return len(self._transfers)

    @property
    def refund_count(self) -> int:
        return len(self._refunds)

    # ------------------------------------------------------------------

    def _raise_pending_error(self) -> None:
        if self._pending_errors:
            raise self._pending_errors.pop(0)

    @staticmethod
    def _by_key(records: dict[str, dict[str, Any]], key: str) -> dict[str, Any] | None:
        for record in records.values():
            if record["idempotency_key"] == key:
                return record
        return None

    @staticmethod
    def _transfer_result(record: dict[str, Any]) -> TransferResult:
        return TransferResult(
            transfer_ref=record["transfer_ref"],
            amount=record["amount"],
            destination_account_ref=record["destination"],
            status=record["status"],
            idempotency_key=record["idempotency_key"],
            available_on=record["available_on"],
        )

    @staticmethod
    def _refund_result(record: dict[str, Any]) -> RefundResult:
        return RefundResult(
            refund_ref=record["refund_ref"],
            amount=record["amount"],
            status=record["status"],
            idempotency_key=record["idempotency_key"],
            failure_reason=record["failure_reason"],
        )
