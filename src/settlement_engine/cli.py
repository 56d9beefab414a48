"""Settlement Command Line Interface.

Provides operational tools for:
- Split and refund quotes
- Payout date estimates
- The escrow due-release sweep
- Running the API server

Usage:
    python -m settlement_engine.cli quote-split --final-price 10000 --retention 500 --category employee
    python -m settlement_engine.cli quote-refund --service-start 2026-03-01T10:00 --advance 5000
    python -m settlement_engine.cli payout-date --completed-on 2026-03-06
    python -m settlement_engine.cli release-due --as-of 2026-03-09
    python -m settlement_engine.cli serve
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Callable

from settlement_engine.bookings import BookingStore, Clock, InMemoryBookingStore, SystemClock
from settlement_engine.calculators import RefundPolicyEngine, SplitCalculator
from settlement_engine.config import get_settings
from settlement_engine.errors import SettlementError
from settlement_engine.gateway import PaymentGateway, StubPaymentGateway
from settlement_engine.policy import SettlementConfig
from settlement_engine.services import estimate_payout_date
from settlement_engine.types import PayeeCategory

logger = logging.getLogger(__name__)


def parse_datetime(s: str) -> datetime:
    """Parse ISO datetime string; naive values are UTC."""
    value = datetime.fromisoformat(s.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def parse_date(s: str) -> date:
    return date.fromisoformat(s)


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    raise TypeError(f"Cannot serialize {type(value).__name__}")


class SettlementCli:
    """Settlement Command Line Interface."""

    def __init__(
        self,
        config: SettlementConfig | None = None,
        *,
        gateway: PaymentGateway | None = None,
        bookings: BookingStore | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.config = config or get_settings().settlement_config()
        self.gateway = gateway
        self.bookings = bookings
        self.clock = clock or SystemClock()
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m settlement_engine.cli",
            description="Settlement operational tools",
        )
        parser.add_argument(
            "--log-level",
            default="WARNING",
            choices=["DEBUG", "INFO", "WARNING", "ERROR"],
            help="Logging level (default: WARNING)",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        # quote-split command
        split = subparsers.add_parser(
            "quote-split",
            help="Split a final price between payee, temple and platform",
        )
        split.add_argument(
            "--final-price",
            type=int,
            required=True,
            help="Final price in minor units",
        )
        split.add_argument(
            "--retention",
            type=int,
            default=0,
            help="Retention amount in minor units (default: 0)",
        )
        split.add_argument(
            "--category",
            type=str,
            choices=[c.value for c in PayeeCategory],
            default=PayeeCategory.INDEPENDENT.value,
            help="Payee category (default: independent)",
        )
        split.add_argument(
            "--temple-share",
            type=Decimal,
            help="Temple share percentage for employee payees",
        )

        # quote-refund command
        refund = subparsers.add_parser(
            "quote-refund",
            help="Quote a cancellation refund under the default policy",
        )
        refund.add_argument(
            "--service-start",
            type=parse_datetime,
            required=True,
            help="Scheduled service start (ISO format)",
        )
        refund.add_argument(
            "--cancelled-at",
            type=parse_datetime,
            help="Cancellation time (ISO format, default: now)",
        )
        refund.add_argument(
            "--advance",
            type=int,
            required=True,
            help="Advance charged in minor units",
        )

        # payout-date command
        payout = subparsers.add_parser(
            "payout-date",
            help="Estimate the escrow payout date",
        )
        payout.add_argument(
            "--completed-on",
            type=parse_date,
            required=True,
            help="Service completion date (YYYY-MM-DD)",
        )

        # release-due command
        release = subparsers.add_parser(
            "release-due",
            help="Release every scheduled escrow that is due",
        )
        release.add_argument(
            "--as-of",
            type=parse_date,
            help="Release date cut-off (default: today)",
        )
        release.add_argument(
            "--database-url",
            type=str,
            help="Database URL (default: DATABASE_URL)",
        )

        # serve command
        serve = subparsers.add_parser(
            "serve",
            help="Run the HTTP API",
        )
        serve.add_argument("--host", type=str, help="Bind host (default: HOST)")
        serve.add_argument("--port", type=int, help="Bind port (default: PORT)")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)
        logging.basicConfig(
            level=getattr(logging, parsed.log_level),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

        if not parsed.command:
            self.parser.print_help()
            return 1

        # Dispatch to command handler
        handlers: dict[str, Callable[..., int]] = {
            "quote-split": self._cmd_quote_split,
            "quote-refund": self._cmd_quote_refund,
            "payout-date": self._cmd_payout_date,
            "release-due": self._cmd_release_due,
            "serve": self._cmd_serve,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        try:
            return handler(parsed)
        except SettlementError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 2

    def _print(self, data: dict[str, Any]) -> None:
        print(json.dumps(data, indent=2, default=_json_default))

    def _cmd_quote_split(self, args: argparse.Namespace) -> int:
        """Print a payment split."""
        temple_share = args.temple_share
        if temple_share is None and args.category == PayeeCategory.EMPLOYEE.value:
            temple_share = self.config.split.default_temple_share_percentage
        split = SplitCalculator(self.config.split.platform_fee_percentage).calculate(
            final_price=args.final_price,
            retention_amount=args.retention,
            payee_category=args.category,
            temple_share_percentage=temple_share,
        )
        self._print(split.to_dict())
        return 0

    def _cmd_quote_refund(self, args: argparse.Namespace) -> int:
        """Print a refund quote."""
        quote = RefundPolicyEngine().quote(
            service_start=args.service_start,
            advance_amount=args.advance,
            policy=self.config.refund_policy,
            cancelled_at=args.cancelled_at or self.clock.now(),
        )
        self._print(
            {
                "refund_amount": quote.refund_amount,
                "cancellation_fee": quote.cancellation_fee,
                "refund_percentage": quote.refund_percentage,
                "policy_applied": quote.policy_applied,
                "hours_until_service": quote.hours_until_service,
                "policy_gap": quote.policy_gap,
            }
        )
        return 0

    def _cmd_payout_date(self, args: argparse.Namespace) -> int:
        payout = estimate_payout_date(args.completed_on, self.config.escrow.hold_days)
        self._print({"completed_on": args.completed_on, "estimated_payout_on": payout})
        return 0

    def _cmd_release_due(self, args: argparse.Namespace) -> int:
        """Run the escrow release sweep against the configured database.

        Without an injected gateway the stub is used, which is refused
        outside sandbox mode.
        """
        from settlement_engine.database import create_schema, get_session, init_db
        from settlement_engine.workflow import SettlementWorkflow

        gateway = self.gateway or StubPaymentGateway()
        if isinstance(gateway, StubPaymentGateway) and not self.config.gateway.sandbox:
            print(
                "Error: refusing to release escrow through the stub gateway "
                "with sandbox mode off (GATEWAY_SANDBOX=false)",
                file=sys.stderr,
            )
            return 2

        engine, _ = init_db(args.database_url)
        create_schema(engine)
        with get_session() as session:
            workflow = SettlementWorkflow(
                session,
                gateway,
                self.bookings if self.bookings is not None else InMemoryBookingStore(),
                config=self.config,
                clock=self.clock,
            )
            outcomes = workflow.release_due(args.as_of)

        released = [o for o in outcomes if o.released]
        print(f"Due releases: {len(outcomes)}, released: {len(released)}")
        for outcome in outcomes:
            detail = outcome.skipped_reason or outcome.error_code or outcome.transfer_ref or ""
            print(f"  {outcome.booking_id} | {outcome.status} | {detail}")
        return 0 if all(o.error_code is None for o in outcomes) else 1

    def _cmd_serve(self, args: argparse.Namespace) -> int:
        import uvicorn

        settings = get_settings()
        uvicorn.run(
            "settlement_engine.api.app:create_app",
            factory=True,
            host=args.host or settings.host,
            port=args.port or settings.port,
            reload=settings.debug,
        )
        return 0


def main() -> int:
    """CLI entry point."""
    cli = SettlementCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
