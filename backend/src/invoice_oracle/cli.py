"""
Command line tools for the invoice oracle.

Usage:
    invoice-oracle simulate [--lifecycle] [--live-market]
    invoice-oracle deploy [--source PATH]
    invoice-oracle request INVOICE_ID [--manual] [--score N]
    invoice-oracle monitor [--interval SECONDS]

Ledger commands use the backend selected by LEDGER_BACKEND.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from invoice_oracle.api.dependencies import build_ledger
from invoice_oracle.config import get_settings
from invoice_oracle.domain import scoring
from invoice_oracle.domain.errors import InvoiceOracleError, SubmissionRejected
from invoice_oracle.domain.hashing import compute_source_hash
from invoice_oracle.domain.models import VerificationFailed, VerificationFulfilled, VerificationRequested
from invoice_oracle.services.market import MarketSentimentProvider
from invoice_oracle.services.orchestrator import VerificationOrchestrator
from invoice_oracle.simulation import format_results, run_lifecycle, run_simulation

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for command line runs."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%H:%M:%S",
    )


async def _simulate(args: argparse.Namespace) -> int:
    provider = None
    if args.live_market:
        provider = MarketSentimentProvider.from_settings(get_settings())

    try:
        if args.lifecycle:
            statuses = await run_lifecycle(provider=provider)
            for invoice_id, status in statuses.items():
                print(f"Invoice {invoice_id}: {status.value}")
        else:
            print(format_results(await run_simulation(provider=provider)))
    finally:
        if provider is not None:
            await provider.aclose()
    return 0


async def _deploy(args: argparse.Namespace) -> int:
    source_path = Path(args.source) if args.source else Path(scoring.__file__)
    source = source_path.read_text(encoding="utf-8")
    print(f"Source: {source_path} ({len(source)} bytes, {compute_source_hash(source.encode('utf-8'))})")

    ledger = build_ledger(get_settings())
    try:
        receipt = await ledger.set_verification_source(source)
    finally:
        await ledger.close()

    print(f"Source uploaded in block {receipt.block_number}: {receipt.transaction_id}")
    return 0


async def _request(args: argparse.Namespace) -> int:
    ledger = build_ledger(get_settings())
    orchestrator = VerificationOrchestrator(ledger)
    try:
        if args.manual:
            request = await orchestrator.submit_manual_verification(args.invoice_id, args.score)
            print(f"Invoice {request.invoice_id} verified with risk score {request.risk_score}")
        else:
            request = await orchestrator.submit_verification(args.invoice_id)
            print(f"Verification requested for invoice {request.invoice_id}")
            print(f"Request ID: {request.request_id}")
            print("Waiting for the oracle response; use 'monitor' to follow events")
    finally:
        await ledger.close()
    return 0


def _print_event(event) -> None:
    if isinstance(event, VerificationRequested):
        print(f"Verification Requested: invoice={event.invoice_id} request={event.request_id}")
    elif isinstance(event, VerificationFulfilled):
        print(
            f"Verification Fulfilled: invoice={event.invoice_id} "
            f"score={event.risk_score} success={event.success}"
        )
    elif isinstance(event, VerificationFailed):
        print(f"Verification Failed: invoice={event.invoice_id} reason={event.reason}")
    print(f"  Block: {event.block_number}  Tx: {event.transaction_id}")


async def _monitor(args: argparse.Namespace) -> int:
    ledger = build_ledger(get_settings())
    seen: set[tuple] = set()
    next_block = 0
    print("Watching for verification events... (Ctrl+C to stop)")
    try:
        while True:
            for event in await ledger.fetch_events(next_block):
                next_block = max(next_block, event.block_number)
                if event.key in seen:
                    continue
                seen.add(event.key)
                _print_event(event)
            await asyncio.sleep(args.interval)
    finally:
        await ledger.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="invoice-oracle",
        description="Invoice risk scoring and oracle verification tools",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    commands = parser.add_subparsers(dest="command", required=True)

    simulate = commands.add_parser("simulate", help="Score fixture invoices locally")
    simulate.add_argument("--lifecycle", action="store_true", help="Run request/fulfillment on an in-process ledger")
    simulate.add_argument("--live-market", action="store_true", help="Query the real price feed")
    simulate.set_defaults(handler=_simulate)

    deploy = commands.add_parser("deploy", help="Upload the verification source to the ledger")
    deploy.add_argument("--source", help="Source file (defaults to the scoring module)")
    deploy.set_defaults(handler=_deploy)

    request = commands.add_parser("request", help="Request verification of an invoice")
    request.add_argument("invoice_id")
    request.add_argument("--manual", action="store_true", help="Record a score without the oracle")
    request.add_argument("--score", type=int, default=85, help="Score for --manual (0-100)")
    request.set_defaults(handler=_request)

    monitor = commands.add_parser("monitor", help="Print verification events as they arrive")
    monitor.add_argument("--interval", type=float, default=5.0, help="Seconds between polls")
    monitor.set_defaults(handler=_monitor)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    try:
        return asyncio.run(args.handler(args))
    except SubmissionRejected as e:
        print(f"Error: {e.reason}", file=sys.stderr)
        return 1
    except InvoiceOracleError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
