"""
Oracle-side execution of the verification function.

``execute_verification`` is the function the oracle network runs for each
request: it takes the positional string arguments the verifier contract
sends and returns the 64-byte ABI-encoded ``(bool, uint256)`` response.

``OracleNode`` relays between the ledger and that function: it picks up
VerificationRequested events, loads the invoice, runs the function and
writes the response (or a failure) back to the ledger.
"""

import asyncio
import logging
from collections.abc import Sequence
from typing import Protocol

from invoice_oracle.domain.codec import decode_response, encode_response
from invoice_oracle.domain.errors import InputError, SubmissionRejected
from invoice_oracle.domain.models import (
    InvoiceInput,
    MarketAdjustment,
    ScoringResult,
    TransactionReceipt,
    VerificationRequested,
)
from invoice_oracle.domain.scoring import compute_risk_score

from .ledger import LedgerClient

logger = logging.getLogger(__name__)


class SentimentSource(Protocol):
    """Anything that can produce a market adjustment without raising."""

    async def get_adjustment(self, timeout_seconds: float | None = None) -> MarketAdjustment: ...


async def score_invoice(
    invoice: InvoiceInput,
    provider: SentimentSource | None = None,
    *,
    now: int | float | None = None,
) -> ScoringResult:
    """
    Score an invoice, including the market adjustment when a provider is given.

    The provider never raises; an unreachable feed yields a zero adjustment.
    """
    market = await provider.get_adjustment() if provider is not None else None
    return compute_risk_score(invoice, now=now, market=market)


async def execute_verification(
    args: Sequence[str],
    provider: SentimentSource | None = None,
    *,
    now: int | float | None = None,
) -> bytes:
    """
    Run the verification function on the oracle's argument list.

    Args:
        args: ``[invoiceId, debtorName, faceValueWei, dueDateEpochSeconds]``
        provider: Market sentiment source; omitted means no adjustment
        now: Current Unix time, for deterministic runs

    Returns:
        64-byte response encoding ``(True, risk_score)``

    Raises:
        InputError: If the arguments are malformed
    """
    invoice = InvoiceInput.from_arguments(args)
    logger.info(
        f"=== Invoice Verification Started === id={invoice.invoice_id} "
        f"debtor={invoice.debtor_name!r} face_value={invoice.face_value_wei} wei "
        f"due={invoice.due_date_epoch_seconds}"
    )

    result = await score_invoice(invoice, provider, now=now)
    logger.info(f"=== Final Risk Score: {result.score} ===")
    return encode_response(True, result.score)


class OracleNode:
    """
    Serves verification requests from the ledger.

    Each request id is handled at most once per node.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        provider: SentimentSource | None = None,
        *,
        clock=None,
    ) -> None:
        self.ledger = ledger
        self.provider = provider
        self._clock = clock
        # request id -> block of the request
        self._handled: dict[str, int] = {}
        self._next_block = 0

    async def handle_request(self, event: VerificationRequested) -> TransactionReceipt | None:
        """
        Score one request and write the outcome to the ledger.

        Returns:
            Receipt of the fulfillment or failure transaction, or None if the
            request was already handled.
        """
        if event.request_id in self._handled or event.block_number < self._next_block:
            return None
        self._handled[event.request_id] = event.block_number

        now = self._clock() if self._clock else None
        try:
            invoice = await self.ledger.get_invoice(event.invoice_id)
            response = await execute_verification(invoice.to_arguments(), self.provider, now=now)
        except (InputError, LookupError) as e:
            logger.warning(f"Request {event.request_id} for invoice {event.invoice_id} failed: {e}")
            return await self.ledger.report_failure(event.request_id, event.invoice_id, str(e))

        success, score = decode_response(response)
        logger.info(f"Fulfilling request {event.request_id}: success={success} score={score}")
        return await self.ledger.fulfill_request(event.request_id, event.invoice_id, response)

    async def run_once(self) -> int:
        """
        Handle every new VerificationRequested event on the ledger.

        Returns:
            Number of requests handled in this pass.
        """
        handled = 0
        events = await self.ledger.fetch_events(self._next_block)
        for event in events:
            if not isinstance(event, VerificationRequested):
                continue
            try:
                if await self.handle_request(event) is not None:
                    handled += 1
            except SubmissionRejected as e:
                logger.error(f"Ledger rejected response for request {event.request_id}: {e.reason}")

        if events:
            self._next_block = max(self._next_block, max(e.block_number for e in events))
            self._handled = {
                request_id: block
                for request_id, block in self._handled.items()
                if block >= self._next_block
            }
        return handled

    async def watch(self, interval: float = 5.0) -> None:
        """Serve requests until cancelled."""
        logger.info(f"Oracle node serving requests every {interval}s")
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Oracle node pass failed")
            await asyncio.sleep(interval)
