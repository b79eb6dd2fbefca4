"""
In-process ledger implementing the verifier contract.

Used for local development, the simulator and tests. It enforces the
same rules the deployed verifier does:
- invoice ids are registered once and only registered invoices can be verified
- a verified invoice cannot be verified again
- risk scores outside 0-100 are rejected
- each transaction lands in its own block and emits its events there
"""

import asyncio
import dataclasses
import logging

from invoice_oracle.domain.codec import decode_response
from invoice_oracle.domain.errors import EncodingError, SubmissionRejected
from invoice_oracle.domain.hashing import compute_source_hash, derive_request_id
from invoice_oracle.domain.models import (
    InvoiceInput,
    LedgerEvent,
    TransactionReceipt,
    VerificationFailed,
    VerificationFulfilled,
    VerificationRequested,
    normalize_invoice_id,
)
from invoice_oracle.services.ledger import LedgerClient

logger = logging.getLogger(__name__)


class InMemoryLedger(LedgerClient):
    """
    Deterministic ledger kept in process memory.

    Example:
        ledger = InMemoryLedger()
        ledger.add_invoice(invoice)
        receipt = await ledger.request_verification(invoice.invoice_id)
    """

    def __init__(self) -> None:
        self.invoices: dict[str, InvoiceInput] = {}
        self.verified_scores: dict[str, int] = {}
        self.open_requests: dict[str, str] = {}
        self.verification_source: str | None = None
        self.source_hash: str | None = None
        self.events: list[LedgerEvent] = []
        self.block_number = 0
        self._nonce = 0
        self._pending_rejections: list[str] = []

    def add_invoice(self, invoice: InvoiceInput) -> None:
        """Seed scoring inputs for an invoice without a transaction."""
        self.invoices[invoice.invoice_id] = invoice

    def reject_next(self, reason: str) -> None:
        """Make the next write transaction revert with the given reason."""
        self._pending_rejections.append(reason)

    def is_verified(self, invoice_id: str | int) -> bool:
        return normalize_invoice_id(invoice_id) in self.verified_scores

    async def _commit(self, *events: LedgerEvent) -> TransactionReceipt:
        # Yield like a real confirmation wait would
        await asyncio.sleep(0)
        self.block_number += 1
        transaction_id = f"0x{self.block_number:064x}"
        stamped = tuple(
            dataclasses.replace(event, block_number=self.block_number, transaction_id=transaction_id)
            for event in events
        )
        self.events.extend(stamped)
        return TransactionReceipt(
            transaction_id=transaction_id,
            block_number=self.block_number,
            events=stamped,
        )

    def _check_rejection(self) -> None:
        if self._pending_rejections:
            raise SubmissionRejected(self._pending_rejections.pop(0))

    def _require_unverified_invoice(self, invoice_id: str) -> None:
        if invoice_id not in self.invoices:
            raise SubmissionRejected("Invoice does not exist")
        if invoice_id in self.verified_scores:
            raise SubmissionRejected("Invoice already verified")

    async def register_invoice(self, invoice: InvoiceInput) -> TransactionReceipt:
        self._check_rejection()
        if invoice.invoice_id in self.invoices:
            raise SubmissionRejected("Invoice already exists")

        self.invoices[invoice.invoice_id] = invoice
        logger.info(f"Invoice {invoice.invoice_id} registered")
        return await self._commit()

    async def request_verification(self, invoice_id: str) -> TransactionReceipt:
        invoice_id = normalize_invoice_id(invoice_id)
        self._check_rejection()
        self._require_unverified_invoice(invoice_id)

        self._nonce += 1
        request_id = derive_request_id(invoice_id, self._nonce)
        self.open_requests[request_id] = invoice_id
        logger.info(f"Verification requested for invoice {invoice_id}: {request_id}")

        return await self._commit(VerificationRequested(request_id=request_id, invoice_id=invoice_id))

    async def manual_verify(self, invoice_id: str, risk_score: int) -> TransactionReceipt:
        invoice_id = normalize_invoice_id(invoice_id)
        self._check_rejection()
        if not 0 <= risk_score <= 100:
            raise SubmissionRejected("Invalid risk score")
        self._require_unverified_invoice(invoice_id)

        self.verified_scores[invoice_id] = risk_score
        return await self._commit(
            VerificationFulfilled(invoice_id=invoice_id, risk_score=risk_score, success=True)
        )

    async def set_verification_source(self, source: str) -> TransactionReceipt:
        self._check_rejection()
        if not source:
            raise SubmissionRejected("Verification source cannot be empty")

        self.verification_source = source
        self.source_hash = compute_source_hash(source.encode("utf-8"))
        logger.info(f"Verification source set: {self.source_hash}")
        return await self._commit()

    async def fulfill_request(
        self,
        request_id: str,
        invoice_id: str,
        response: bytes,
    ) -> TransactionReceipt:
        invoice_id = normalize_invoice_id(invoice_id)
        self._check_rejection()
        if self.open_requests.get(request_id) != invoice_id:
            raise SubmissionRejected(f"Unknown request {request_id}")

        try:
            success, score = decode_response(response)
        except EncodingError as e:
            raise SubmissionRejected(f"Malformed oracle response: {e}") from e

        del self.open_requests[request_id]
        if success:
            self.verified_scores[invoice_id] = score

        return await self._commit(
            VerificationFulfilled(invoice_id=invoice_id, risk_score=score, success=success)
        )

    async def report_failure(
        self,
        request_id: str,
        invoice_id: str,
        reason: str,
    ) -> TransactionReceipt:
        invoice_id = normalize_invoice_id(invoice_id)
        self._check_rejection()
        if self.open_requests.pop(request_id, None) is None:
            raise SubmissionRejected(f"Unknown request {request_id}")

        return await self._commit(
            VerificationFailed(invoice_id=invoice_id, request_id=request_id, reason=reason)
        )

    async def get_invoice(self, invoice_id: str) -> InvoiceInput:
        invoice_id = normalize_invoice_id(invoice_id)
        try:
            return self.invoices[invoice_id]
        except KeyError:
            raise LookupError(f"Invoice {invoice_id} not found") from None

    async def fetch_events(self, from_block: int = 0) -> list[LedgerEvent]:
        return [event for event in self.events if event.block_number >= from_block]
