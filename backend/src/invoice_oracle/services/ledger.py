"""
Ledger collaborator interface.

The verifier contract is an opaque external system. The core only needs
the calls and events below; concrete adapters live in
``invoice_oracle.services.xrpl`` and ``invoice_oracle.infrastructure``.
"""

from abc import ABC, abstractmethod

from invoice_oracle.domain.models import InvoiceInput, LedgerEvent, TransactionReceipt


class LedgerClient(ABC):
    """
    Calls and event feed of the invoice verifier contract.

    Every write waits for confirmation before returning its receipt.
    Reverted or rejected transactions raise SubmissionRejected with the
    ledger's reason.
    """

    @abstractmethod
    async def register_invoice(self, invoice: InvoiceInput) -> TransactionReceipt:
        """
        Store the scoring inputs of a newly minted invoice.

        Raises:
            SubmissionRejected: If the invoice id is already registered.
        """

    @abstractmethod
    async def request_verification(self, invoice_id: str) -> TransactionReceipt:
        """Ask the oracle network to score an invoice."""

    @abstractmethod
    async def manual_verify(self, invoice_id: str, risk_score: int) -> TransactionReceipt:
        """Record a score directly, bypassing the oracle network."""

    @abstractmethod
    async def set_verification_source(self, source: str) -> TransactionReceipt:
        """Upload the scoring logic the oracle network executes."""

    @abstractmethod
    async def fulfill_request(
        self,
        request_id: str,
        invoice_id: str,
        response: bytes,
    ) -> TransactionReceipt:
        """Deliver an encoded oracle response for a request."""

    @abstractmethod
    async def report_failure(
        self,
        request_id: str,
        invoice_id: str,
        reason: str,
    ) -> TransactionReceipt:
        """Report that the oracle could not produce a response."""

    @abstractmethod
    async def get_invoice(self, invoice_id: str) -> InvoiceInput:
        """
        Load the scoring inputs stored for an invoice.

        Raises:
            LookupError: If the invoice is unknown.
        """

    @abstractmethod
    async def fetch_events(self, from_block: int = 0) -> list[LedgerEvent]:
        """Return verifier events at or after a block, oldest first."""

    async def close(self) -> None:
        """Release network resources."""
        return None
