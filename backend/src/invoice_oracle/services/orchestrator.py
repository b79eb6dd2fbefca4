"""
Verification request lifecycle.

Tracks each invoice's verification through the ledger:

    IDLE --submit--> PENDING --fulfilled(success)--> FULFILLED
                             --fulfilled(!success)-> FAILED
                             --failed-------------> FAILED

FULFILLED and FAILED are terminal for a request. Submitting again for the
same invoice starts a new PENDING entry and discards the old one.

Concurrency:
- The request table is shared by every caller of one orchestrator.
- Submissions for different invoices proceed independently.
- A second submission for the same invoice overwrites the first
  (last write wins); duplicates are neither queued nor rejected.
- Ledger events are deduplicated by (event, invoice, block, transaction)
  so re-polling or redelivery never fires a callback twice.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from invoice_oracle.domain.codec import MAX_SCORE, MIN_SCORE
from invoice_oracle.domain.errors import InvalidScore, SubmissionRejected
from invoice_oracle.domain.models import (
    FailureNotice,
    FulfillmentNotice,
    LedgerEvent,
    TransactionReceipt,
    VerificationFailed,
    VerificationFulfilled,
    VerificationRequest,
    VerificationRequested,
    VerificationStatus,
    normalize_invoice_id,
)

from .ledger import LedgerClient

logger = logging.getLogger(__name__)


FulfillmentCallback = Callable[[FulfillmentNotice], Awaitable[None] | None]
FailureCallback = Callable[[FailureNotice], Awaitable[None] | None]


@dataclass(eq=False)
class Subscription:
    """
    Handle for a registered event callback.

    unsubscribe() may be called any number of times, before or after the
    callback has fired.
    """
    invoice_id: str
    event_name: str
    callback: Callable
    _registry: dict = field(repr=False)
    active: bool = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        subscriptions = self._registry.get(self.invoice_id)
        if subscriptions and self in subscriptions:
            subscriptions.remove(self)
            if not subscriptions:
                del self._registry[self.invoice_id]

    cancel = unsubscribe


class VerificationOrchestrator:
    """
    Coordinates verification requests against the ledger.

    Example:
        orchestrator = VerificationOrchestrator(ledger)
        subscription = orchestrator.subscribe_to_fulfillment("7", on_verified)
        await orchestrator.submit_verification("7")
        await orchestrator.poll_once()
    """

    def __init__(self, ledger: LedgerClient, start_block: int = 0) -> None:
        self.ledger = ledger
        self._requests: dict[str, VerificationRequest] = {}
        self._fulfillment_subscriptions: dict[str, list[Subscription]] = {}
        self._failure_subscriptions: dict[str, list[Subscription]] = {}
        self._seen_events: set[tuple[str, str, int, str]] = set()
        self._next_block = start_block

    # -------------------------------------------------------------------------
    # Submissions
    # -------------------------------------------------------------------------

    async def submit_verification(self, invoice_id: str | int) -> VerificationRequest:
        """
        Request oracle verification of an invoice.

        Waits for the ledger to confirm the request and records it as
        PENDING. The request id comes from the VerificationRequested event
        in the receipt; if none is found the request is still PENDING with
        no request id.

        Raises:
            SubmissionRejected: If the ledger rejects the request. The
                tracked state for the invoice is left unchanged.
        """
        invoice_id = normalize_invoice_id(invoice_id)
        logger.info(f"Requesting verification for invoice {invoice_id}")

        try:
            receipt = await self.ledger.request_verification(invoice_id)
        except SubmissionRejected as e:
            logger.error(f"Verification request for invoice {invoice_id} rejected: {e.reason}")
            raise

        request_id = self._extract_request_id(receipt, invoice_id)
        if request_id is None:
            logger.warning(f"No VerificationRequested event in receipt {receipt.transaction_id}")

        previous = self._requests.get(invoice_id)
        if previous is not None and previous.status == VerificationStatus.PENDING:
            logger.warning(
                f"Invoice {invoice_id} already pending ({previous.request_id}); "
                f"replacing with {request_id}"
            )

        request = VerificationRequest(invoice_id=invoice_id, request_id=request_id)
        self._requests[invoice_id] = request
        logger.info(f"Invoice {invoice_id} pending, request {request_id}")
        return request

    async def submit_manual_verification(self, invoice_id: str | int, score: int) -> VerificationRequest:
        """
        Record a score directly on the ledger without the oracle round-trip.

        Intended for testing and demos.

        Raises:
            InvalidScore: If score is outside [0, 100]; the ledger is not called.
            SubmissionRejected: If the ledger rejects the call.
        """
        if isinstance(score, bool) or not isinstance(score, int) or not MIN_SCORE <= score <= MAX_SCORE:
            raise InvalidScore(score)

        invoice_id = normalize_invoice_id(invoice_id)
        logger.info(f"Manually verifying invoice {invoice_id} with score {score}")

        receipt = await self.ledger.manual_verify(invoice_id, score)

        request = VerificationRequest(
            invoice_id=invoice_id,
            status=VerificationStatus.FULFILLED,
            risk_score=score,
        )
        self._requests[invoice_id] = request

        # The receipt carries the fulfillment event; mark it seen so a
        # later poll does not replay it, but still notify subscribers.
        for event in receipt.events:
            await self.dispatch(event)
        return request

    @staticmethod
    def _extract_request_id(receipt: TransactionReceipt, invoice_id: str) -> str | None:
        for event in receipt.events:
            if isinstance(event, VerificationRequested) and event.invoice_id == invoice_id:
                return event.request_id
        return None

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def is_pending(self, invoice_id: str | int) -> bool:
        return self.get_status(invoice_id) == VerificationStatus.PENDING

    def get_status(self, invoice_id: str | int) -> VerificationStatus:
        request = self._requests.get(normalize_invoice_id(invoice_id))
        return request.status if request else VerificationStatus.IDLE

    def get_request(self, invoice_id: str | int) -> VerificationRequest | None:
        return self._requests.get(normalize_invoice_id(invoice_id))

    @property
    def pending_requests(self) -> list[VerificationRequest]:
        return [r for r in self._requests.values() if r.status == VerificationStatus.PENDING]

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def subscribe_to_fulfillment(
        self,
        invoice_id: str | int,
        callback: FulfillmentCallback,
    ) -> Subscription:
        """
        Call callback once for every fulfillment event of an invoice.

        Registering the same callback twice for the same invoice returns
        the existing subscription.
        """
        return self._subscribe(
            self._fulfillment_subscriptions, VerificationFulfilled.name, invoice_id, callback
        )

    def subscribe_to_failure(
        self,
        invoice_id: str | int,
        callback: FailureCallback,
    ) -> Subscription:
        """Call callback once for every failure event of an invoice."""
        return self._subscribe(
            self._failure_subscriptions, VerificationFailed.name, invoice_id, callback
        )

    @staticmethod
    def _subscribe(
        registry: dict[str, list[Subscription]],
        event_name: str,
        invoice_id: str | int,
        callback: Callable,
    ) -> Subscription:
        invoice_id = normalize_invoice_id(invoice_id)
        subscriptions = registry.setdefault(invoice_id, [])
        for existing in subscriptions:
            if existing.callback == callback:
                return existing

        subscription = Subscription(
            invoice_id=invoice_id,
            event_name=event_name,
            callback=callback,
            _registry=registry,
        )
        subscriptions.append(subscription)
        return subscription

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    async def dispatch(self, event: LedgerEvent) -> bool:
        """
        Apply one ledger event.

        Events from blocks behind the poll cursor were already delivered by
        an earlier poll and are ignored.

        Returns:
            False if the event was already processed, True otherwise.
        """
        if event.block_number < self._next_block or event.key in self._seen_events:
            return False
        self._seen_events.add(event.key)

        if isinstance(event, VerificationFulfilled):
            self._apply_fulfilled(event)
            notice = FulfillmentNotice(
                invoice_id=event.invoice_id,
                score=event.risk_score,
                success=event.success,
            )
            await self._notify(self._fulfillment_subscriptions, event.invoice_id, notice)
        elif isinstance(event, VerificationFailed):
            self._apply_failed(event)
            notice = FailureNotice(
                invoice_id=event.invoice_id,
                request_id=event.request_id,
                reason=event.reason,
            )
            await self._notify(self._failure_subscriptions, event.invoice_id, notice)
        else:
            logger.debug(f"Observed {event.name} for invoice {event.invoice_id}")
        return True

    def _apply_fulfilled(self, event: VerificationFulfilled) -> None:
        request = self._requests.get(event.invoice_id)
        if request is None or request.status != VerificationStatus.PENDING:
            return

        if event.success:
            request.status = VerificationStatus.FULFILLED
            request.risk_score = event.risk_score
            logger.info(f"Invoice {event.invoice_id} verified with risk score {event.risk_score}")
        else:
            request.status = VerificationStatus.FAILED
            request.failure_reason = "Oracle reported failure"
            logger.warning(f"Invoice {event.invoice_id} verification unsuccessful")

    def _apply_failed(self, event: VerificationFailed) -> None:
        request = self._requests.get(event.invoice_id)
        if request is None or request.status != VerificationStatus.PENDING:
            return
        if request.request_id and event.request_id and request.request_id != event.request_id:
            logger.info(f"Ignoring failure of superseded request {event.request_id}")
            return

        request.status = VerificationStatus.FAILED
        request.failure_reason = event.reason
        logger.warning(f"Invoice {event.invoice_id} verification failed: {event.reason}")

    async def _notify(
        self,
        registry: dict[str, list[Subscription]],
        invoice_id: str,
        notice: FulfillmentNotice | FailureNotice,
    ) -> None:
        # Copy so callbacks may unsubscribe while being notified
        for subscription in list(registry.get(invoice_id, [])):
            if not subscription.active:
                continue
            try:
                result = subscription.callback(notice)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"{subscription.event_name} callback for invoice {invoice_id} failed")

    async def poll_once(self) -> int:
        """
        Fetch new ledger events and dispatch them.

        Returns:
            Number of events that had not been seen before.
        """
        events = await self.ledger.fetch_events(self._next_block)
        processed = 0
        for event in events:
            if await self.dispatch(event):
                processed += 1

        if events:
            self._next_block = max(self._next_block, max(e.block_number for e in events))
            # Keys behind the cursor can no longer be fetched again
            self._seen_events = {key for key in self._seen_events if key[2] >= self._next_block}
        return processed

    async def watch(self, interval: float = 5.0) -> None:
        """Poll the ledger until cancelled."""
        logger.info(f"Watching ledger events every {interval}s from block {self._next_block}")
        while True:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Ledger event poll failed")
            await asyncio.sleep(interval)
