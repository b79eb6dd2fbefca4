"""
XRP Ledger adapter for the verifier contract.

The XRPL has no contract runtime, so the verifier is an account: every
contract call is a 1-drop Payment to the verifier address carrying a single
Memo. The MemoType names the call or event and the MemoData holds a JSON
payload. Reading the verifier's transaction history with account_tx and
decoding those memos yields the contract's event log.

    MemoType                MemoData
    InvoiceRegistered       {invoice_id, debtor_name, face_value_wei, due_date}
    VerificationRequested   {invoice_id}                      (request id = tx hash)
    VerificationFulfilled   {invoice_id, request_id, response} (response = 64-byte hex)
    VerificationFailed      {invoice_id, request_id, reason}
    VerificationSource      {source_hash}

Handles:
- Payment + Memo transaction creation and submission
- Contract-rule checks before submission (unknown / already verified invoice)
- Event log parsing from account_tx, including pagination
"""

import json
import logging
from enum import Enum
from collections.abc import Collection
from typing import Any

import xrpl
from xrpl.asyncio.clients import AsyncJsonRpcClient
from xrpl.asyncio.transaction import submit_and_wait
from xrpl.models import AccountTx, Memo, Payment
from xrpl.utils import hex_to_str, str_to_hex
from xrpl.wallet import Wallet

from invoice_oracle.domain.codec import decode_response_hex, encode_response
from invoice_oracle.domain.errors import EncodingError, InputError, SubmissionRejected
from invoice_oracle.domain.hashing import compute_source_hash
from invoice_oracle.domain.models import (
    InvoiceInput,
    LedgerEvent,
    TransactionReceipt,
    VerificationFailed,
    VerificationFulfilled,
    VerificationRequested,
    normalize_invoice_id,
)

from .ledger import LedgerClient

logger = logging.getLogger(__name__)


class XRPLNetwork(Enum):
    """Supported XRPL networks."""
    MAINNET = "mainnet"
    TESTNET = "testnet"
    DEVNET = "devnet"


# JSON-RPC endpoints (more reliable than WebSocket for quick operations)
NETWORK_URLS = {
    XRPLNetwork.MAINNET: "https://xrplcluster.com",
    XRPLNetwork.TESTNET: "https://s.altnet.rippletest.net:51234",
    XRPLNetwork.DEVNET: "https://s.devnet.rippletest.net:51234",
}

MEMO_INVOICE_REGISTERED = "InvoiceRegistered"
MEMO_VERIFICATION_SOURCE = "VerificationSource"

# Smallest payment that carries a memo
CALL_AMOUNT_DROPS = "1"

ACCOUNT_TX_PAGE_SIZE = 200

# Calls only the owner or the oracle may make
TRUSTED_CALLS = frozenset({
    MEMO_INVOICE_REGISTERED,
    MEMO_VERIFICATION_SOURCE,
    VerificationFulfilled.name,
    VerificationFailed.name,
})


def build_memo(memo_type: str, payload: dict[str, Any]) -> Memo:
    """Build a contract-call memo with a JSON payload."""
    return Memo(
        memo_type=str_to_hex(memo_type),
        memo_data=str_to_hex(json.dumps(payload, sort_keys=True)),
        memo_format=str_to_hex("application/json"),
    )


def _decode_memo(memo: dict[str, Any]) -> tuple[str, dict[str, Any]] | None:
    """Return (memo type, payload) or None if the memo is not a contract call."""
    try:
        memo_type = hex_to_str(memo["MemoType"])
        payload = json.loads(hex_to_str(memo.get("MemoData", "")))
    except (KeyError, ValueError, UnicodeDecodeError):
        return None
    if not isinstance(payload, dict):
        return None
    return memo_type, payload


def _unwrap_transaction(entry: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any], str, int]:
    """
    Normalize an account_tx entry across API versions.

    API v1 nests hash and ledger_index inside "tx"; v2 uses "tx_json" and
    puts them on the entry itself.
    """
    tx = entry.get("tx_json") or entry.get("tx") or {}
    meta = entry.get("meta") or {}
    tx_hash = entry.get("hash") or tx.get("hash") or ""
    ledger_index = entry.get("ledger_index") or tx.get("ledger_index") or 0
    return tx, meta if isinstance(meta, dict) else {}, tx_hash, int(ledger_index)


def parse_contract_calls(
    transactions: list[dict[str, Any]],
    verifier_address: str,
    trusted_senders: Collection[str] = (),
) -> list[tuple[str, dict[str, Any], str, int]]:
    """
    Extract contract calls from account_tx entries.

    Only successful, validated payments to the verifier are considered.
    Calls restricted to the owner or oracle (see TRUSTED_CALLS) are dropped
    unless sent from one of trusted_senders.

    Returns:
        (memo type, payload, tx hash, ledger index) tuples in input order
    """
    calls = []
    for entry in transactions:
        tx, meta, tx_hash, ledger_index = _unwrap_transaction(entry)
        if tx.get("TransactionType") != "Payment" or tx.get("Destination") != verifier_address:
            continue
        if entry.get("validated") is False:
            continue
        if meta.get("TransactionResult") != "tesSUCCESS":
            continue

        for wrapper in tx.get("Memos") or []:
            decoded = _decode_memo(wrapper.get("Memo") or {})
            if decoded is None:
                continue
            if decoded[0] in TRUSTED_CALLS and tx.get("Account") not in trusted_senders:
                logger.warning(f"Ignoring {decoded[0]} from untrusted account {tx.get('Account')} in {tx_hash}")
                continue
            calls.append((decoded[0], decoded[1], tx_hash, ledger_index))
    return calls


def event_from_call(
    memo_type: str,
    payload: dict[str, Any],
    tx_hash: str,
    ledger_index: int,
) -> LedgerEvent | None:
    """Convert a decoded contract call into a verifier event, if it is one."""
    try:
        invoice_id = normalize_invoice_id(payload["invoice_id"])
        if memo_type == VerificationRequested.name:
            return VerificationRequested(
                request_id=tx_hash,
                invoice_id=invoice_id,
                block_number=ledger_index,
                transaction_id=tx_hash,
            )
        if memo_type == VerificationFulfilled.name:
            success, score = decode_response_hex(payload["response"])
            return VerificationFulfilled(
                invoice_id=invoice_id,
                risk_score=score,
                success=success,
                block_number=ledger_index,
                transaction_id=tx_hash,
            )
        if memo_type == VerificationFailed.name:
            return VerificationFailed(
                invoice_id=invoice_id,
                request_id=payload.get("request_id"),
                reason=str(payload.get("reason", "")),
                block_number=ledger_index,
                transaction_id=tx_hash,
            )
    except (KeyError, TypeError, ValueError, EncodingError) as e:
        logger.warning(f"Skipping malformed {memo_type} memo in {tx_hash}: {e}")
    return None


class XRPLLedgerClient(LedgerClient):
    """
    Verifier contract backed by an XRPL account.

    Example:
        ledger = XRPLLedgerClient(
            verifier_address="rVerifier...",
            seed="sEdVW...",
            network=XRPLNetwork.TESTNET,
        )
        receipt = await ledger.request_verification("7")
    """

    def __init__(
        self,
        verifier_address: str,
        seed: str | None = None,
        network: XRPLNetwork = XRPLNetwork.TESTNET,
        custom_url: str | None = None,
        client: AsyncJsonRpcClient | None = None,
        trusted_senders: Collection[str] = (),
    ) -> None:
        """
        Initialize the XRPL ledger client.

        Args:
            verifier_address: Account that receives contract calls
            seed: Wallet seed for signing (None for read-only use)
            network: XRPL network to connect to
            custom_url: Override network URL (for testing)
            client: Pre-built client (for testing)
            trusted_senders: Oracle and owner accounts whose fulfillments,
                failures and registrations are accepted. The signing
                wallet is always trusted.
        """
        self.verifier_address = verifier_address
        self.network = network
        self.url = custom_url or NETWORK_URLS[network]
        self._seed = seed
        self._wallet: Wallet | None = None
        self._client = client
        self.trusted_senders = frozenset(trusted_senders)

    @classmethod
    def from_settings(cls, settings) -> "XRPLLedgerClient":
        if not settings.verifier_address:
            raise ValueError("VERIFIER_ADDRESS is required for the xrpl ledger backend")
        return cls(
            verifier_address=settings.verifier_address,
            seed=settings.xrpl_wallet_seed,
            network=XRPLNetwork(settings.xrpl_network),
            custom_url=settings.xrpl_url,
            trusted_senders=settings.trusted_senders,
        )

    def _get_client(self) -> AsyncJsonRpcClient:
        """Get or create JSON-RPC client."""
        if self._client is None:
            self._client = AsyncJsonRpcClient(self.url)
        return self._client

    def _get_wallet(self) -> Wallet:
        if self._wallet is None:
            if not self._seed:
                raise SubmissionRejected("No signing wallet configured")
            self._wallet = Wallet.from_seed(self._seed)
        return self._wallet

    def _trusted_senders(self) -> frozenset[str]:
        if self._wallet is None and not self._seed:
            return self.trusted_senders
        return self.trusted_senders | {self._get_wallet().classic_address}

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def _submit_call(self, memo_type: str, payload: dict[str, Any]) -> tuple[str, int]:
        """
        Sign and submit a contract call, waiting for validation.

        Returns:
            (transaction hash, ledger index)

        Raises:
            SubmissionRejected: On any engine result other than tesSUCCESS
        """
        wallet = self._get_wallet()
        call = Payment(
            account=wallet.classic_address,
            destination=self.verifier_address,
            amount=CALL_AMOUNT_DROPS,
            memos=[build_memo(memo_type, payload)],
        )

        try:
            response = await submit_and_wait(call, self._get_client(), wallet)
        except xrpl.XRPLException as e:
            logger.error(f"{memo_type} submission failed: {e}")
            raise SubmissionRejected(str(e)) from e

        result = response.result
        engine_result = result.get("meta", {}).get("TransactionResult", "Unknown error")
        if engine_result != "tesSUCCESS":
            logger.error(f"{memo_type} rejected: {engine_result}")
            raise SubmissionRejected(engine_result)

        tx_hash = result.get("hash", "")
        ledger_index = int(result.get("ledger_index", 0))
        logger.info(f"{memo_type} validated in ledger {ledger_index}: {tx_hash}")
        return tx_hash, ledger_index

    async def register_invoice(self, invoice: InvoiceInput) -> TransactionReceipt:
        """Store an invoice's scoring inputs on the verifier account."""
        for memo_type, payload, _, _ in await self._fetch_calls():
            if memo_type != MEMO_INVOICE_REGISTERED:
                continue
            if normalize_invoice_id(payload.get("invoice_id", "")) == invoice.invoice_id:
                raise SubmissionRejected("Invoice already exists")

        tx_hash, ledger_index = await self._submit_call(
            MEMO_INVOICE_REGISTERED,
            {
                "invoice_id": invoice.invoice_id,
                "debtor_name": invoice.debtor_name,
                "face_value_wei": str(invoice.face_value_wei),
                "due_date": str(invoice.due_date_epoch_seconds),
            },
        )
        return TransactionReceipt(transaction_id=tx_hash, block_number=ledger_index)

    async def request_verification(self, invoice_id: str) -> TransactionReceipt:
        invoice_id = normalize_invoice_id(invoice_id)
        await self._require_unverified_invoice(invoice_id)

        tx_hash, ledger_index = await self._submit_call(
            VerificationRequested.name, {"invoice_id": invoice_id}
        )
        event = VerificationRequested(
            request_id=tx_hash,
            invoice_id=invoice_id,
            block_number=ledger_index,
            transaction_id=tx_hash,
        )
        return TransactionReceipt(transaction_id=tx_hash, block_number=ledger_index, events=(event,))

    async def manual_verify(self, invoice_id: str, risk_score: int) -> TransactionReceipt:
        invoice_id = normalize_invoice_id(invoice_id)
        try:
            response = encode_response(True, risk_score)
        except EncodingError as e:
            raise SubmissionRejected("Invalid risk score") from e
        await self._require_unverified_invoice(invoice_id)

        tx_hash, ledger_index = await self._submit_call(
            VerificationFulfilled.name,
            {"invoice_id": invoice_id, "request_id": None, "response": response.hex()},
        )
        event = VerificationFulfilled(
            invoice_id=invoice_id,
            risk_score=risk_score,
            success=True,
            block_number=ledger_index,
            transaction_id=tx_hash,
        )
        return TransactionReceipt(transaction_id=tx_hash, block_number=ledger_index, events=(event,))

    async def set_verification_source(self, source: str) -> TransactionReceipt:
        """
        Anchor the verification source.

        Memos are limited in size, so only the source fingerprint is stored.
        """
        if not source:
            raise SubmissionRejected("Verification source cannot be empty")
        source_hash = compute_source_hash(source.encode("utf-8"))
        tx_hash, ledger_index = await self._submit_call(
            MEMO_VERIFICATION_SOURCE, {"source_hash": source_hash}
        )
        return TransactionReceipt(transaction_id=tx_hash, block_number=ledger_index)

    async def fulfill_request(
        self,
        request_id: str,
        invoice_id: str,
        response: bytes,
    ) -> TransactionReceipt:
        invoice_id = normalize_invoice_id(invoice_id)
        try:
            success, score = decode_response_hex(response.hex())
        except EncodingError as e:
            raise SubmissionRejected(f"Malformed oracle response: {e}") from e

        tx_hash, ledger_index = await self._submit_call(
            VerificationFulfilled.name,
            {"invoice_id": invoice_id, "request_id": request_id, "response": response.hex()},
        )
        event = VerificationFulfilled(
            invoice_id=invoice_id,
            risk_score=score,
            success=success,
            block_number=ledger_index,
            transaction_id=tx_hash,
        )
        return TransactionReceipt(transaction_id=tx_hash, block_number=ledger_index, events=(event,))

    async def report_failure(
        self,
        request_id: str,
        invoice_id: str,
        reason: str,
    ) -> TransactionReceipt:
        invoice_id = normalize_invoice_id(invoice_id)
        tx_hash, ledger_index = await self._submit_call(
            VerificationFailed.name,
            {"invoice_id": invoice_id, "request_id": request_id, "reason": reason},
        )
        event = VerificationFailed(
            invoice_id=invoice_id,
            request_id=request_id,
            reason=reason,
            block_number=ledger_index,
            transaction_id=tx_hash,
        )
        return TransactionReceipt(transaction_id=tx_hash, block_number=ledger_index, events=(event,))

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def _fetch_calls(self, from_block: int = 0) -> list[tuple[str, dict[str, Any], str, int]]:
        """Read every contract call on the verifier account since a ledger index."""
        client = self._get_client()
        transactions: list[dict[str, Any]] = []
        marker = None

        while True:
            request = AccountTx(
                account=self.verifier_address,
                ledger_index_min=from_block if from_block > 0 else -1,
                ledger_index_max=-1,
                forward=True,
                limit=ACCOUNT_TX_PAGE_SIZE,
                marker=marker,
            )
            response = await client.request(request)
            if not response.is_successful():
                logger.warning(f"account_tx failed for {self.verifier_address}: {response.result}")
                break

            transactions.extend(response.result.get("transactions", []))
            marker = response.result.get("marker")
            if not marker:
                break

        return parse_contract_calls(transactions, self.verifier_address, self._trusted_senders())

    async def fetch_events(self, from_block: int = 0) -> list[LedgerEvent]:
        events: list[LedgerEvent] = []
        for memo_type, payload, tx_hash, ledger_index in await self._fetch_calls(from_block):
            event = event_from_call(memo_type, payload, tx_hash, ledger_index)
            if event is not None:
                events.append(event)
        return events

    async def get_invoice(self, invoice_id: str) -> InvoiceInput:
        invoice_id = normalize_invoice_id(invoice_id)
        found: InvoiceInput | None = None
        for memo_type, payload, tx_hash, _ in await self._fetch_calls():
            if memo_type != MEMO_INVOICE_REGISTERED:
                continue
            if normalize_invoice_id(payload.get("invoice_id", "")) != invoice_id:
                continue
            try:
                found = InvoiceInput.from_arguments([
                    invoice_id,
                    payload.get("debtor_name", ""),
                    payload.get("face_value_wei", ""),
                    payload.get("due_date", ""),
                ])
            except InputError as e:
                logger.warning(f"Ignoring malformed invoice registration {tx_hash}: {e}")

        if found is None:
            raise LookupError(f"Invoice {invoice_id} not found")
        return found

    async def _require_unverified_invoice(self, invoice_id: str) -> None:
        """Enforce the contract's preconditions before paying for a transaction."""
        registered = False
        for memo_type, payload, tx_hash, ledger_index in await self._fetch_calls():
            if normalize_invoice_id(payload.get("invoice_id", "")) != invoice_id:
                continue
            if memo_type == MEMO_INVOICE_REGISTERED:
                registered = True
                continue
            event = event_from_call(memo_type, payload, tx_hash, ledger_index)
            if isinstance(event, VerificationFulfilled) and event.success:
                raise SubmissionRejected("Invoice already verified")

        if not registered:
            raise SubmissionRejected("Invoice does not exist")
