import json
from types import SimpleNamespace

import pytest
import xrpl
from xrpl.utils import str_to_hex
from xrpl.wallet import Wallet

from invoice_oracle.domain.codec import encode_response
from invoice_oracle.domain.errors import SubmissionRejected
from invoice_oracle.domain.models import VerificationFailed, VerificationFulfilled, VerificationRequested
from invoice_oracle.services import xrpl as xrpl_module
from invoice_oracle.services.xrpl import (
    MEMO_INVOICE_REGISTERED,
    XRPLLedgerClient,
    build_memo,
    event_from_call,
    parse_contract_calls,
)

VERIFIER = "rPEPPER7kfTD9w2To4CQk6UCfuHM9c6GDY"
SENDER = "rHb9CJAWyB4rj91VRWn96DkukG4bwdtyTh"
OUTSIDER = "rf1BiGeXwwQoi8Z2ueFYTEXSwuJYfV2Jpn"


def _memo(memo_type: str, payload) -> dict:
    return {"Memo": {"MemoType": str_to_hex(memo_type), "MemoData": str_to_hex(json.dumps(payload))}}


def _entry(
    memo_type, payload, tx_hash, ledger_index, *, v2=True, result="tesSUCCESS", destination=VERIFIER, sender=SENDER
):
    tx = {
        "TransactionType": "Payment",
        "Account": sender,
        "Destination": destination,
        "Amount": "1",
        "Memos": [_memo(memo_type, payload)],
    }
    meta = {"TransactionResult": result}
    if v2:
        return {"hash": tx_hash, "ledger_index": ledger_index, "tx_json": tx, "meta": meta, "validated": True}
    return {"tx": {**tx, "hash": tx_hash, "ledger_index": ledger_index}, "meta": meta, "validated": True}


class _FakeRpcClient:
    """Serves canned account_tx pages."""

    def __init__(self, *pages) -> None:
        self.pages = list(pages)
        self.requests = []

    async def request(self, request):
        self.requests.append(request)
        page = self.pages.pop(0) if self.pages else {"transactions": []}
        return SimpleNamespace(result=page, is_successful=lambda: True)


def _client(fake_rpc: _FakeRpcClient) -> XRPLLedgerClient:
    ledger = XRPLLedgerClient(VERIFIER, client=fake_rpc, trusted_senders=[SENDER])
    ledger._wallet = Wallet.create()
    return ledger


def test_build_memo_round_trips_through_parser():
    memo = build_memo("VerificationRequested", {"invoice_id": "7"})
    entry = _entry("ignored", {}, "AB", 3)
    entry["tx_json"]["Memos"] = [{"Memo": {"MemoType": memo.memo_type, "MemoData": memo.memo_data}}]

    assert parse_contract_calls([entry], VERIFIER) == [("VerificationRequested", {"invoice_id": "7"}, "AB", 3)]


@pytest.mark.parametrize("v2", [True, False])
def test_parse_contract_calls_reads_both_api_versions(v2):
    calls = parse_contract_calls([_entry("VerificationRequested", {"invoice_id": "1"}, "HASH1", 10, v2=v2)], VERIFIER)

    assert calls == [("VerificationRequested", {"invoice_id": "1"}, "HASH1", 10)]


def test_parse_contract_calls_skips_unrelated_transactions():
    entries = [
        _entry("VerificationRequested", {"invoice_id": "1"}, "FAILED", 10, result="tecUNFUNDED_PAYMENT"),
        _entry("VerificationRequested", {"invoice_id": "1"}, "ELSEWHERE", 11, destination=SENDER),
        {"tx_json": {"TransactionType": "TrustSet"}, "meta": {"TransactionResult": "tesSUCCESS"}},
        _entry("VerificationRequested", {"invoice_id": "2"}, "GOOD", 12),
    ]
    entries[-1]["tx_json"]["Memos"].append({"Memo": {"MemoType": "zz", "MemoData": "not hex"}})

    calls = parse_contract_calls(entries, VERIFIER)

    assert [c[2] for c in calls] == ["GOOD"]


def test_event_from_call_builds_each_event():
    response = encode_response(True, 88).hex()

    requested = event_from_call("VerificationRequested", {"invoice_id": 7}, "H1", 5)
    fulfilled = event_from_call("VerificationFulfilled", {"invoice_id": "7", "response": response}, "H2", 6)
    failed = event_from_call("VerificationFailed", {"invoice_id": "7", "request_id": "H1", "reason": "x"}, "H3", 7)

    assert requested == VerificationRequested("H1", "7", 5, "H1")
    assert fulfilled == VerificationFulfilled("7", 88, True, 6, "H2")
    assert failed == VerificationFailed("7", "H1", "x", 7, "H3")


def test_event_from_call_ignores_malformed_payloads():
    assert event_from_call("VerificationFulfilled", {"invoice_id": "7", "response": "00"}, "H", 1) is None
    assert event_from_call("VerificationRequested", {}, "H", 1) is None
    assert event_from_call(MEMO_INVOICE_REGISTERED, {"invoice_id": "7"}, "H", 1) is None


@pytest.mark.asyncio
async def test_fetch_events_follows_pagination():
    rpc = _FakeRpcClient(
        {"transactions": [_entry("VerificationRequested", {"invoice_id": "1"}, "H1", 4)], "marker": {"page": 2}},
        {"transactions": [_entry("VerificationFailed", {"invoice_id": "1", "request_id": "H1", "reason": "r"}, "H2", 5)]},
    )

    events = await _client(rpc).fetch_events(4)

    assert [e.name for e in events] == ["VerificationRequested", "VerificationFailed"]
    assert len(rpc.requests) == 2
    assert rpc.requests[0].ledger_index_min == 4
    assert rpc.requests[1].marker == {"page": 2}


@pytest.mark.asyncio
async def test_get_invoice_reads_registration():
    registration = {"invoice_id": "9", "debtor_name": "Tesla", "face_value_wei": "1000", "due_date": "1700000000"}
    rpc = _FakeRpcClient({"transactions": [_entry(MEMO_INVOICE_REGISTERED, registration, "H", 2)]})

    invoice = await _client(rpc).get_invoice("9")

    assert invoice.debtor_name == "Tesla"
    assert invoice.face_value_wei == 1000


@pytest.mark.asyncio
async def test_get_invoice_missing_raises_lookup_error():
    with pytest.raises(LookupError):
        await _client(_FakeRpcClient()).get_invoice("9")


@pytest.mark.asyncio
async def test_request_for_unregistered_invoice_is_rejected_before_submission(monkeypatch):
    async def fail_submit(*args, **kwargs):
        raise AssertionError("should not submit")

    monkeypatch.setattr(xrpl_module, "submit_and_wait", fail_submit)

    with pytest.raises(SubmissionRejected, match="does not exist"):
        await _client(_FakeRpcClient()).request_verification("1")


@pytest.mark.asyncio
async def test_request_for_verified_invoice_is_rejected():
    history = [
        _entry(MEMO_INVOICE_REGISTERED, {"invoice_id": "1"}, "H0", 1),
        _entry("VerificationFulfilled", {"invoice_id": "1", "response": encode_response(True, 70).hex()}, "H1", 2),
    ]

    with pytest.raises(SubmissionRejected, match="already verified"):
        await _client(_FakeRpcClient({"transactions": history})).request_verification("1")


@pytest.mark.asyncio
async def test_request_verification_returns_request_event(monkeypatch):
    submitted = []

    async def fake_submit(transaction, client, wallet):
        submitted.append(transaction)
        return SimpleNamespace(
            result={"hash": "REQHASH", "ledger_index": 42, "meta": {"TransactionResult": "tesSUCCESS"}}
        )

    monkeypatch.setattr(xrpl_module, "submit_and_wait", fake_submit)
    rpc = _FakeRpcClient({"transactions": [_entry(MEMO_INVOICE_REGISTERED, {"invoice_id": "1"}, "H0", 1)]})

    receipt = await _client(rpc).request_verification("1")

    assert receipt.events == (VerificationRequested("REQHASH", "1", 42, "REQHASH"),)
    assert submitted[0].destination == VERIFIER
    assert submitted[0].amount == "1"


@pytest.mark.asyncio
async def test_non_success_engine_result_is_rejected(monkeypatch):
    async def fake_submit(transaction, client, wallet):
        return SimpleNamespace(result={"meta": {"TransactionResult": "tecUNFUNDED_PAYMENT"}})

    monkeypatch.setattr(xrpl_module, "submit_and_wait", fake_submit)

    with pytest.raises(SubmissionRejected) as exc_info:
        await _client(_FakeRpcClient()).report_failure("REQ", "1", "timeout")

    assert exc_info.value.reason == "tecUNFUNDED_PAYMENT"


@pytest.mark.asyncio
async def test_library_errors_become_rejections(monkeypatch):
    async def fake_submit(transaction, client, wallet):
        raise xrpl.XRPLException("connection reset")

    monkeypatch.setattr(xrpl_module, "submit_and_wait", fake_submit)

    with pytest.raises(SubmissionRejected, match="connection reset"):
        await _client(_FakeRpcClient()).set_verification_source("def score(): ...")


@pytest.mark.asyncio
async def test_manual_verify_rejects_invalid_score_without_network():
    with pytest.raises(SubmissionRejected, match="Invalid risk score"):
        await _client(_FakeRpcClient()).manual_verify("1", 150)


@pytest.mark.asyncio
async def test_signing_requires_a_seed():
    ledger = XRPLLedgerClient(VERIFIER, client=_FakeRpcClient())

    with pytest.raises(SubmissionRejected, match="wallet"):
        await ledger.report_failure("REQ", "1", "timeout")


def test_from_settings_uses_configured_network():
    from invoice_oracle.config import Settings

    ledger = XRPLLedgerClient.from_settings(
        Settings(ledger_backend="xrpl", xrpl_network="devnet", verifier_address=VERIFIER)
    )

    assert ledger.url == "https://s.devnet.rippletest.net:51234"
    assert ledger.verifier_address == VERIFIER


def test_from_settings_requires_verifier_address():
    from invoice_oracle.config import Settings

    with pytest.raises(ValueError, match="VERIFIER_ADDRESS"):
        XRPLLedgerClient.from_settings(Settings(ledger_backend="xrpl", verifier_address=None))


def test_privileged_calls_require_trusted_sender():
    response = encode_response(True, 100).hex()
    entries = [
        _entry("VerificationFulfilled", {"invoice_id": "7", "response": response}, "FORGED", 9, sender=OUTSIDER),
        _entry("VerificationFulfilled", {"invoice_id": "7", "response": response}, "REAL", 10),
        _entry("VerificationRequested", {"invoice_id": "7"}, "OPEN", 11, sender=OUTSIDER),
    ]

    calls = parse_contract_calls(entries, VERIFIER, trusted_senders={SENDER})

    assert [c[2] for c in calls] == ["REAL", "OPEN"]
    assert parse_contract_calls(entries[:1], VERIFIER) == []


@pytest.mark.asyncio
async def test_forged_fulfillment_neither_emits_event_nor_blocks_requests(monkeypatch):
    history = [
        _entry(MEMO_INVOICE_REGISTERED, {"invoice_id": "7"}, "H0", 1),
        _entry("VerificationFulfilled", {"invoice_id": "7", "response": encode_response(True, 100).hex()}, "FORGED", 2, sender=OUTSIDER),
    ]

    async def fake_submit(transaction, client, wallet):
        return SimpleNamespace(result={"hash": "REQ", "ledger_index": 3, "meta": {"TransactionResult": "tesSUCCESS"}})

    monkeypatch.setattr(xrpl_module, "submit_and_wait", fake_submit)
    rpc = _FakeRpcClient({"transactions": history}, {"transactions": history})
    ledger = _client(rpc)

    assert await ledger.fetch_events() == []
    receipt = await ledger.request_verification("7")
    assert receipt.events[0].request_id == "REQ"


@pytest.mark.asyncio
async def test_signing_wallet_is_trusted_without_configuration():
    wallet = Wallet.create()
    registration = {"invoice_id": "9", "debtor_name": "Visa", "face_value_wei": "5", "due_date": "1700000000"}
    rpc = _FakeRpcClient({"transactions": [_entry(MEMO_INVOICE_REGISTERED, registration, "H", 2, sender=wallet.classic_address)]})
    ledger = XRPLLedgerClient(VERIFIER, client=rpc)
    ledger._wallet = wallet

    invoice = await ledger.get_invoice("9")

    assert invoice.debtor_name == "Visa"


@pytest.mark.parametrize("response", [123, None, ["00"], {"hex": "00"}])
def test_event_from_call_skips_non_string_response(response):
    assert event_from_call("VerificationFulfilled", {"invoice_id": "7", "response": response}, "H", 1) is None


@pytest.mark.asyncio
async def test_malformed_memo_does_not_stall_event_feed():
    rpc = _FakeRpcClient(
        {
            "transactions": [
                _entry("VerificationFulfilled", {"invoice_id": "7", "response": 123}, "BAD", 4),
                _entry("VerificationFailed", {"invoice_id": "7", "request_id": "R", "reason": "x"}, "GOOD", 5),
            ]
        }
    )

    events = await _client(rpc).fetch_events(4)

    assert [e.transaction_id for e in events] == ["GOOD"]
