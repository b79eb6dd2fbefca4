import pytest

from invoice_oracle.domain.codec import encode_response
from invoice_oracle.domain.errors import SubmissionRejected
from invoice_oracle.domain.hashing import verify_hash
from invoice_oracle.domain.models import VerificationRequested
from tests.utils import make_invoice


@pytest.mark.asyncio
async def test_each_transaction_gets_its_own_block(ledger):
    first = await ledger.request_verification("1")
    second = await ledger.request_verification("3")

    assert (first.block_number, second.block_number) == (1, 2)
    assert first.transaction_id != second.transaction_id
    assert first.events[0].block_number == 1
    assert isinstance(second.events[0], VerificationRequested)


@pytest.mark.asyncio
async def test_fetch_events_from_block(ledger):
    await ledger.request_verification("1")
    await ledger.request_verification("3")

    assert [e.invoice_id for e in await ledger.fetch_events(2)] == ["3"]


@pytest.mark.asyncio
async def test_fulfill_unknown_request_is_rejected(ledger):
    with pytest.raises(SubmissionRejected, match="Unknown request"):
        await ledger.fulfill_request("0xdead", "1", encode_response(True, 50))


@pytest.mark.asyncio
async def test_malformed_response_is_rejected_and_request_stays_open(ledger):
    receipt = await ledger.request_verification("1")
    request_id = receipt.events[0].request_id

    with pytest.raises(SubmissionRejected, match="Malformed"):
        await ledger.fulfill_request(request_id, "1", b"\x00" * 10)

    assert request_id in ledger.open_requests


@pytest.mark.asyncio
async def test_verification_source_is_fingerprinted(ledger):
    await ledger.set_verification_source("return score")

    assert ledger.verification_source == "return score"
    assert verify_hash(b"return score", ledger.source_hash)

    with pytest.raises(SubmissionRejected):
        await ledger.set_verification_source("")


@pytest.mark.asyncio
async def test_get_invoice_missing(ledger):
    with pytest.raises(LookupError):
        await ledger.get_invoice("404")


@pytest.mark.asyncio
async def test_manual_verify_marks_invoice_verified(ledger):
    await ledger.manual_verify("2", 40)

    assert ledger.is_verified(2)
    with pytest.raises(SubmissionRejected, match="already verified"):
        await ledger.manual_verify("2", 41)


@pytest.mark.asyncio
async def test_register_invoice_commits_once(ledger):
    receipt = await ledger.register_invoice(make_invoice("8", "Visa Inc", 100, 30))

    assert receipt.block_number == 1
    assert (await ledger.get_invoice(8)).debtor_name == "Visa Inc"
    with pytest.raises(SubmissionRejected, match="already exists"):
        await ledger.register_invoice(make_invoice("8"))
