import pytest

from invoice_oracle.domain.codec import RESPONSE_SIZE, decode_response
from invoice_oracle.domain.errors import InputError
from invoice_oracle.domain.models import (
    MarketAdjustment,
    VerificationFailed,
    VerificationFulfilled,
    VerificationRequested,
)
from invoice_oracle.services.market import StaticSentimentProvider
from invoice_oracle.services.oracle import OracleNode, execute_verification, score_invoice
from tests.utils import NOW, make_invoice


class _FixedAdjustment:
    def __init__(self, delta: int) -> None:
        self.delta = delta

    async def get_adjustment(self, timeout_seconds=None) -> MarketAdjustment:
        return MarketAdjustment(delta=self.delta, reason="test feed")


@pytest.mark.asyncio
async def test_execute_verification_returns_encoded_score():
    args = make_invoice("1", "Apple Inc", 50000, 60).to_arguments()

    response = await execute_verification(args, now=NOW)

    assert len(response) == RESPONSE_SIZE
    success, score = decode_response(response)
    assert success is True
    assert score >= 80


@pytest.mark.asyncio
async def test_execute_verification_applies_market_adjustment():
    args = make_invoice("3", "Random Corp Ltd", 5000, 45).to_arguments()

    baseline = decode_response(await execute_verification(args, now=NOW))[1]
    adjusted = decode_response(await execute_verification(args, _FixedAdjustment(-15), now=NOW))[1]

    assert adjusted == baseline - 15


@pytest.mark.asyncio
async def test_unavailable_market_scores_like_no_market():
    args = make_invoice("3", "Random Corp Ltd", 5000, 45).to_arguments()

    without = await execute_verification(args, now=NOW)
    unavailable = await execute_verification(args, StaticSentimentProvider(), now=NOW)

    assert without == unavailable


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "args",
    [
        ["1", "Apple Inc", "1000"],
        ["1", "Apple Inc", "1000", "123", "extra"],
        ["1", "Apple Inc", "lots", "123"],
        ["1", "Apple Inc", "1000", "soon"],
    ],
)
async def test_execute_verification_rejects_malformed_arguments(args):
    with pytest.raises(InputError):
        await execute_verification(args, now=NOW)


@pytest.mark.asyncio
async def test_score_invoice_breakdown_ends_with_market_line():
    result = await score_invoice(make_invoice(), _FixedAdjustment(5), now=NOW)

    assert result.breakdown[0].label == "Base score"
    assert result.breakdown[-1].label == "Market sentiment: test feed"
    assert result.breakdown[-1].delta == 5


@pytest.mark.asyncio
async def test_node_fulfills_requested_invoices(ledger):
    node = OracleNode(ledger, clock=lambda: NOW)
    await ledger.request_verification("1")
    await ledger.request_verification("2")

    handled = await node.run_once()

    assert handled == 2
    fulfilled = {e.invoice_id: e for e in ledger.events if isinstance(e, VerificationFulfilled)}
    assert fulfilled["1"].risk_score >= 80
    assert fulfilled["2"].risk_score <= 30
    assert ledger.open_requests == {}


@pytest.mark.asyncio
async def test_node_handles_each_request_once(ledger):
    node = OracleNode(ledger, clock=lambda: NOW)
    receipt = await ledger.request_verification("3")
    event = receipt.events[0]

    assert await node.handle_request(event) is not None
    assert await node.handle_request(event) is None
    assert await node.run_once() == 0


@pytest.mark.asyncio
async def test_node_reports_failure_for_unknown_invoice(ledger):
    node = OracleNode(ledger, clock=lambda: NOW)
    ledger.open_requests["0xfeed"] = "99"

    receipt = await node.handle_request(VerificationRequested(request_id="0xfeed", invoice_id="99"))

    failure = receipt.events[0]
    assert isinstance(failure, VerificationFailed)
    assert failure.request_id == "0xfeed"
    assert "not found" in failure.reason


@pytest.mark.asyncio
async def test_node_survives_rejected_fulfillment(ledger):
    node = OracleNode(ledger, clock=lambda: NOW)
    await ledger.request_verification("1")
    ledger.reject_next("out of gas")

    assert await node.run_once() == 0
    assert len(ledger.open_requests) == 1


@pytest.mark.asyncio
async def test_handled_requests_stay_bounded(ledger):
    node = OracleNode(ledger, clock=lambda: NOW)
    for n in range(10, 20):
        ledger.add_invoice(make_invoice(str(n), "Random Corp Ltd", 5000, 45))

    for n in range(10, 20):
        await ledger.request_verification(str(n))
        assert await node.run_once() == 1

    assert len(node._handled) <= 1
    assert ledger.open_requests == {}
