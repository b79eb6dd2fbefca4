"""
Risk scoring endpoint.

Runs the same scoring function the oracle executes, for previews and
for checking a score before requesting on-chain verification.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from invoice_oracle.api.dependencies import get_market_provider
from invoice_oracle.api.schemas import ScoreFactorResponse, ScoreInvoiceRequest, ScoreInvoiceResponse
from invoice_oracle.domain.codec import encode_response
from invoice_oracle.domain.errors import InputError
from invoice_oracle.services.market import MarketSentimentProvider
from invoice_oracle.services.oracle import score_invoice

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scoring", tags=["scoring"])


@router.post(
    "/score",
    response_model=ScoreInvoiceResponse,
    responses={422: {"description": "Malformed invoice attributes"}},
)
async def score(
    request: ScoreInvoiceRequest,
    provider: MarketSentimentProvider = Depends(get_market_provider),
) -> ScoreInvoiceResponse:
    """
    Compute the 0-100 risk score for an invoice.

    The market adjustment is zero when the price feed is unreachable
    or when ``include_market`` is false.
    """
    try:
        invoice = request.to_invoice()
    except InputError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    result = await score_invoice(invoice, provider if request.include_market else None)
    market_factor = result.breakdown[-1]

    return ScoreInvoiceResponse(
        invoice_id=invoice.invoice_id,
        risk_score=result.score,
        breakdown=[ScoreFactorResponse(label=f.label, delta=f.delta) for f in result.breakdown],
        market_reason=market_factor.label.removeprefix("Market sentiment: "),
        response_hex="0x" + encode_response(True, result.score).hex(),
    )
