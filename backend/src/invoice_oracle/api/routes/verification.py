"""
Verification lifecycle endpoints.

Submit oracle or manual verification for an invoice and read the tracked
request state.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from invoice_oracle.api.dependencies import get_orchestrator
from invoice_oracle.api.schemas import (
    ManualVerificationRequest,
    VerificationStatusEnum,
    VerificationStatusResponse,
)
from invoice_oracle.domain.errors import InvalidScore, SubmissionRejected
from invoice_oracle.domain.models import VerificationRequest, normalize_invoice_id
from invoice_oracle.services.orchestrator import VerificationOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/verification", tags=["verification"])


def _to_response(request: VerificationRequest) -> VerificationStatusResponse:
    return VerificationStatusResponse(
        invoice_id=request.invoice_id,
        status=VerificationStatusEnum(request.status.value),
        request_id=request.request_id,
        risk_score=request.risk_score,
        failure_reason=request.failure_reason,
        submitted_at=request.submitted_at,
    )


@router.post(
    "/{invoice_id}",
    response_model=VerificationStatusResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={409: {"description": "Ledger rejected the request"}},
)
async def request_verification(
    invoice_id: str,
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
) -> VerificationStatusResponse:
    """
    Request oracle verification of an invoice.

    Returns once the ledger has confirmed the request; the score arrives
    later through the fulfillment event.
    """
    try:
        request = await orchestrator.submit_verification(invoice_id)
    except SubmissionRejected as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.reason)
    return _to_response(request)


@router.post(
    "/{invoice_id}/manual",
    response_model=VerificationStatusResponse,
    responses={
        409: {"description": "Ledger rejected the request"},
        422: {"description": "Risk score outside 0-100"},
    },
)
async def manual_verification(
    invoice_id: str,
    body: ManualVerificationRequest,
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
) -> VerificationStatusResponse:
    """Record a risk score directly (testing and demos only)."""
    try:
        request = await orchestrator.submit_manual_verification(invoice_id, body.risk_score)
    except InvalidScore as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except SubmissionRejected as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.reason)
    return _to_response(request)


@router.get("/{invoice_id}", response_model=VerificationStatusResponse)
async def get_verification_status(
    invoice_id: str,
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
) -> VerificationStatusResponse:
    """Current verification state; IDLE if nothing was submitted."""
    request = orchestrator.get_request(invoice_id)
    if request is None:
        return VerificationStatusResponse(
            invoice_id=normalize_invoice_id(invoice_id),
            status=VerificationStatusEnum.IDLE,
        )
    return _to_response(request)
