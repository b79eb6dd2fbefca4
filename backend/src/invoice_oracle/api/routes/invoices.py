"""
Invoice registration endpoint.

Stores an invoice's scoring inputs on the ledger so the oracle can load
them when verification is requested.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from invoice_oracle.api.dependencies import get_ledger
from invoice_oracle.api.schemas import InvoiceResponse, RegisterInvoiceRequest
from invoice_oracle.domain.errors import InputError, SubmissionRejected
from invoice_oracle.services.ledger import LedgerClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/invoices", tags=["invoices"])


@router.post(
    "",
    response_model=InvoiceResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        409: {"description": "Invoice already registered"},
        422: {"description": "Malformed invoice attributes"},
    },
)
async def register_invoice(
    request: RegisterInvoiceRequest,
    ledger: LedgerClient = Depends(get_ledger),
) -> InvoiceResponse:
    """Register an invoice for later verification."""
    try:
        invoice = request.to_invoice()
    except InputError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    try:
        receipt = await ledger.register_invoice(invoice)
    except SubmissionRejected as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.reason)

    logger.info(f"Registered invoice {invoice.invoice_id} in block {receipt.block_number}")
    return InvoiceResponse(
        invoice_id=invoice.invoice_id,
        debtor_name=invoice.debtor_name,
        face_value_wei=str(invoice.face_value_wei),
        due_date=invoice.due_date_epoch_seconds,
        transaction_id=receipt.transaction_id,
        block_number=receipt.block_number,
    )
