"""
Pydantic schemas for API request/response validation.

These schemas define the contract between clients and the backend.
Wei amounts are accepted as strings or integers and always returned as
strings, since they routinely exceed 2**53.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from invoice_oracle.domain.models import InvoiceInput


class VerificationStatusEnum(str, Enum):
    """Verification status for API responses."""
    IDLE = "idle"
    PENDING = "pending"
    FULFILLED = "fulfilled"
    FAILED = "failed"


# =============================================================================
# Request Schemas
# =============================================================================

class InvoiceAttributes(BaseModel):
    """The four invoice attributes the risk score is computed from."""
    invoice_id: str = Field(
        ...,
        min_length=1,
        description="Invoice identifier (token id)",
    )
    debtor_name: str = Field(
        default="",
        description="Name of the entity obligated to pay",
    )
    face_value_wei: str = Field(
        ...,
        description="Face value in wei (18-decimal fixed point) as a decimal string",
    )
    due_date: int = Field(
        ...,
        description="Due date as Unix epoch seconds",
    )

    @field_validator("face_value_wei", mode="before")
    @classmethod
    def _face_value_is_integer(cls, value: object) -> str:
        if isinstance(value, bool):
            raise ValueError("face_value_wei must be an integer")
        text = str(value).strip()
        if not text.lstrip("-").isdigit():
            raise ValueError("face_value_wei must be an integer")
        return text

    def to_invoice(self) -> InvoiceInput:
        """
        Convert to the scoring input.

        Raises:
            InputError: If a numeric field does not parse.
        """
        return InvoiceInput.from_arguments([
            self.invoice_id,
            self.debtor_name,
            self.face_value_wei,
            str(self.due_date),
        ])


class RegisterInvoiceRequest(InvoiceAttributes):
    """Invoice to store on the ledger before verification."""


class ScoreInvoiceRequest(InvoiceAttributes):
    """Invoice attributes to score."""
    include_market: bool = Field(
        default=True,
        description="Apply the market sentiment adjustment",
    )


class ManualVerificationRequest(BaseModel):
    """Score to record without the oracle round-trip."""
    risk_score: int = Field(
        ...,
        ge=0,
        le=100,
        description="Risk score (0-100)",
    )


# =============================================================================
# Response Schemas
# =============================================================================

class InvoiceResponse(BaseModel):
    """Registered invoice."""
    invoice_id: str
    debtor_name: str
    face_value_wei: str
    due_date: int
    transaction_id: str
    block_number: int


class ScoreFactorResponse(BaseModel):
    """One line of the scoring breakdown."""
    label: str
    delta: int


class ScoreInvoiceResponse(BaseModel):
    """Computed risk score."""
    invoice_id: str
    risk_score: int
    breakdown: list[ScoreFactorResponse]
    market_reason: str
    response_hex: str = Field(description="ABI-encoded (bool, uint256) oracle response")


class VerificationStatusResponse(BaseModel):
    """Tracked verification state for an invoice."""
    invoice_id: str
    status: VerificationStatusEnum
    request_id: str | None = None
    risk_score: int | None = None
    failure_reason: str | None = None
    submitted_at: datetime | None = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    version: str
    ledger_backend: str
    xrpl_network: str


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: str | None = None
    code: str | None = None
