"""
Domain models for invoice risk scoring and oracle verification.

These models represent the values exchanged between the scoring engine,
the market-data provider, the ledger and the verification orchestrator.

Design Decisions:
- Frozen dataclasses for inputs, results and ledger events
- VerificationRequest is the only mutable record; the orchestrator owns it
- Decimal for token amounts and market prices to avoid floating-point drift
- Invoice ids are normalized to strings so "7" and 7 address the same invoice
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import ClassVar

from .errors import InputError


# Face values are 18-decimal fixed point integers (wei)
WEI_PER_TOKEN = 10**18


def normalize_invoice_id(invoice_id: str | int) -> str:
    """Return the canonical string form of an invoice id."""
    return str(invoice_id).strip()


def _parse_int(value: str | int, field_name: str) -> int:
    if isinstance(value, bool):
        raise InputError(f"{field_name} must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    text = str(value).strip()
    try:
        return int(text, 10)
    except ValueError:
        raise InputError(f"{field_name} must be an integer, got {value!r}") from None


class VerificationStatus(Enum):
    """Lifecycle state of a verification request for one invoice."""
    IDLE = "idle"
    PENDING = "pending"
    FULFILLED = "fulfilled"
    FAILED = "failed"


@dataclass(frozen=True)
class InvoiceInput:
    """
    The four invoice attributes the risk score is computed from.

    Zero or negative face values are accepted; they fall into the
    smallest value tier rather than being rejected.
    """
    invoice_id: str
    debtor_name: str
    face_value_wei: int
    due_date_epoch_seconds: int

    @property
    def face_value_tokens(self) -> Decimal:
        """Face value in whole-token units."""
        return Decimal(self.face_value_wei) / Decimal(WEI_PER_TOKEN)

    @classmethod
    def from_arguments(cls, args: Sequence[str]) -> "InvoiceInput":
        """
        Build an input from the oracle's positional argument list.

        The list must hold exactly ``[invoiceId, debtorName, faceValueWei,
        dueDateEpochSeconds]`` as strings.

        Raises:
            InputError: On wrong arity or non-integer numeric fields.
        """
        if isinstance(args, (str, bytes)) or len(args) != 4:
            raise InputError(
                "Expected 4 arguments [invoiceId, debtorName, faceValueWei, dueDate], "
                f"got {args!r}"
            )
        invoice_id, debtor_name, face_value, due_date = args
        return cls(
            invoice_id=normalize_invoice_id(invoice_id),
            debtor_name=str(debtor_name or ""),
            face_value_wei=_parse_int(face_value, "faceValue"),
            due_date_epoch_seconds=_parse_int(due_date, "dueDate"),
        )

    def to_arguments(self) -> list[str]:
        """Inverse of from_arguments."""
        return [
            self.invoice_id,
            self.debtor_name,
            str(self.face_value_wei),
            str(self.due_date_epoch_seconds),
        ]


@dataclass(frozen=True)
class ScoreFactor:
    """One line of the scoring breakdown."""
    label: str
    delta: int

    def __str__(self) -> str:
        return f"{self.label}: {self.delta:+d}" if self.delta else f"{self.label}: 0"


@dataclass(frozen=True)
class ScoringResult:
    """
    Final risk score plus the per-factor breakdown.

    The breakdown is for audit logging only; nothing branches on it.
    """
    score: int
    breakdown: tuple[ScoreFactor, ...] = ()

    @property
    def raw_total(self) -> int:
        """Unclamped sum of the base score and every factor."""
        return sum(factor.delta for factor in self.breakdown)


@dataclass(frozen=True)
class MarketSentiment:
    """Snapshot of the market feed used for one scoring call."""
    price: Decimal
    change_24h_percent: Decimal
    market_cap_usd: Decimal


@dataclass(frozen=True)
class MarketAdjustment:
    """Bounded score adjustment derived from market sentiment."""
    delta: int
    reason: str


@dataclass
class VerificationRequest:
    """
    Tracked verification request for a single invoice.

    Mutable because the orchestrator moves it from PENDING to a terminal
    state when the matching ledger event arrives.
    """
    invoice_id: str
    request_id: str | None = None
    status: VerificationStatus = VerificationStatus.PENDING
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    risk_score: int | None = None
    failure_reason: str | None = None


# =============================================================================
# Ledger events
# =============================================================================

@dataclass(frozen=True)
class VerificationRequested:
    """The ledger accepted a verification request and forwarded it to the oracle."""
    name: ClassVar[str] = "VerificationRequested"

    request_id: str
    invoice_id: str
    block_number: int = 0
    transaction_id: str = ""

    @property
    def key(self) -> tuple[str, str, int, str]:
        return (self.name, self.invoice_id, self.block_number, self.transaction_id)


@dataclass(frozen=True)
class VerificationFulfilled:
    """The oracle response was written to the ledger."""
    name: ClassVar[str] = "VerificationFulfilled"

    invoice_id: str
    risk_score: int
    success: bool
    block_number: int = 0
    transaction_id: str = ""

    @property
    def key(self) -> tuple[str, str, int, str]:
        return (self.name, self.invoice_id, self.block_number, self.transaction_id)


@dataclass(frozen=True)
class VerificationFailed:
    """The oracle reported an error for a request."""
    name: ClassVar[str] = "VerificationFailed"

    invoice_id: str
    request_id: str | None
    reason: str
    block_number: int = 0
    transaction_id: str = ""

    @property
    def key(self) -> tuple[str, str, int, str]:
        return (self.name, self.invoice_id, self.block_number, self.transaction_id)


LedgerEvent = VerificationRequested | VerificationFulfilled | VerificationFailed


@dataclass(frozen=True)
class TransactionReceipt:
    """Confirmation of a ledger transaction and the events it emitted."""
    transaction_id: str
    block_number: int
    events: tuple[LedgerEvent, ...] = ()


@dataclass(frozen=True)
class FulfillmentNotice:
    """Payload delivered to fulfillment subscribers."""
    invoice_id: str
    score: int
    success: bool


@dataclass(frozen=True)
class FailureNotice:
    """Payload delivered to failure subscribers."""
    invoice_id: str
    request_id: str | None
    reason: str
