"""
Invoice risk scoring rules.

This module contains pure functions that implement the credit-risk score
the oracle reports on-chain. No side effects, no I/O - the market-data
adjustment is fetched elsewhere and passed in.

The score starts at a neutral 50 and each factor adds an independent delta:
1. Debtor reputation - trusted-company allow-list
2. Face value tier - suspiciously small, reasonable, or extreme amounts
3. Due-date horizon - overdue, imminent, optimal, or too distant
4. Velocity - annualized value implied by the remaining term
5. Market sentiment - pre-bounded adjustment from the price feed

Design Decisions:
- Factors are summed first and clamped once, so no factor can mask another
- Decimal arithmetic on token values so tier boundaries are exact
- Floor division for day counts: a due date 1 second ago is overdue
- "now" is injectable so callers can score deterministically
"""

import logging
import math
import time
from decimal import Decimal

from .models import InvoiceInput, MarketAdjustment, ScoreFactor, ScoringResult

logger = logging.getLogger(__name__)


BASE_SCORE = 50
MIN_SCORE = 0
MAX_SCORE = 100

SECONDS_PER_DAY = 86400

TRUSTED_COMPANIES = (
    "APPLE",
    "MICROSOFT",
    "GOOGLE",
    "ALPHABET",
    "AMAZON",
    "META",
    "FACEBOOK",
    "TESLA",
    "NVIDIA",
    "JPMORGAN",
    "VISA",
    "MASTERCARD",
    "WALMART",
    "COCA-COLA",
    "PEPSI",
    "NETFLIX",
    "ADOBE",
    "ORACLE",
    "SALESFORCE",
    "IBM",
    "CISCO",
    "INTEL",
)

# Face value tiers, in whole-token units
SMALL_VALUE_LIMIT = Decimal("0.1")
REASONABLE_VALUE_MIN = Decimal("100")
REASONABLE_VALUE_MAX = Decimal("100000")
EXTREME_VALUE_LIMIT = Decimal("1000000")

# Annualized value above which a transaction is flagged as high velocity
VELOCITY_LIMIT = Decimal("10000000")


def clamp_score(value: int) -> int:
    """Clamp a raw factor sum into the reportable 0-100 range."""
    return max(MIN_SCORE, min(MAX_SCORE, int(value)))


def days_until_due(due_date_epoch_seconds: int, now: int | float) -> int:
    """Whole days between now and the due date, rounded toward negative infinity."""
    return (int(due_date_epoch_seconds) - math.floor(now)) // SECONDS_PER_DAY


def is_trusted_debtor(debtor_name: str) -> bool:
    """True if the normalized name contains any trusted company."""
    normalized = (debtor_name or "").upper().strip()
    if not normalized:
        return False
    return any(company in normalized for company in TRUSTED_COMPANIES)


def score_debtor_reputation(debtor_name: str) -> ScoreFactor:
    if is_trusted_debtor(debtor_name):
        return ScoreFactor("Trusted company", 30)
    return ScoreFactor("Unknown company", 0)


def score_face_value(face_value_tokens: Decimal) -> ScoreFactor:
    """
    Score the invoice amount.

    Tiers are checked in order and the first match wins:
    below 0.1 is suspicious, 100-100000 is reasonable, above 1M is extreme.
    """
    if face_value_tokens < SMALL_VALUE_LIMIT:
        return ScoreFactor("Very small amount", -10)
    if REASONABLE_VALUE_MIN <= face_value_tokens <= REASONABLE_VALUE_MAX:
        return ScoreFactor("Reasonable amount", 10)
    if face_value_tokens > EXTREME_VALUE_LIMIT:
        return ScoreFactor("Extremely large", -10)
    return ScoreFactor("Standard amount", 0)


def score_due_date(days: int) -> ScoreFactor:
    """
    Score the time remaining until the invoice is due.

    Checked in order: overdue, under a week, 30-90 days, over a year.
    """
    if days < 0:
        return ScoreFactor("Already overdue", -50)
    if days < 7:
        return ScoreFactor("Due very soon (<7 days)", -20)
    if 30 <= days <= 90:
        return ScoreFactor("Optimal timeframe (30-90 days)", 15)
    if days > 365:
        return ScoreFactor("Too far in future (>1 year)", -10)
    return ScoreFactor("Standard timeframe", 0)


def score_velocity(face_value_tokens: Decimal, days: int) -> ScoreFactor | None:
    """
    Penalize large amounts due over a short term.

    Only applies to invoices with at least one full day remaining.
    Returns None when the check does not fire.
    """
    if days <= 0:
        return None
    annualized = face_value_tokens * Decimal(365) / Decimal(days)
    if annualized > VELOCITY_LIMIT:
        return ScoreFactor("High velocity transaction", -5)
    return None


def compute_risk_score(
    invoice: InvoiceInput,
    *,
    now: int | float | None = None,
    market: MarketAdjustment | None = None,
) -> ScoringResult:
    """
    Compute the 0-100 risk score for an invoice.

    Args:
        invoice: The four scoring inputs
        now: Current Unix time in seconds; read from the wall clock if omitted
        market: Market sentiment adjustment; treated as unavailable if omitted

    Returns:
        ScoringResult with the clamped score and the ordered breakdown.
        The first breakdown entry is the base score.
    """
    if now is None:
        now = time.time()

    tokens = invoice.face_value_tokens
    days = days_until_due(invoice.due_date_epoch_seconds, now)

    breakdown: list[ScoreFactor] = [
        ScoreFactor("Base score", BASE_SCORE),
        score_debtor_reputation(invoice.debtor_name),
        score_face_value(tokens),
        score_due_date(days),
    ]

    velocity = score_velocity(tokens, days)
    if velocity is not None:
        breakdown.append(velocity)

    if market is None:
        market = MarketAdjustment(delta=0, reason="API unavailable")
    breakdown.append(ScoreFactor(f"Market sentiment: {market.reason}", market.delta))

    result = ScoringResult(
        score=clamp_score(sum(factor.delta for factor in breakdown)),
        breakdown=tuple(breakdown),
    )

    logger.info(
        f"Invoice {invoice.invoice_id}: {tokens:.4f} tokens, {days} days until due, "
        f"score {result.score} (raw {result.raw_total})"
    )
    for factor in breakdown[1:]:
        logger.info(f"  - {factor}")

    return result
