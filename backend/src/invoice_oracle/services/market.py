"""
Market sentiment provider for the risk score.

Fetches the 24h price change of a reference asset and maps it to a bounded
score adjustment. This is an isolated failure domain: network errors,
timeouts, rate limits and unexpected payloads all degrade to an
"unavailable" sentiment and a zero adjustment. Nothing is raised to the
caller, so scoring always completes in bounded time.
"""

import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from invoice_oracle.domain.errors import ExternalUnavailable
from invoice_oracle.domain.models import MarketAdjustment, MarketSentiment

logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT_SECONDS = 9.0

UNAVAILABLE_REASON = "API unavailable"

# (threshold, adjustment) pairs, checked in order
POSITIVE_CHANGE_TIERS = (
    (Decimal("10"), 15),
    (Decimal("5"), 10),
    (Decimal("2"), 5),
)
NEGATIVE_CHANGE_TIERS = (
    (Decimal("-10"), -15),
    (Decimal("-5"), -10),
    (Decimal("-2"), -5),
)

STABILITY_PRICE_THRESHOLD = Decimal("4000")
STABILITY_BONUS = 5

# Largest table magnitude plus the stability bonus
MAX_ADJUSTMENT = 20


def sentiment_adjustment(sentiment: MarketSentiment | None) -> MarketAdjustment:
    """
    Map market sentiment to a score adjustment in [-20, +20].

    The 24h change table and the price-stability bonus are additive.
    Unavailable sentiment maps to zero.
    """
    if sentiment is None:
        return MarketAdjustment(delta=0, reason=UNAVAILABLE_REASON)

    change = sentiment.change_24h_percent
    delta = 0
    for threshold, adjustment in POSITIVE_CHANGE_TIERS:
        if change > threshold:
            delta = adjustment
            break
    else:
        for threshold, adjustment in NEGATIVE_CHANGE_TIERS:
            if change < threshold:
                delta = adjustment
                break

    reasons = [f"24h change {change:+.2f}%"]
    if sentiment.price > STABILITY_PRICE_THRESHOLD:
        delta += STABILITY_BONUS
        reasons.append("price stability bonus")

    delta = max(-MAX_ADJUSTMENT, min(MAX_ADJUSTMENT, delta))
    return MarketAdjustment(delta=delta, reason=", ".join(reasons))


def parse_sentiment(payload: Any, asset: str) -> MarketSentiment:
    """
    Extract sentiment from a price feed payload.

    Expected shape: ``{asset: {"usd": n, "usd_24h_change": n, "usd_market_cap": n}}``

    Raises:
        ExternalUnavailable: On any deviation from the expected shape.
    """
    if not isinstance(payload, dict):
        raise ExternalUnavailable("Price feed response is not a JSON object")

    quote = payload.get(asset)
    if not isinstance(quote, dict):
        raise ExternalUnavailable(f"Price feed response has no '{asset}' entry")

    values: dict[str, Decimal] = {}
    for key in ("usd", "usd_24h_change", "usd_market_cap"):
        raw = quote.get(key)
        if isinstance(raw, bool) or not isinstance(raw, (int, float, str)):
            raise ExternalUnavailable(f"Price feed field '{key}' missing or not numeric")
        try:
            value = Decimal(str(raw))
        except InvalidOperation:
            raise ExternalUnavailable(f"Price feed field '{key}' is not numeric: {raw!r}") from None
        if not value.is_finite():
            raise ExternalUnavailable(f"Price feed field '{key}' is not finite: {raw!r}")
        values[key] = value

    return MarketSentiment(
        price=values["usd"],
        change_24h_percent=values["usd_24h_change"],
        market_cap_usd=values["usd_market_cap"],
    )


class MarketSentimentProvider:
    """
    Reads market sentiment from a CoinGecko-style simple price endpoint.

    Example:
        async with MarketSentimentProvider(url) as provider:
            adjustment = await provider.get_adjustment()
    """

    def __init__(
        self,
        url: str,
        *,
        asset: str = "ethereum",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self.url = url
        self.asset = asset
        self.timeout_seconds = timeout_seconds
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient()

    @classmethod
    def from_settings(cls, settings) -> "MarketSentimentProvider":
        return cls(
            settings.market_data_url,
            asset=settings.market_asset,
            timeout_seconds=settings.market_timeout_seconds,
        )

    async def fetch_sentiment(self, timeout_seconds: float | None = None) -> MarketSentiment | None:
        """
        Fetch the current market sentiment.

        Returns:
            MarketSentiment, or None when the feed is unavailable for any reason
        """
        timeout = timeout_seconds or self.timeout_seconds
        try:
            return await self._fetch(timeout)
        except ExternalUnavailable as e:
            logger.warning(f"Market data unavailable: {e}")
            return None
        except Exception:
            logger.exception("Unexpected error fetching market data")
            return None

    async def get_adjustment(self, timeout_seconds: float | None = None) -> MarketAdjustment:
        """Fetch sentiment and map it to a score adjustment."""
        sentiment = await self.fetch_sentiment(timeout_seconds)
        adjustment = sentiment_adjustment(sentiment)
        logger.info(f"Market adjustment {adjustment.delta:+d} ({adjustment.reason})")
        return adjustment

    async def _fetch(self, timeout: float) -> MarketSentiment:
        # httpx timeouts apply per read; the deadline covers the whole exchange
        try:
            async with asyncio.timeout(timeout):
                response = await self._http.get(self.url, timeout=httpx.Timeout(timeout))
        except (TimeoutError, httpx.TimeoutException) as e:
            raise ExternalUnavailable(f"Price feed timed out after {timeout}s") from e
        except httpx.HTTPError as e:
            raise ExternalUnavailable(f"HTTP error calling price feed: {e}") from e

        if response.status_code == 429:
            raise ExternalUnavailable("Rate limited by price feed")
        if not response.is_success:
            raise ExternalUnavailable(f"Price feed returned HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise ExternalUnavailable("Failed to decode price feed JSON") from e

        return parse_sentiment(payload, self.asset)

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this provider created it."""
        if self._owns_http_client:
            await self._http.aclose()

    async def __aenter__(self) -> "MarketSentimentProvider":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


class StaticSentimentProvider:
    """
    Provider returning a fixed sentiment without network access.

    Used by the simulator and wherever scoring must not depend on a feed.
    """

    def __init__(self, sentiment: MarketSentiment | None = None) -> None:
        self.sentiment = sentiment

    async def fetch_sentiment(self, timeout_seconds: float | None = None) -> MarketSentiment | None:
        return self.sentiment

    async def get_adjustment(self, timeout_seconds: float | None = None) -> MarketAdjustment:
        return sentiment_adjustment(self.sentiment)

    async def aclose(self) -> None:
        return None
