"""
Service instances shared by the API routes.

Routes receive these through FastAPI's Depends so tests can swap them via
``app.dependency_overrides``.
"""

import logging

from invoice_oracle.config import get_settings
from invoice_oracle.infrastructure import InMemoryLedger
from invoice_oracle.services.ledger import LedgerClient
from invoice_oracle.services.market import MarketSentimentProvider
from invoice_oracle.services.oracle import OracleNode
from invoice_oracle.services.orchestrator import VerificationOrchestrator
from invoice_oracle.services.xrpl import XRPLLedgerClient

logger = logging.getLogger(__name__)


_ledger: LedgerClient | None = None
_orchestrator: VerificationOrchestrator | None = None
_market_provider: MarketSentimentProvider | None = None
_oracle_node: OracleNode | None = None


def build_ledger(settings) -> LedgerClient:
    """Create the ledger client selected by LEDGER_BACKEND."""
    if settings.ledger_backend == "xrpl":
        logger.info(f"Using XRPL ledger on {settings.xrpl_network}")
        return XRPLLedgerClient.from_settings(settings)
    logger.info("Using in-process ledger")
    return InMemoryLedger()


def get_ledger() -> LedgerClient:
    """Get or create the ledger client."""
    global _ledger
    if _ledger is None:
        _ledger = build_ledger(get_settings())
    return _ledger


def get_orchestrator() -> VerificationOrchestrator:
    """Get or create the verification orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = VerificationOrchestrator(get_ledger())
    return _orchestrator


def get_market_provider() -> MarketSentimentProvider:
    """Get or create the market sentiment provider."""
    global _market_provider
    if _market_provider is None:
        _market_provider = MarketSentimentProvider.from_settings(get_settings())
    return _market_provider


def get_oracle_node() -> OracleNode:
    """Get or create the in-process oracle node."""
    global _oracle_node
    if _oracle_node is None:
        _oracle_node = OracleNode(get_ledger(), get_market_provider())
    return _oracle_node


async def close_services() -> None:
    """Release network clients on shutdown."""
    global _ledger, _orchestrator, _market_provider, _oracle_node
    if _market_provider is not None:
        await _market_provider.aclose()
    if _ledger is not None:
        await _ledger.close()
    _ledger = None
    _orchestrator = None
    _market_provider = None
    _oracle_node = None
