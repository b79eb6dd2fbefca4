"""
Services package - Market data, ledger integration and request orchestration.
"""

from .ledger import LedgerClient
from .market import MarketSentimentProvider, StaticSentimentProvider, sentiment_adjustment
from .oracle import OracleNode, execute_verification, score_invoice
from .orchestrator import Subscription, VerificationOrchestrator

__all__ = [
    "LedgerClient",
    "MarketSentimentProvider",
    "OracleNode",
    "StaticSentimentProvider",
    "Subscription",
    "VerificationOrchestrator",
    "execute_verification",
    "score_invoice",
    "sentiment_adjustment",
]
