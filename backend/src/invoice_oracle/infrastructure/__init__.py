"""
Infrastructure package - Local implementations of external collaborators.
"""

from .memory_ledger import InMemoryLedger

__all__ = ["InMemoryLedger"]
