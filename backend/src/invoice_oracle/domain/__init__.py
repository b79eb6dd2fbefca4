"""
Domain package - Core business logic with no external dependencies.

This package contains the pure risk-scoring rules, the oracle response
codec and the value objects shared by the services layer.
"""
