"""
Invoice Oracle - credit-risk scoring and oracle verification for trade invoices.
"""

__version__ = "0.1.0"
