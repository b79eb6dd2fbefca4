"""
API package - HTTP surface for scoring and verification.
"""
