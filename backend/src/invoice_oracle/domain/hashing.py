"""
Fingerprints for the scoring logic deployed to the oracle.

The verifier contract is configured with the scoring source at deployment
time. Ledgers that cannot hold the full source anchor its hash instead, and
request ids of the in-process ledger are derived the same way.

Design Decisions:
- SHA-256 chosen for wide support and collision resistance
- Hash computed on raw bytes to avoid encoding issues
- 'sha256:' prefix so fingerprints are self-describing
"""

import hashlib

HASH_PREFIX = "sha256:"


def compute_source_hash(content: bytes) -> str:
    """
    Compute the SHA-256 fingerprint of a source payload.

    Args:
        content: Raw bytes of the verification source

    Returns:
        Hex-encoded SHA-256 hash prefixed with 'sha256:'

    Example:
        >>> compute_source_hash(b"source")
        'sha256:...'
    """
    if not content:
        raise ValueError("Cannot hash empty content")

    digest = hashlib.sha256(content).hexdigest()
    return f"{HASH_PREFIX}{digest}"


def verify_hash(content: bytes, expected_hash: str) -> bool:
    """Check that content matches a 'sha256:' fingerprint."""
    if not expected_hash.startswith(HASH_PREFIX):
        raise ValueError(f"Invalid hash format, expected '{HASH_PREFIX}' prefix: {expected_hash}")

    return compute_source_hash(content) == expected_hash


def derive_request_id(invoice_id: str, nonce: int) -> str:
    """
    Derive a 32-byte request id for an invoice verification.

    Returns:
        0x-prefixed hex string, unique per (invoice_id, nonce)
    """
    digest = hashlib.sha256(f"{invoice_id}|{nonce}".encode()).hexdigest()
    return f"0x{digest}"
