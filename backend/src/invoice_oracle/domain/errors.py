"""
Error taxonomy for scoring, encoding and ledger interaction.

Every error carries a stable ``code`` so the API layer and the CLI can
report failures without parsing messages.
"""


class InvoiceOracleError(RuntimeError):
    """Base exception for all invoice oracle failures."""

    def __init__(self, message: str, code: str = "INVOICE_ORACLE_ERROR") -> None:
        super().__init__(message)
        self.code = code


class InputError(InvoiceOracleError):
    """Raised when invoice attributes cannot be parsed into a scoring input."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="INPUT_ERROR")


class ExternalUnavailable(InvoiceOracleError):
    """
    Raised inside the market-data provider when the feed cannot be used.

    Never escapes the provider: it is converted to an "unavailable"
    sentiment before scoring continues.
    """

    def __init__(self, message: str = "API unavailable") -> None:
        super().__init__(message, code="EXTERNAL_UNAVAILABLE")


class SubmissionRejected(InvoiceOracleError):
    """Raised when the ledger reverts or rejects a transaction."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Submission rejected: {reason}", code="SUBMISSION_REJECTED")
        self.reason = reason


class EncodingError(InvoiceOracleError):
    """Raised when an oracle response cannot be encoded or decoded."""

    def __init__(self, message: str, code: str = "ENCODING_ERROR") -> None:
        super().__init__(message, code=code)


class InvalidScore(EncodingError):
    """Raised when a risk score lies outside 0-100."""

    def __init__(self, score: object) -> None:
        super().__init__(f"Risk score must be an integer in [0, 100], got {score!r}", code="INVALID_SCORE")
        self.score = score


class MalformedBuffer(EncodingError):
    """Raised when an oracle response buffer does not have the expected layout."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="MALFORMED_BUFFER")
