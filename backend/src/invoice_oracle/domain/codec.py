"""
Oracle response encoding.

The oracle reports its result as an ABI-encoded ``(bool, uint256)`` tuple:
two 32-byte big-endian words. Word 0 holds the success flag in its last
byte, word 1 holds the risk score.

    decode_response(encode_response(success, score)) == (success, score)
"""

from .errors import InvalidScore, MalformedBuffer

WORD_SIZE = 32
RESPONSE_SIZE = 2 * WORD_SIZE

MIN_SCORE = 0
MAX_SCORE = 100


def _check_score(score: object) -> int:
    if isinstance(score, bool) or not isinstance(score, int):
        raise InvalidScore(score)
    if not MIN_SCORE <= score <= MAX_SCORE:
        raise InvalidScore(score)
    return score


def encode_response(success: bool, score: int) -> bytes:
    """
    Encode an oracle response.

    Raises:
        InvalidScore: If score is not an integer in [0, 100].
    """
    score = _check_score(score)
    flag_word = (1 if success else 0).to_bytes(WORD_SIZE, "big")
    score_word = score.to_bytes(WORD_SIZE, "big")
    return flag_word + score_word


def decode_response(buffer: bytes) -> tuple[bool, int]:
    """
    Decode an oracle response produced by encode_response.

    Raises:
        MalformedBuffer: If the buffer is not exactly 64 bytes or the
            flag word is not a canonical ABI bool.
        InvalidScore: If the encoded score lies outside [0, 100].
    """
    if not isinstance(buffer, (bytes, bytearray, memoryview)):
        raise MalformedBuffer(f"Expected bytes, got {type(buffer).__name__}")

    data = bytes(buffer)
    if len(data) != RESPONSE_SIZE:
        raise MalformedBuffer(f"Expected {RESPONSE_SIZE} bytes, got {len(data)}")

    flag = int.from_bytes(data[:WORD_SIZE], "big")
    if flag not in (0, 1):
        raise MalformedBuffer(f"Success word is not a boolean: {data[:WORD_SIZE].hex()}")

    score = int.from_bytes(data[WORD_SIZE:], "big")
    return bool(flag), _check_score(score)


def decode_response_hex(payload: str) -> tuple[bool, int]:
    """Decode a hex string (with or without 0x prefix) as a response buffer."""
    if not isinstance(payload, str):
        raise MalformedBuffer(f"Expected a hex string, got {type(payload).__name__}")
    text = payload[2:] if payload.lower().startswith("0x") else payload
    try:
        data = bytes.fromhex(text)
    except ValueError as e:
        raise MalformedBuffer(f"Response is not valid hex: {e}") from None
    return decode_response(data)
