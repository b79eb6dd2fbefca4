import pytest

from invoice_oracle.domain.codec import (
    RESPONSE_SIZE,
    decode_response,
    decode_response_hex,
    encode_response,
)
from invoice_oracle.domain.errors import EncodingError, InvalidScore, MalformedBuffer


def test_encode_layout_is_two_big_endian_words():
    encoded = encode_response(True, 85)

    assert len(encoded) == RESPONSE_SIZE == 64
    assert encoded[:31] == bytes(31)
    assert encoded[31] == 1
    assert encoded[32:63] == bytes(31)
    assert encoded[63] == 85


def test_encode_failure_flag():
    encoded = encode_response(False, 0)
    assert encoded == bytes(64)


@pytest.mark.parametrize("success, score", [(True, 0), (True, 100), (False, 42), (True, 73)])
def test_decode_inverts_encode(success, score):
    assert decode_response(encode_response(success, score)) == (success, score)


def test_round_trip_over_full_score_range():
    for score in range(0, 101):
        assert decode_response(encode_response(True, score)) == (True, score)


@pytest.mark.parametrize("score", [101, -1, 256, 1.5, "50", True, None])
def test_encode_rejects_invalid_scores(score):
    with pytest.raises(InvalidScore):
        encode_response(True, score)


@pytest.mark.parametrize("length", [0, 32, 63, 65, 96])
def test_decode_rejects_wrong_length(length):
    with pytest.raises(MalformedBuffer):
        decode_response(bytes(length))


def test_decode_rejects_non_boolean_flag_word():
    buffer = bytearray(encode_response(True, 50))
    buffer[31] = 2
    with pytest.raises(MalformedBuffer):
        decode_response(bytes(buffer))


def test_decode_rejects_out_of_range_score():
    buffer = (1).to_bytes(32, "big") + (101).to_bytes(32, "big")
    with pytest.raises(InvalidScore):
        decode_response(buffer)


def test_codec_errors_share_a_base_class():
    with pytest.raises(EncodingError):
        decode_response(b"short")


def test_decode_hex_accepts_prefixed_payloads():
    payload = "0x" + encode_response(True, 64).hex()
    assert decode_response_hex(payload) == (True, 64)

    with pytest.raises(MalformedBuffer):
        decode_response_hex("0xzz")


@pytest.mark.parametrize("payload", [123, None, b"\x00" * 64, ["00"]])
def test_decode_hex_rejects_non_string_payloads(payload):
    with pytest.raises(MalformedBuffer):
        decode_response_hex(payload)
