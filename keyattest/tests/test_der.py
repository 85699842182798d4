from __future__ import annotations

import pytest

from keyattest import der
from keyattest.errors import DecodeError, DecodeErrorKind


def _kind(data: bytes, **kw) -> DecodeErrorKind:
    with pytest.raises(DecodeError) as ei:
        der.decode(data, **kw)
    return ei.value.kind


# ----------------------------- well-formed input ------------------------------


def test_sequence_tree_and_offsets():
    data = der.sequence(der.integer(5), der.octet_string(b"abc"), der.boolean(True))
    root = der.decode(data)
    assert root.tag.is_universal(der.SEQUENCE)
    assert len(root) == 3
    assert root[0].as_int() == 5
    assert root[1].as_octets() == b"abc"
    assert root[2].as_bool() is True
    assert root.encoded == data
    # children share the parent's buffer and know their own position
    assert data[root[1].offset : root[1].end] == root[1].encoded


@pytest.mark.parametrize("n", [0, 1, 127, 128, 255, 256, -1, -128, -129, 2**64, -(2**64)])
def test_integer_minimal_encoding(n):
    assert der.decode(der.integer(n)).as_int() == n


def test_long_form_length():
    payload = b"\x00" * 300
    enc = der.octet_string(payload)
    assert enc[1:4] == b"\x82\x01\x2c"
    assert der.decode(enc).as_octets() == payload


def test_oid_round_trip():
    assert der.decode(der.oid("1.3.6.1.4.1.11129.2.1.17")).as_oid() == "1.3.6.1.4.1.11129.2.1.17"
    assert der.decode(der.oid("2.999.3")).as_oid() == "2.999.3"


def test_times():
    assert der.decode(der.utc_time(1672531200)).as_time() == 1672531200
    assert der.decode(der.generalized_time(4102444800)).as_time() == 4102444800  # 2100-01-01
    # UTCTime years below 50 belong to the 21st century
    assert der.decode(b"\x17\x0d" + b"490101000000Z").as_time() == 2493072000
    assert der.decode(b"\x17\x0d" + b"500101000000Z").as_time() == -631152000


def test_high_tag_number_context():
    enc = der.explicit(704, der.null())
    node = der.decode(enc)
    assert node.tag.is_context(704)
    assert node.tag.constructed
    assert node[0].tag.is_universal(der.NULL)


def test_to_python():
    data = der.sequence(der.integer(1), der.null(), der.utf8_string("hé"), der.set_of(der.integer(2)))
    assert der.decode(data).to_python() == [1, None, "hé", [2]]


def test_encode_reproduces_input():
    data = der.sequence(der.explicit(1, der.set_of(der.integer(3), der.integer(2))), der.bit_string(b"\x01"))
    assert der.encode(der.decode(data)) == data


# ----------------------------- rejections -------------------------------------


def test_empty_input_truncated():
    assert _kind(b"") == DecodeErrorKind.TRUNCATED


def test_length_past_end_truncated():
    assert _kind(b"\x04\x05abc") == DecodeErrorKind.TRUNCATED


def test_trailing_bytes():
    assert _kind(der.null() + b"\x00") == DecodeErrorKind.TRAILING_BYTES


def test_indefinite_length():
    assert _kind(b"\x30\x80\x00\x00") == DecodeErrorKind.INDEFINITE_LENGTH


@pytest.mark.parametrize(
    "data",
    [
        b"\x04\x81\x05hello",  # long form for a short length
        b"\x04\x82\x00\x80" + b"\x00" * 128,  # leading zero length byte
        b"\x04\x85\x00\x00\x00\x00\x01\x00",  # length of length > 4
    ],
)
def test_non_minimal_lengths(data):
    assert _kind(data) == DecodeErrorKind.NON_MINIMAL_LENGTH


@pytest.mark.parametrize("content", [b"\x00\x01", b"\xff\x80"])
def test_non_minimal_integer(content):
    assert _kind(b"\x02" + bytes([len(content)]) + content) == DecodeErrorKind.NON_MINIMAL_LENGTH


def test_non_minimal_oid_arc():
    assert _kind(b"\x06\x03\x2a\x80\x01") == DecodeErrorKind.NON_MINIMAL_LENGTH


@pytest.mark.parametrize(
    "data",
    [
        b"\x01\x01\x01",  # BOOLEAN must be 00 or FF
        b"\x05\x01\x00",  # NULL with content
        b"\x03\x02\x08\x00",  # more than 7 unused bits
        b"\x03\x02\x01\x01",  # non-zero padding bit
        b"\x02\x00",  # empty INTEGER
        b"\x17\x0b" + b"2301010000Z",  # UTCTime without seconds
    ],
)
def test_malformed_primitives(data):
    assert _kind(data) == DecodeErrorKind.MALFORMED


@pytest.mark.parametrize(
    "data",
    [
        b"\x00\x00",  # end-of-contents
        b"\x10\x00",  # SEQUENCE in primitive form
        b"\x24\x00",  # OCTET STRING in constructed form
        b"\x9f\x1e\x00",  # high-tag form for tag 30
        b"\x9f\x80\x01\x00",  # high tag with leading 0x80
    ],
)
def test_invalid_tags(data):
    assert _kind(data) == DecodeErrorKind.INVALID_TAG


def test_depth_ceiling():
    data = der.null()
    for _ in range(10):
        data = der.sequence(data)
    der.decode(data, max_depth=11)
    assert _kind(data, max_depth=10) == DecodeErrorKind.DEPTH_EXCEEDED


def test_size_ceiling():
    data = der.octet_string(b"x" * 100)
    assert _kind(data, max_size=50) == DecodeErrorKind.OVERSIZED


def test_error_carries_offset():
    data = der.sequence(der.integer(1), b"\x01\x01\x01")
    with pytest.raises(DecodeError) as ei:
        der.decode(data)
    assert ei.value.ctx["offset"] == 5
    assert ei.value.reason == "decode.MALFORMED"


def test_accessor_type_mismatch():
    node = der.decode(der.integer(1))
    with pytest.raises(DecodeError) as ei:
        node.as_octets()
    assert ei.value.kind == DecodeErrorKind.MALFORMED
