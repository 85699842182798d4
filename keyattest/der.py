"""
keyattest.der
=============

Strict DER decoder (and a small encoder used by builders and tests).

`decode(data)` parses exactly one TLV and returns a `Node` tree. Nodes keep
offsets into the shared input buffer, so the tree is linear in the size of
the input and `Node.encoded` returns the exact source bytes (signature checks
rely on this; nothing is ever re-encoded for verification).

Enforced rules
--------------
- Definite lengths only; long-form lengths must be minimal and at most 4 bytes.
- Lengths never run past the enclosing buffer.
- High tag numbers must be minimally encoded; tag 0 (end-of-contents) is invalid.
- Universal types use their DER-mandated primitive/constructed form.
- INTEGER/ENUMERATED contents are minimal two's complement.
- OBJECT IDENTIFIER sub-identifiers are minimal; BOOLEAN is 0x00/0xFF;
  NULL is empty; BIT STRING has 0..7 zeroed unused bits.
- UTCTime / GeneralizedTime are the DER "Z" forms.
- Nesting depth is bounded by `max_depth`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, List, Optional, Tuple

from .errors import DecodeError, DecodeErrorKind

DEFAULT_MAX_DEPTH = 32


class TagClass(IntEnum):
    UNIVERSAL = 0
    APPLICATION = 1
    CONTEXT = 2
    PRIVATE = 3


# Universal tag numbers
BOOLEAN = 0x01
INTEGER = 0x02
BIT_STRING = 0x03
OCTET_STRING = 0x04
NULL = 0x05
OBJECT_IDENTIFIER = 0x06
ENUMERATED = 0x0A
UTF8_STRING = 0x0C
SEQUENCE = 0x10
SET = 0x11
PRINTABLE_STRING = 0x13
T61_STRING = 0x14
IA5_STRING = 0x16
UTC_TIME = 0x17
GENERALIZED_TIME = 0x18
BMP_STRING = 0x1E

_CONSTRUCTED_UNIVERSAL = frozenset({SEQUENCE, SET})
_PRIMITIVE_UNIVERSAL = frozenset(
    {
        BOOLEAN,
        INTEGER,
        BIT_STRING,
        OCTET_STRING,
        NULL,
        OBJECT_IDENTIFIER,
        ENUMERATED,
        UTF8_STRING,
        PRINTABLE_STRING,
        T61_STRING,
        IA5_STRING,
        UTC_TIME,
        GENERALIZED_TIME,
        BMP_STRING,
    }
)
_STRING_TYPES = {
    UTF8_STRING: "utf-8",
    PRINTABLE_STRING: "ascii",
    IA5_STRING: "ascii",
    T61_STRING: "latin-1",
    BMP_STRING: "utf-16-be",
}

# Tag numbers above this are refused (4 base-128 bytes).
_MAX_TAG_NUMBER = (1 << 28) - 1


@dataclass(frozen=True)
class Tag:
    cls: TagClass
    constructed: bool
    number: int

    def is_universal(self, number: int) -> bool:
        return self.cls == TagClass.UNIVERSAL and self.number == number

    def is_context(self, number: int) -> bool:
        return self.cls == TagClass.CONTEXT and self.number == number

    def __str__(self) -> str:
        if self.cls == TagClass.UNIVERSAL:
            return f"UNIVERSAL {self.number}"
        if self.cls == TagClass.CONTEXT:
            return f"[{self.number}]"
        return f"{self.cls.name} {self.number}"


class Node:
    """
    One decoded TLV. ``offset`` is where the tag starts in the shared buffer,
    ``header_length`` covers tag + length bytes, ``length`` is the content size.
    """

    __slots__ = ("_buf", "tag", "offset", "header_length", "length", "children")

    def __init__(
        self,
        buf: bytes,
        tag: Tag,
        offset: int,
        header_length: int,
        length: int,
        children: Tuple["Node", ...] = (),
    ) -> None:
        self._buf = buf
        self.tag = tag
        self.offset = offset
        self.header_length = header_length
        self.length = length
        self.children = children

    # -- raw views -----------------------------------------------------------

    @property
    def content_offset(self) -> int:
        return self.offset + self.header_length

    @property
    def end(self) -> int:
        return self.content_offset + self.length

    @property
    def content(self) -> bytes:
        return self._buf[self.content_offset : self.end]

    @property
    def encoded(self) -> bytes:
        return self._buf[self.offset : self.end]

    def __len__(self) -> int:
        return len(self.children)

    def __iter__(self):
        return iter(self.children)

    def __getitem__(self, i: int) -> "Node":
        return self.children[i]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Node):
            return NotImplemented
        return self.tag == other.tag and self.encoded == other.encoded

    def __hash__(self) -> int:
        return hash((self.tag, self.encoded))

    def __repr__(self) -> str:
        return f"Node({self.tag}, offset={self.offset}, length={self.length}, children={len(self.children)})"

    # -- typed accessors -----------------------------------------------------

    def expect(self, number: int, what: str = "") -> "Node":
        """Return self if it is the universal type ``number``; raise MALFORMED otherwise."""
        if not self.tag.is_universal(number):
            raise DecodeError(
                DecodeErrorKind.MALFORMED,
                f"expected universal tag {number}{' for ' + what if what else ''}, got {self.tag}",
                offset=self.offset,
            )
        return self

    def as_int(self) -> int:
        if not (self.tag.is_universal(INTEGER) or self.tag.is_universal(ENUMERATED)):
            self.expect(INTEGER)
        return int.from_bytes(self.content, "big", signed=True)

    def as_bool(self) -> bool:
        self.expect(BOOLEAN)
        return self.content == b"\xff"

    def as_octets(self) -> bytes:
        self.expect(OCTET_STRING)
        return self.content

    def as_bit_string(self) -> Tuple[int, bytes]:
        """Return ``(unused_bits, data)``."""
        self.expect(BIT_STRING)
        c = self.content
        return c[0], c[1:]

    def as_bit_string_bytes(self) -> bytes:
        """BIT STRING holding whole octets (keys, signatures)."""
        unused, data = self.as_bit_string()
        if unused != 0:
            raise DecodeError(
                DecodeErrorKind.MALFORMED, "BIT STRING is not octet aligned", offset=self.offset
            )
        return data

    def as_oid(self) -> str:
        self.expect(OBJECT_IDENTIFIER)
        return _oid_to_str(self.content)

    def as_time(self) -> int:
        """UTCTime / GeneralizedTime as integer Unix seconds."""
        if self.tag.is_universal(UTC_TIME) or self.tag.is_universal(GENERALIZED_TIME):
            return _parse_time(self.tag.number, self.content, self.offset)
        raise DecodeError(
            DecodeErrorKind.MALFORMED, f"expected a time value, got {self.tag}", offset=self.offset
        )

    def as_string(self) -> str:
        if self.tag.cls == TagClass.UNIVERSAL and self.tag.number in _STRING_TYPES:
            try:
                return self.content.decode(_STRING_TYPES[self.tag.number])
            except UnicodeDecodeError as e:
                raise DecodeError(
                    DecodeErrorKind.MALFORMED, "invalid string encoding", offset=self.offset, cause=e
                ) from e
        raise DecodeError(
            DecodeErrorKind.MALFORMED, f"expected a string type, got {self.tag}", offset=self.offset
        )

    def to_python(self) -> Any:
        """
        Generic conversion: INTEGER/ENUMERATED → int, BOOLEAN → bool, NULL → None,
        OCTET STRING → bytes, BIT STRING → (unused, bytes), OID → dotted str,
        strings → str, times → int, SEQUENCE/SET → list. Other tags: constructed
        → list of children, primitive → raw content bytes.
        """
        t = self.tag
        if t.cls == TagClass.UNIVERSAL:
            n = t.number
            if n in (INTEGER, ENUMERATED):
                return self.as_int()
            if n == BOOLEAN:
                return self.as_bool()
            if n == NULL:
                return None
            if n == OCTET_STRING:
                return self.content
            if n == BIT_STRING:
                return self.as_bit_string()
            if n == OBJECT_IDENTIFIER:
                return self.as_oid()
            if n in (UTC_TIME, GENERALIZED_TIME):
                return self.as_time()
            if n in _STRING_TYPES:
                return self.as_string()
        if t.constructed:
            return [c.to_python() for c in self.children]
        return self.content


# ─────────────────────────────────────────────────────────────────────────────
# Decoding
# ─────────────────────────────────────────────────────────────────────────────


def decode(
    data: bytes,
    *,
    max_depth: int = DEFAULT_MAX_DEPTH,
    max_size: Optional[int] = None,
) -> Node:
    """Decode exactly one DER value spanning the whole of ``data``."""
    buf = bytes(data)
    if max_size is not None and len(buf) > max_size:
        raise DecodeError(
            DecodeErrorKind.OVERSIZED,
            "input exceeds size ceiling",
            ctx={"size": len(buf), "max_size": int(max_size)},
        )
    if not buf:
        raise DecodeError(DecodeErrorKind.TRUNCATED, "empty input", offset=0)
    node = _decode_one(buf, 0, len(buf), 1, max_depth)
    if node.end != len(buf):
        raise DecodeError(
            DecodeErrorKind.TRAILING_BYTES,
            "trailing bytes after DER value",
            offset=node.end,
            ctx={"trailing": len(buf) - node.end},
        )
    return node


def _decode_one(buf: bytes, pos: int, limit: int, depth: int, max_depth: int) -> Node:
    if depth > max_depth:
        raise DecodeError(
            DecodeErrorKind.DEPTH_EXCEEDED,
            "nesting depth exceeded",
            offset=pos,
            ctx={"max_depth": max_depth},
        )
    start = pos
    tag, pos = _read_tag(buf, pos, limit)
    length, pos = _read_length(buf, pos, limit)
    if length > limit - pos:
        raise DecodeError(
            DecodeErrorKind.TRUNCATED,
            "length exceeds remaining buffer",
            offset=start,
            ctx={"length": length, "remaining": limit - pos},
        )
    header = pos - start
    end = pos + length

    if tag.cls == TagClass.UNIVERSAL:
        _check_universal_form(tag, start)

    children: Tuple[Node, ...] = ()
    if tag.constructed:
        kids: List[Node] = []
        cur = pos
        while cur < end:
            child = _decode_one(buf, cur, end, depth + 1, max_depth)
            kids.append(child)
            cur = child.end
        children = tuple(kids)
    elif tag.cls == TagClass.UNIVERSAL:
        _check_primitive_content(tag.number, buf[pos:end], start)

    return Node(buf, tag, start, header, length, children)


def _read_tag(buf: bytes, pos: int, limit: int) -> Tuple[Tag, int]:
    if pos >= limit:
        raise DecodeError(DecodeErrorKind.TRUNCATED, "missing tag", offset=pos)
    b = buf[pos]
    pos += 1
    cls = TagClass(b >> 6)
    constructed = bool(b & 0x20)
    number = b & 0x1F
    if number == 0x1F:
        number = 0
        first = True
        while True:
            if pos >= limit:
                raise DecodeError(DecodeErrorKind.TRUNCATED, "truncated high tag number", offset=pos)
            c = buf[pos]
            pos += 1
            if first and c == 0x80:
                raise DecodeError(DecodeErrorKind.INVALID_TAG, "non-minimal high tag number", offset=pos - 1)
            first = False
            number = (number << 7) | (c & 0x7F)
            if number > _MAX_TAG_NUMBER:
                raise DecodeError(DecodeErrorKind.INVALID_TAG, "tag number too large", offset=pos - 1)
            if not c & 0x80:
                break
        if number < 0x1F:
            raise DecodeError(
                DecodeErrorKind.INVALID_TAG, "high tag form used for a low tag number", offset=pos - 1
            )
    elif cls == TagClass.UNIVERSAL and number == 0:
        raise DecodeError(DecodeErrorKind.INVALID_TAG, "end-of-contents tag is not DER", offset=pos - 1)
    return Tag(cls, constructed, number), pos


def _read_length(buf: bytes, pos: int, limit: int) -> Tuple[int, int]:
    if pos >= limit:
        raise DecodeError(DecodeErrorKind.TRUNCATED, "missing length", offset=pos)
    b = buf[pos]
    pos += 1
    if b < 0x80:
        return b, pos
    if b == 0x80:
        raise DecodeError(DecodeErrorKind.INDEFINITE_LENGTH, "indefinite length", offset=pos - 1)
    n = b & 0x7F
    if n > 4:
        raise DecodeError(
            DecodeErrorKind.NON_MINIMAL_LENGTH,
            "length field wider than four bytes",
            offset=pos - 1,
            ctx={"length_bytes": n},
        )
    if pos + n > limit:
        raise DecodeError(DecodeErrorKind.TRUNCATED, "truncated length", offset=pos)
    raw = buf[pos : pos + n]
    if raw[0] == 0:
        raise DecodeError(DecodeErrorKind.NON_MINIMAL_LENGTH, "length has leading zero", offset=pos)
    length = int.from_bytes(raw, "big")
    if length < 0x80:
        raise DecodeError(
            DecodeErrorKind.NON_MINIMAL_LENGTH, "long form used for short length", offset=pos
        )
    return length, pos + n


def _check_universal_form(tag: Tag, offset: int) -> None:
    if tag.number in _CONSTRUCTED_UNIVERSAL and not tag.constructed:
        raise DecodeError(DecodeErrorKind.INVALID_TAG, f"{tag} must be constructed", offset=offset)
    if tag.number in _PRIMITIVE_UNIVERSAL and tag.constructed:
        raise DecodeError(DecodeErrorKind.INVALID_TAG, f"{tag} must be primitive", offset=offset)


def _check_primitive_content(number: int, c: bytes, offset: int) -> None:
    if number in (INTEGER, ENUMERATED):
        if not c:
            raise DecodeError(DecodeErrorKind.MALFORMED, "empty INTEGER", offset=offset)
        if len(c) > 1 and (
            (c[0] == 0x00 and not c[1] & 0x80) or (c[0] == 0xFF and c[1] & 0x80)
        ):
            raise DecodeError(DecodeErrorKind.NON_MINIMAL_LENGTH, "non-minimal INTEGER", offset=offset)
    elif number == BOOLEAN:
        if len(c) != 1 or c[0] not in (0x00, 0xFF):
            raise DecodeError(DecodeErrorKind.MALFORMED, "invalid BOOLEAN", offset=offset)
    elif number == NULL:
        if c:
            raise DecodeError(DecodeErrorKind.MALFORMED, "NULL with content", offset=offset)
    elif number == BIT_STRING:
        if not c or c[0] > 7 or (len(c) == 1 and c[0] != 0):
            raise DecodeError(DecodeErrorKind.MALFORMED, "invalid BIT STRING", offset=offset)
        if c[0] and c[-1] & ((1 << c[0]) - 1):
            raise DecodeError(DecodeErrorKind.MALFORMED, "BIT STRING padding not zero", offset=offset)
    elif number == OBJECT_IDENTIFIER:
        _oid_to_str(c, offset)
    elif number in (UTC_TIME, GENERALIZED_TIME):
        _parse_time(number, c, offset)


def _oid_to_str(c: bytes, offset: int = 0) -> str:
    if not c:
        raise DecodeError(DecodeErrorKind.MALFORMED, "empty OBJECT IDENTIFIER", offset=offset)
    arcs: List[int] = []
    value = 0
    fresh = True
    for b in c:
        if fresh and b == 0x80:
            raise DecodeError(DecodeErrorKind.NON_MINIMAL_LENGTH, "non-minimal OID arc", offset=offset)
        value = (value << 7) | (b & 0x7F)
        fresh = not b & 0x80
        if fresh:
            arcs.append(value)
            value = 0
    if not fresh:
        raise DecodeError(DecodeErrorKind.MALFORMED, "truncated OID arc", offset=offset)
    first = arcs[0]
    if first < 40:
        head = [0, first]
    elif first < 80:
        head = [1, first - 40]
    else:
        head = [2, first - 80]
    return ".".join(str(a) for a in head + arcs[1:])


def _parse_time(number: int, c: bytes, offset: int) -> int:
    try:
        s = c.decode("ascii")
    except UnicodeDecodeError as e:
        raise DecodeError(DecodeErrorKind.MALFORMED, "non-ascii time", offset=offset, cause=e) from e
    if number == UTC_TIME:
        if len(s) != 13 or not s.endswith("Z") or not s[:12].isdigit():
            raise DecodeError(DecodeErrorKind.MALFORMED, "invalid UTCTime", offset=offset)
        yy = int(s[0:2])
        year = 2000 + yy if yy < 50 else 1900 + yy
        rest = s[2:12]
    else:
        if len(s) != 15 or not s.endswith("Z") or not s[:14].isdigit():
            raise DecodeError(DecodeErrorKind.MALFORMED, "invalid GeneralizedTime", offset=offset)
        year = int(s[0:4])
        rest = s[4:14]
    try:
        dt = datetime(
            year,
            int(rest[0:2]),
            int(rest[2:4]),
            int(rest[4:6]),
            int(rest[6:8]),
            int(rest[8:10]),
            tzinfo=timezone.utc,
        )
    except ValueError as e:
        raise DecodeError(DecodeErrorKind.MALFORMED, "time out of range", offset=offset, cause=e) from e
    return int(dt.timestamp())


# ─────────────────────────────────────────────────────────────────────────────
# Encoding
# ─────────────────────────────────────────────────────────────────────────────


def encode_length(n: int) -> bytes:
    if n < 0:
        raise ValueError("negative length")
    if n < 0x80:
        return bytes([n])
    raw = n.to_bytes((n.bit_length() + 7) // 8, "big")
    if len(raw) > 4:
        raise ValueError("length too large for DER")
    return bytes([0x80 | len(raw)]) + raw


def encode_tag(cls: TagClass, constructed: bool, number: int) -> bytes:
    lead = (int(cls) << 6) | (0x20 if constructed else 0)
    if number < 0x1F:
        return bytes([lead | number])
    arcs = [number & 0x7F]
    number >>= 7
    while number:
        arcs.append(0x80 | (number & 0x7F))
        number >>= 7
    return bytes([lead | 0x1F]) + bytes(reversed(arcs))


def tlv(cls: TagClass, constructed: bool, number: int, content: bytes) -> bytes:
    return encode_tag(cls, constructed, number) + encode_length(len(content)) + content


def encode(node: Node) -> bytes:
    """Re-emit a decoded node from its tag and content."""
    if node.tag.constructed:
        content = b"".join(encode(c) for c in node.children)
    else:
        content = node.content
    return tlv(node.tag.cls, node.tag.constructed, node.tag.number, content)


def _universal(number: int, content: bytes, constructed: bool = False) -> bytes:
    return tlv(TagClass.UNIVERSAL, constructed, number, content)


def sequence(*items: bytes) -> bytes:
    return _universal(SEQUENCE, b"".join(items), True)


def set_of(*items: bytes) -> bytes:
    """SET OF with DER ordering (encodings sorted)."""
    return _universal(SET, b"".join(sorted(items)), True)


def _int_bytes(n: int) -> bytes:
    size = ((n if n >= 0 else ~n).bit_length() + 8) // 8
    return n.to_bytes(size, "big", signed=True)


def integer(n: int) -> bytes:
    return _universal(INTEGER, _int_bytes(n))


def enumerated(n: int) -> bytes:
    return _universal(ENUMERATED, _int_bytes(n))


def boolean(v: bool) -> bytes:
    return _universal(BOOLEAN, b"\xff" if v else b"\x00")


def null() -> bytes:
    return _universal(NULL, b"")


def octet_string(data: bytes) -> bytes:
    return _universal(OCTET_STRING, bytes(data))


def bit_string(data: bytes, unused_bits: int = 0) -> bytes:
    return _universal(BIT_STRING, bytes([unused_bits]) + bytes(data))


def oid(dotted: str) -> bytes:
    arcs = [int(a) for a in dotted.split(".")]
    if len(arcs) < 2 or arcs[0] > 2 or (arcs[0] < 2 and arcs[1] >= 40):
        raise ValueError(f"invalid OID {dotted!r}")
    body = bytearray()
    for arc in [arcs[0] * 40 + arcs[1]] + arcs[2:]:
        chunk = [arc & 0x7F]
        arc >>= 7
        while arc:
            chunk.append(0x80 | (arc & 0x7F))
            arc >>= 7
        body.extend(reversed(chunk))
    return _universal(OBJECT_IDENTIFIER, bytes(body))


def utf8_string(s: str) -> bytes:
    return _universal(UTF8_STRING, s.encode("utf-8"))


def printable_string(s: str) -> bytes:
    return _universal(PRINTABLE_STRING, s.encode("ascii"))


def utc_time(ts: int) -> bytes:
    dt = datetime.fromtimestamp(ts, tz=timezone.utc)
    if not 1950 <= dt.year < 2050:
        raise ValueError("UTCTime covers 1950..2049")
    return _universal(UTC_TIME, dt.strftime("%y%m%d%H%M%SZ").encode("ascii"))


def generalized_time(ts: int) -> bytes:
    dt = datetime.fromtimestamp(ts, tz=timezone.utc)
    return _universal(GENERALIZED_TIME, f"{dt.year:04d}{dt.strftime('%m%d%H%M%S')}Z".encode("ascii"))


def explicit(number: int, *inner: bytes) -> bytes:
    """Context-specific constructed wrapper ``[number] EXPLICIT``."""
    return tlv(TagClass.CONTEXT, True, number, b"".join(inner))


def implicit(number: int, content: bytes, *, constructed: bool = False) -> bytes:
    """Context-specific ``[number] IMPLICIT`` carrying raw content."""
    return tlv(TagClass.CONTEXT, constructed, number, content)


__all__ = [
    "DEFAULT_MAX_DEPTH",
    "TagClass",
    "Tag",
    "Node",
    "decode",
    "encode",
    "encode_tag",
    "encode_length",
    "tlv",
    "sequence",
    "set_of",
    "integer",
    "enumerated",
    "boolean",
    "null",
    "octet_string",
    "bit_string",
    "oid",
    "utf8_string",
    "printable_string",
    "utc_time",
    "generalized_time",
    "explicit",
    "implicit",
    "BOOLEAN",
    "INTEGER",
    "BIT_STRING",
    "OCTET_STRING",
    "NULL",
    "OBJECT_IDENTIFIER",
    "ENUMERATED",
    "UTF8_STRING",
    "SEQUENCE",
    "SET",
    "PRINTABLE_STRING",
    "IA5_STRING",
    "UTC_TIME",
    "GENERALIZED_TIME",
]
