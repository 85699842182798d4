"""
Short-Weierstrass curves y² = x³ − 3x + b over a prime field.

Points are kept in Jacobian coordinates (X, Y, Z) representing the affine
point (X/Z², Y/Z³); Z = 0 is the point at infinity. Formulas:

  doubling  dbl-2001-b (a = −3)
  addition  add-2007-bl, with explicit handling of P = ±Q and infinity

Scalar multiplication is a Montgomery ladder over the full bit length of the
group order, so every scalar runs the same add/double sequence per bit.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple, Type

from ..errors import CryptoError, CryptoErrorKind
from ..field import FieldElement


@dataclass(frozen=True)
class Curve:
    name: str
    oid: str
    field: Type[FieldElement]
    scalar: Type[FieldElement]
    b: int
    gx: int
    gy: int
    hash_name: str

    @property
    def p(self) -> int:
        return self.field.P

    @property
    def n(self) -> int:
        return self.scalar.P

    @property
    def byte_len(self) -> int:
        return self.field.BYTE_LEN

    def is_on_curve(self, x: int, y: int) -> bool:
        F = self.field
        fx, fy = F(x), F(y)
        return fy.square() == fx * fx.square() - 3 * fx + self.b

    def generator(self) -> "JacobianPoint":
        return JacobianPoint.from_affine(self, self.gx, self.gy)

    def infinity(self) -> "JacobianPoint":
        F = self.field
        return JacobianPoint(self, F(1), F(1), F(0))

    def lift_x(self, x: int, odd: bool) -> Tuple[int, int]:
        """Recover y from x and its parity (SEC1 compressed form)."""
        F = self.field
        fx = F(x)
        y = (fx * fx.square() - 3 * fx + self.b).sqrt()
        if y is None:
            raise CryptoError(
                CryptoErrorKind.POINT_NOT_ON_CURVE,
                "compressed x has no square root",
                ctx={"curve": self.name},
            )
        if y.is_odd != odd:
            y = -y
        return x, int(y)


@dataclass(frozen=True)
class JacobianPoint:
    curve: Curve
    x: FieldElement
    y: FieldElement
    z: FieldElement

    @classmethod
    def from_affine(cls, curve: Curve, x: int, y: int) -> "JacobianPoint":
        F = curve.field
        return cls(curve, F(x), F(y), F(1))

    @property
    def is_infinity(self) -> bool:
        return not self.z

    def to_affine(self) -> Optional[Tuple[int, int]]:
        if self.is_infinity:
            return None
        zinv = self.z.inv()
        zinv2 = zinv.square()
        return int(self.x * zinv2), int(self.y * zinv2 * zinv)

    def double(self) -> "JacobianPoint":
        if self.is_infinity or not self.y:
            return self.curve.infinity()
        x1, y1, z1 = self.x, self.y, self.z
        delta = z1.square()
        gamma = y1.square()
        beta = x1 * gamma
        alpha = 3 * (x1 - delta) * (x1 + delta)
        x3 = alpha.square() - 8 * beta
        z3 = (y1 + z1).square() - gamma - delta
        y3 = alpha * (4 * beta - x3) - 8 * gamma.square()
        return JacobianPoint(self.curve, x3, y3, z3)

    def add(self, other: "JacobianPoint") -> "JacobianPoint":
        if self.is_infinity:
            return other
        if other.is_infinity:
            return self
        x1, y1, z1 = self.x, self.y, self.z
        x2, y2, z2 = other.x, other.y, other.z
        z1z1 = z1.square()
        z2z2 = z2.square()
        u1 = x1 * z2z2
        u2 = x2 * z1z1
        s1 = y1 * z2 * z2z2
        s2 = y2 * z1 * z1z1
        h = u2 - u1
        r = 2 * (s2 - s1)
        if not h:
            if not r:
                return self.double()
            return self.curve.infinity()
        i = (2 * h).square()
        j = h * i
        v = u1 * i
        x3 = r.square() - j - 2 * v
        y3 = r * (v - x3) - 2 * s1 * j
        z3 = ((z1 + z2).square() - z1z1 - z2z2) * h
        return JacobianPoint(self.curve, x3, y3, z3)

    __add__ = add

    def multiply(self, k: int) -> "JacobianPoint":
        """Montgomery ladder; ``k`` is taken modulo the group order."""
        k %= self.curve.n
        r0 = self.curve.infinity()
        r1 = self
        for i in reversed(range(self.curve.n.bit_length())):
            if (k >> i) & 1:
                r0 = r0.add(r1)
                r1 = r1.double()
            else:
                r1 = r0.add(r1)
                r0 = r0.double()
        return r0

    def __rmul__(self, k: int) -> "JacobianPoint":
        return self.multiply(k)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, JacobianPoint) or other.curve is not self.curve:
            return NotImplemented
        return self.to_affine() == other.to_affine()

    def __hash__(self) -> int:
        return hash((self.curve.name, self.to_affine()))


def decode_sec1(curve: Curve, data: bytes) -> Tuple[int, int]:
    """
    Decode an uncompressed (04||X||Y) or compressed (02/03||X) SEC1 point and
    validate it: coordinates in range, on the curve, not infinity.
    """
    size = curve.byte_len
    if not data:
        raise CryptoError(CryptoErrorKind.INVALID_KEY, "empty point encoding", ctx={"curve": curve.name})
    prefix = data[0]
    if prefix == 0x04 and len(data) == 1 + 2 * size:
        x = int.from_bytes(data[1 : 1 + size], "big")
        y = int.from_bytes(data[1 + size :], "big")
    elif prefix in (0x02, 0x03) and len(data) == 1 + size:
        x = int.from_bytes(data[1:], "big")
        if x >= curve.p:
            raise CryptoError(
                CryptoErrorKind.POINT_NOT_ON_CURVE, "x coordinate out of range", ctx={"curve": curve.name}
            )
        x, y = curve.lift_x(x, prefix == 0x03)
    elif prefix == 0x00:
        raise CryptoError(CryptoErrorKind.INVALID_KEY, "point at infinity", ctx={"curve": curve.name})
    else:
        raise CryptoError(
            CryptoErrorKind.INVALID_KEY,
            "unsupported point encoding",
            ctx={"curve": curve.name, "prefix": prefix, "length": len(data)},
        )
    validate_point(curve, x, y)
    return x, y


def validate_point(curve: Curve, x: int, y: int) -> None:
    if not (0 <= x < curve.p and 0 <= y < curve.p):
        raise CryptoError(
            CryptoErrorKind.POINT_NOT_ON_CURVE, "coordinate out of field range", ctx={"curve": curve.name}
        )
    if not curve.is_on_curve(x, y):
        raise CryptoError(CryptoErrorKind.POINT_NOT_ON_CURVE, "point not on curve", ctx={"curve": curve.name})


def encode_sec1(curve: Curve, x: int, y: int, *, compressed: bool = False) -> bytes:
    size = curve.byte_len
    if compressed:
        return bytes([0x03 if y & 1 else 0x02]) + x.to_bytes(size, "big")
    return b"\x04" + x.to_bytes(size, "big") + y.to_bytes(size, "big")


__all__ = ["Curve", "JacobianPoint", "decode_sec1", "encode_sec1", "validate_point"]
