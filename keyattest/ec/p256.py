"""
NIST P-256 (secp256r1 / prime256v1), paired with SHA-256.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from ..field import FieldElement
from .ecdsa import EcdsaSignature, digest, verify_digest
from .weierstrass import Curve, JacobianPoint, decode_sec1, encode_sec1, validate_point

OID = "1.2.840.10045.3.1.7"


class P256Field(FieldElement):
    P = 0xFFFFFFFF00000001000000000000000000000000FFFFFFFFFFFFFFFFFFFFFFFF


class P256Scalar(FieldElement):
    P = 0xFFFFFFFF00000000FFFFFFFFFFFFFFFFBCE6FAADA7179E84F3B9CAC2FC632551


CURVE = Curve(
    name="P-256",
    oid=OID,
    field=P256Field,
    scalar=P256Scalar,
    b=0x5AC635D8AA3A93E7B3EBBD55769886BC651D06B0CC53B0F63BCE3C3E27D2604B,
    gx=0x6B17D1F2E12C4247F8BCE6E563A440F277037D812DEB33A0F4A13945D898C296,
    gy=0x4FE342E2FE1A7F9B8EE7EB4A7C0F9E162BCE33576B315ECECBB6406837BF51F5,
    hash_name="sha256",
)


@dataclass(frozen=True)
class P256PublicKey:
    """Validated affine point on P-256. Build with `from_sec1` / `from_coordinates`."""

    x: int
    y: int

    curve = CURVE

    @classmethod
    def from_sec1(cls, data: bytes) -> "P256PublicKey":
        x, y = decode_sec1(CURVE, data)
        return cls(x, y)

    @classmethod
    def from_coordinates(cls, x: int, y: int) -> "P256PublicKey":
        validate_point(CURVE, x, y)
        return cls(x, y)

    def to_sec1(self, *, compressed: bool = False) -> bytes:
        return encode_sec1(CURVE, self.x, self.y, compressed=compressed)

    def point(self) -> JacobianPoint:
        return JacobianPoint.from_affine(CURVE, self.x, self.y)

    def verify(
        self,
        message: bytes,
        signature: Union[bytes, EcdsaSignature],
        hash_name: Optional[str] = None,
    ) -> None:
        """Raise CryptoError unless ``signature`` (DER or parsed) is valid over ``message``."""
        sig = signature if isinstance(signature, EcdsaSignature) else EcdsaSignature.from_der(signature)
        self.verify_prehashed(digest(message, hash_name or CURVE.hash_name), sig)

    def verify_prehashed(self, h: bytes, sig: EcdsaSignature) -> None:
        verify_digest(CURVE, self.point(), h, sig)


__all__ = ["OID", "CURVE", "P256Field", "P256Scalar", "P256PublicKey"]
