"""
NIST P-384 (secp384r1), paired with SHA-384.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from ..field import FieldElement
from .ecdsa import EcdsaSignature, digest, verify_digest
from .weierstrass import Curve, JacobianPoint, decode_sec1, encode_sec1, validate_point

OID = "1.3.132.0.34"


class P384Field(FieldElement):
    P = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEFFFFFFFF0000000000000000FFFFFFFF


class P384Scalar(FieldElement):
    P = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFC7634D81F4372DDF581A0DB248B0A77AECEC196ACCC52973


CURVE = Curve(
    name="P-384",
    oid=OID,
    field=P384Field,
    scalar=P384Scalar,
    b=0xB3312FA7E23EE7E4988E056BE3F82D19181D9C6EFE8141120314088F5013875AC656398D8A2ED19D2A85C8EDD3EC2AEF,
    gx=0xAA87CA22BE8B05378EB1C71EF320AD746E1D3B628BA79B9859F741E082542A385502F25DBF55296C3A545E3872760AB7,
    gy=0x3617DE4A96262C6F5D9E98BF9292DC29F8F41DBD289A147CE9DA3113B5F0B8C00A60B1CE1D7E819D7A431D7C90EA0E5F,
    hash_name="sha384",
)


@dataclass(frozen=True)
class P384PublicKey:
    """Validated affine point on P-384. Build with `from_sec1` / `from_coordinates`."""

    x: int
    y: int

    curve = CURVE

    @classmethod
    def from_sec1(cls, data: bytes) -> "P384PublicKey":
        x, y = decode_sec1(CURVE, data)
        return cls(x, y)

    @classmethod
    def from_coordinates(cls, x: int, y: int) -> "P384PublicKey":
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


__all__ = ["OID", "CURVE", "P384Field", "P384Scalar", "P384PublicKey"]
