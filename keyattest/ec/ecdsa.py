"""
ECDSA verification (FIPS 186-4 §6.4) over the curves in keyattest.ec.

The message digest is chosen by the caller (certificate signature algorithm)
and defaults to the curve's paired hash. Digests longer than the group order
are truncated to its bit length.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass

from .. import der
from ..errors import CryptoError, CryptoErrorKind, DecodeError
from .weierstrass import Curve, JacobianPoint

SUPPORTED_HASHES = ("sha256", "sha384", "sha512")


@dataclass(frozen=True)
class EcdsaSignature:
    r: int
    s: int

    @classmethod
    def from_der(cls, data: bytes) -> "EcdsaSignature":
        """Parse ``Ecdsa-Sig-Value ::= SEQUENCE { r INTEGER, s INTEGER }`` (strict DER)."""
        try:
            node = der.decode(data, max_depth=2)
            node.expect(der.SEQUENCE, "Ecdsa-Sig-Value")
            if len(node) != 2:
                raise CryptoError(CryptoErrorKind.INVALID_SIGNATURE, "signature must hold exactly r and s")
            r = node[0].expect(der.INTEGER, "r").as_int()
            s = node[1].expect(der.INTEGER, "s").as_int()
        except DecodeError as e:
            raise CryptoError(CryptoErrorKind.INVALID_SIGNATURE, "malformed signature encoding", cause=e) from e
        if r <= 0 or s <= 0:
            raise CryptoError(CryptoErrorKind.SCALAR_OUT_OF_RANGE, "signature scalar not positive")
        return cls(r, s)

    def to_der(self) -> bytes:
        return der.sequence(der.integer(self.r), der.integer(self.s))


def digest(message: bytes, hash_name: str) -> bytes:
    if hash_name not in SUPPORTED_HASHES:
        raise CryptoError(
            CryptoErrorKind.UNSUPPORTED_ALGORITHM, "unsupported hash", ctx={"hash": hash_name}
        )
    return hashlib.new(hash_name, message).digest()


def digest_to_scalar(curve: Curve, h: bytes) -> int:
    """Leftmost min(bitlen(n), 8·len(h)) bits of the digest, as an integer."""
    e = int.from_bytes(h, "big")
    excess = len(h) * 8 - curve.n.bit_length()
    if excess > 0:
        e >>= excess
    return e


def verify_digest(curve: Curve, q: JacobianPoint, h: bytes, sig: EcdsaSignature) -> None:
    """Raise CryptoError unless ``sig`` is valid for digest ``h`` under public point ``q``."""
    n = curve.n
    if not (1 <= sig.r < n and 1 <= sig.s < n):
        raise CryptoError(
            CryptoErrorKind.SCALAR_OUT_OF_RANGE, "r or s outside [1, n-1]", ctx={"curve": curve.name}
        )
    S = curve.scalar
    w = S(sig.s).inv()
    u1 = S(digest_to_scalar(curve, h)) * w
    u2 = S(sig.r) * w
    point = curve.generator().multiply(int(u1)).add(q.multiply(int(u2)))
    affine = point.to_affine()
    if affine is None or affine[0] % n != sig.r:
        raise CryptoError(CryptoErrorKind.INVALID_SIGNATURE, "ECDSA signature mismatch", ctx={"curve": curve.name})


__all__ = ["EcdsaSignature", "SUPPORTED_HASHES", "digest", "digest_to_scalar", "verify_digest"]
