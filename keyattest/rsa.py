"""
RSA PKCS#1 v1.5 signature verification (RFC 8017 §8.2.2).

Vendor attestation roots are RSA-4096 and sign their first intermediate with
sha256WithRSAEncryption, so chain validation needs RSA alongside the curves.
The check rebuilds the full expected encoded message

    EM = 0x00 || 0x01 || 0xFF… || 0x00 || DigestInfo(hash, H(m))

and compares it against s^e mod n, which rejects every malleable variant of
the padding or of the DigestInfo encoding.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass

from .errors import CryptoError, CryptoErrorKind

MIN_MODULUS_BITS = 2048

# DER prefix of DigestInfo ::= SEQUENCE { AlgorithmIdentifier, OCTET STRING }
_DIGEST_INFO_PREFIX = {
    "sha256": bytes.fromhex("3031300d060960864801650304020105000420"),
    "sha384": bytes.fromhex("3041300d060960864801650304020205000430"),
    "sha512": bytes.fromhex("3051300d060960864801650304020305000440"),
}


@dataclass(frozen=True)
class RSAPublicKey:
    n: int
    e: int

    @classmethod
    def from_numbers(cls, n: int, e: int) -> "RSAPublicKey":
        if n.bit_length() < MIN_MODULUS_BITS:
            raise CryptoError(
                CryptoErrorKind.INVALID_KEY,
                "RSA modulus too small",
                ctx={"bits": n.bit_length(), "min_bits": MIN_MODULUS_BITS},
            )
        if n % 2 == 0:
            raise CryptoError(CryptoErrorKind.INVALID_KEY, "RSA modulus is even")
        if e < 3 or e % 2 == 0 or e >= n:
            raise CryptoError(CryptoErrorKind.INVALID_KEY, "invalid RSA public exponent", ctx={"e": e})
        return cls(n, e)

    @property
    def size_bytes(self) -> int:
        return (self.n.bit_length() + 7) // 8

    def verify(self, message: bytes, signature: bytes, hash_name: str = "sha256") -> None:
        """Raise CryptoError unless ``signature`` is a valid PKCS#1 v1.5 signature."""
        prefix = _DIGEST_INFO_PREFIX.get(hash_name)
        if prefix is None:
            raise CryptoError(
                CryptoErrorKind.UNSUPPORTED_ALGORITHM, "unsupported RSA hash", ctx={"hash": hash_name}
            )
        k = self.size_bytes
        if len(signature) != k:
            raise CryptoError(
                CryptoErrorKind.INVALID_SIGNATURE,
                "signature length does not match modulus",
                ctx={"expected": k, "got": len(signature)},
            )
        s = int.from_bytes(signature, "big")
        if s >= self.n:
            raise CryptoError(CryptoErrorKind.SCALAR_OUT_OF_RANGE, "signature representative out of range")
        em = pow(s, self.e, self.n).to_bytes(k, "big")

        t = prefix + hashlib.new(hash_name, message).digest()
        if k < len(t) + 11:
            raise CryptoError(CryptoErrorKind.INVALID_KEY, "RSA modulus too short for digest")
        expected = b"\x00\x01" + b"\xff" * (k - len(t) - 3) + b"\x00" + t
        if not hmac.compare_digest(em, expected):
            raise CryptoError(CryptoErrorKind.INVALID_SIGNATURE, "RSA signature mismatch")


__all__ = ["RSAPublicKey", "MIN_MODULUS_BITS"]
