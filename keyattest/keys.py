"""
Public keys as a closed union, built from SubjectPublicKeyInfo.

    PublicKey = P256PublicKey | P384PublicKey | RSAPublicKey

Every variant is validated on construction (EC points on-curve and finite,
RSA moduli of at least 2048 bits), so holders of a PublicKey never do
arithmetic on unchecked data. `verify_signature` matches explicitly on the
variant and on the signature algorithm OID.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Union

from . import der
from .ec.p256 import OID as P256_OID
from .ec.p256 import P256PublicKey
from .ec.p384 import OID as P384_OID
from .ec.p384 import P384PublicKey
from .errors import CryptoError, CryptoErrorKind, DecodeError, DecodeErrorKind
from .rsa import RSAPublicKey

PublicKey = Union[P256PublicKey, P384PublicKey, RSAPublicKey]

OID_EC_PUBLIC_KEY = "1.2.840.10045.2.1"
OID_RSA_ENCRYPTION = "1.2.840.113549.1.1.1"

# signature algorithm OID -> (family, hash)
SIGNATURE_ALGORITHMS: Dict[str, Tuple[str, str]] = {
    "1.2.840.10045.4.3.2": ("ecdsa", "sha256"),
    "1.2.840.10045.4.3.3": ("ecdsa", "sha384"),
    "1.2.840.10045.4.3.4": ("ecdsa", "sha512"),
    "1.2.840.113549.1.1.11": ("rsa", "sha256"),
    "1.2.840.113549.1.1.12": ("rsa", "sha384"),
    "1.2.840.113549.1.1.13": ("rsa", "sha512"),
}


@dataclass(frozen=True)
class AlgorithmIdentifier:
    """``AlgorithmIdentifier ::= SEQUENCE { algorithm OID, parameters ANY OPTIONAL }``"""

    oid: str
    parameters: Optional[bytes]  # exact DER of the parameters, if present
    encoded: bytes

    @classmethod
    def from_node(cls, node: der.Node) -> "AlgorithmIdentifier":
        node.expect(der.SEQUENCE, "AlgorithmIdentifier")
        if not 1 <= len(node) <= 2:
            raise DecodeError(
                DecodeErrorKind.MALFORMED, "AlgorithmIdentifier must have 1 or 2 elements", offset=node.offset
            )
        oid = node[0].as_oid()
        params = node[1].encoded if len(node) == 2 else None
        return cls(oid, params, node.encoded)

    @property
    def parameter_oid(self) -> Optional[str]:
        if self.parameters is None:
            return None
        p = der.decode(self.parameters)
        if p.tag.is_universal(der.OBJECT_IDENTIFIER):
            return p.as_oid()
        return None


@dataclass(frozen=True)
class SubjectPublicKeyInfo:
    algorithm: AlgorithmIdentifier
    key_bytes: bytes
    encoded: bytes

    @classmethod
    def from_node(cls, node: der.Node) -> "SubjectPublicKeyInfo":
        node.expect(der.SEQUENCE, "SubjectPublicKeyInfo")
        if len(node) != 2:
            raise DecodeError(
                DecodeErrorKind.MALFORMED, "SubjectPublicKeyInfo must have 2 elements", offset=node.offset
            )
        alg = AlgorithmIdentifier.from_node(node[0])
        key_bytes = node[1].as_bit_string_bytes()
        return cls(alg, key_bytes, node.encoded)

    @classmethod
    def from_der(cls, data: bytes) -> "SubjectPublicKeyInfo":
        return cls.from_node(der.decode(data))

    @property
    def fingerprint(self) -> bytes:
        """SHA-256 over the whole DER SubjectPublicKeyInfo."""
        return hashlib.sha256(self.encoded).digest()


def public_key_from_spki(spki: SubjectPublicKeyInfo) -> PublicKey:
    """Build a validated PublicKey. Raises CryptoError for unsupported or invalid keys."""
    alg = spki.algorithm
    if alg.oid == OID_EC_PUBLIC_KEY:
        try:
            curve = alg.parameter_oid
        except DecodeError as e:
            raise CryptoError(CryptoErrorKind.INVALID_KEY, "bad EC parameters", cause=e) from e
        if curve == P256_OID:
            return P256PublicKey.from_sec1(spki.key_bytes)
        if curve == P384_OID:
            return P384PublicKey.from_sec1(spki.key_bytes)
        raise CryptoError(
            CryptoErrorKind.UNSUPPORTED_ALGORITHM, "unsupported named curve", ctx={"curve": curve}
        )
    if alg.oid == OID_RSA_ENCRYPTION:
        try:
            node = der.decode(spki.key_bytes, max_depth=2)
            node.expect(der.SEQUENCE, "RSAPublicKey")
            if len(node) != 2:
                raise DecodeError(DecodeErrorKind.MALFORMED, "RSAPublicKey must have 2 elements")
            n = node[0].expect(der.INTEGER, "modulus").as_int()
            e = node[1].expect(der.INTEGER, "publicExponent").as_int()
        except DecodeError as err:
            raise CryptoError(CryptoErrorKind.INVALID_KEY, "malformed RSA public key", cause=err) from err
        return RSAPublicKey.from_numbers(n, e)
    raise CryptoError(
        CryptoErrorKind.UNSUPPORTED_ALGORITHM, "unsupported public key algorithm", ctx={"algorithm": alg.oid}
    )


def verify_signature(key: PublicKey, message: bytes, signature: bytes, algorithm_oid: str) -> None:
    """Raise CryptoError unless ``signature`` over ``message`` verifies under ``key``."""
    entry = SIGNATURE_ALGORITHMS.get(algorithm_oid)
    if entry is None:
        raise CryptoError(
            CryptoErrorKind.UNSUPPORTED_ALGORITHM,
            "unsupported signature algorithm",
            ctx={"algorithm": algorithm_oid},
        )
    family, hash_name = entry
    if family == "ecdsa" and isinstance(key, (P256PublicKey, P384PublicKey)):
        key.verify(message, signature, hash_name)
        return
    if family == "rsa" and isinstance(key, RSAPublicKey):
        key.verify(message, signature, hash_name)
        return
    raise CryptoError(
        CryptoErrorKind.UNSUPPORTED_ALGORITHM,
        "signature algorithm does not match key type",
        ctx={"algorithm": algorithm_oid, "key": type(key).__name__},
    )


def key_name(key: PublicKey) -> str:
    if isinstance(key, P256PublicKey):
        return "P-256"
    if isinstance(key, P384PublicKey):
        return "P-384"
    return f"RSA-{key.n.bit_length()}"


__all__ = [
    "PublicKey",
    "AlgorithmIdentifier",
    "SubjectPublicKeyInfo",
    "SIGNATURE_ALGORITHMS",
    "OID_EC_PUBLIC_KEY",
    "OID_RSA_ENCRYPTION",
    "public_key_from_spki",
    "verify_signature",
    "key_name",
]
