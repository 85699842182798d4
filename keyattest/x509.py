"""
keyattest.x509
==============

Maps a DER tree to a `ParsedCertificate`.

The to-be-signed bytes are the exact slice of the input covering the
TBSCertificate SEQUENCE; signatures are always verified over that slice.

    Certificate  ::= SEQUENCE { tbsCertificate, signatureAlgorithm, signatureValue }
    TBSCertificate ::= SEQUENCE {
        version         [0] EXPLICIT INTEGER DEFAULT v1,
        serialNumber    INTEGER,
        signature       AlgorithmIdentifier,
        issuer          Name,
        validity        SEQUENCE { notBefore Time, notAfter Time },
        subject         Name,
        subjectPublicKeyInfo,
        issuerUniqueID  [1] IMPLICIT BIT STRING OPTIONAL,
        subjectUniqueID [2] IMPLICIT BIT STRING OPTIONAL,
        extensions      [3] EXPLICIT SEQUENCE OF Extension OPTIONAL }

Unknown extensions, critical or not, are kept; rejecting them is a policy
decision (see keyattest.policy).
"""

from __future__ import annotations

import base64
import hashlib
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from . import der
from .errors import (
    CryptoError,
    CryptoErrorKind,
    DecodeError,
    DecodeErrorKind,
    ExtensionError,
    ExtensionErrorKind,
)
from .keys import AlgorithmIdentifier, PublicKey, SubjectPublicKeyInfo, verify_signature

KEY_ATTESTATION_OID = "1.3.6.1.4.1.11129.2.1.17"
OID_BASIC_CONSTRAINTS = "2.5.29.19"

# Extensions whose semantics the engine understands (for critical-extension policy).
KNOWN_EXTENSIONS = frozenset(
    {
        "2.5.29.14",  # subjectKeyIdentifier
        "2.5.29.15",  # keyUsage
        "2.5.29.17",  # subjectAltName
        OID_BASIC_CONSTRAINTS,
        "2.5.29.30",  # nameConstraints
        "2.5.29.31",  # cRLDistributionPoints
        "2.5.29.32",  # certificatePolicies
        "2.5.29.35",  # authorityKeyIdentifier
        "2.5.29.37",  # extKeyUsage
        KEY_ATTESTATION_OID,
    }
)

_ATTRIBUTE_NAMES = {
    "2.5.4.3": "CN",
    "2.5.4.5": "serialNumber",
    "2.5.4.6": "C",
    "2.5.4.7": "L",
    "2.5.4.8": "ST",
    "2.5.4.10": "O",
    "2.5.4.11": "OU",
    "2.5.4.12": "title",
}


@dataclass(frozen=True)
class Name:
    encoded: bytes
    attributes: Tuple[Tuple[str, str], ...]

    @classmethod
    def from_node(cls, node: der.Node) -> "Name":
        node.expect(der.SEQUENCE, "Name")
        attrs: List[Tuple[str, str]] = []
        for rdn in node:
            rdn.expect(der.SET, "RelativeDistinguishedName")
            for atv in rdn:
                atv.expect(der.SEQUENCE, "AttributeTypeAndValue")
                if len(atv) != 2:
                    raise DecodeError(
                        DecodeErrorKind.MALFORMED, "AttributeTypeAndValue must have 2 elements", offset=atv.offset
                    )
                oid = atv[0].as_oid()
                value = atv[1]
                try:
                    text = value.as_string()
                except DecodeError:
                    text = "#" + value.encoded.hex()
                attrs.append((oid, text))
        return cls(node.encoded, tuple(attrs))

    def get(self, oid: str) -> Optional[str]:
        for k, v in self.attributes:
            if k == oid:
                return v
        return None

    def __str__(self) -> str:
        return ", ".join(f"{_ATTRIBUTE_NAMES.get(k, k)}={v}" for k, v in self.attributes)


@dataclass(frozen=True)
class Extension:
    oid: str
    critical: bool
    value: bytes


@dataclass(frozen=True)
class ParsedCertificate:
    version: int
    serial_number: int
    serial_bytes: bytes
    tbs_signature_algorithm: AlgorithmIdentifier
    issuer: Name
    not_before: int
    not_after: int
    subject: Name
    spki: SubjectPublicKeyInfo
    extensions: Tuple[Extension, ...]
    tbs_bytes: bytes
    signature_algorithm: AlgorithmIdentifier
    signature: bytes
    raw: bytes

    @property
    def fingerprint(self) -> bytes:
        return hashlib.sha256(self.raw).digest()

    @property
    def certificate_id(self) -> Tuple[bytes, bytes]:
        """(issuer DER, serial number content bytes); unique per issuing CA."""
        return self.issuer.encoded, self.serial_bytes

    @property
    def is_self_issued(self) -> bool:
        return self.issuer.encoded == self.subject.encoded

    def extension(self, oid: str) -> Optional[Extension]:
        for ext in self.extensions:
            if ext.oid == oid:
                return ext
        return None

    @property
    def attestation_extension(self) -> Optional[Extension]:
        return self.extension(KEY_ATTESTATION_OID)

    def basic_constraints(self) -> Optional[Tuple[bool, Optional[int]]]:
        """(cA, pathLenConstraint) or None when the extension is absent."""
        ext = self.extension(OID_BASIC_CONSTRAINTS)
        if ext is None:
            return None
        node = der.decode(ext.value).expect(der.SEQUENCE, "BasicConstraints")
        ca = False
        path_len: Optional[int] = None
        rest = list(node)
        if rest and rest[0].tag.is_universal(der.BOOLEAN):
            ca = rest.pop(0).as_bool()
        if rest and rest[0].tag.is_universal(der.INTEGER):
            path_len = rest.pop(0).as_int()
        if rest:
            raise DecodeError(DecodeErrorKind.MALFORMED, "unexpected BasicConstraints content")
        return ca, path_len

    @property
    def is_ca(self) -> bool:
        bc = self.basic_constraints()
        return bool(bc and bc[0])

    def unknown_critical_extensions(self) -> Tuple[str, ...]:
        return tuple(e.oid for e in self.extensions if e.critical and e.oid not in KNOWN_EXTENSIONS)


def parse_certificate(
    data: bytes,
    *,
    max_depth: int = der.DEFAULT_MAX_DEPTH,
    max_size: Optional[int] = None,
) -> ParsedCertificate:
    root = der.decode(data, max_depth=max_depth, max_size=max_size)
    root.expect(der.SEQUENCE, "Certificate")
    if len(root) != 3:
        raise DecodeError(DecodeErrorKind.MALFORMED, "Certificate must have 3 elements", offset=root.offset)
    tbs, sig_alg_node, sig_node = root.children
    tbs.expect(der.SEQUENCE, "TBSCertificate")
    signature_algorithm = AlgorithmIdentifier.from_node(sig_alg_node)
    signature = sig_node.as_bit_string_bytes()

    fields = list(tbs.children)
    pos = 0

    def take(what: str) -> der.Node:
        nonlocal pos
        if pos >= len(fields):
            raise DecodeError(DecodeErrorKind.MALFORMED, f"TBSCertificate missing {what}", offset=tbs.offset)
        node = fields[pos]
        pos += 1
        return node

    version = 1
    if fields and fields[0].tag.is_context(0) and fields[0].tag.constructed:
        wrapper = take("version")
        if len(wrapper) != 1:
            raise DecodeError(DecodeErrorKind.MALFORMED, "bad version wrapper", offset=wrapper.offset)
        v = wrapper[0].expect(der.INTEGER, "version").as_int()
        if v not in (1, 2):  # DER omits the v1 default
            raise DecodeError(DecodeErrorKind.MALFORMED, "unsupported certificate version", ctx={"version": v})
        version = v + 1

    serial_node = take("serialNumber").expect(der.INTEGER, "serialNumber")
    tbs_sig_alg = AlgorithmIdentifier.from_node(take("signature"))
    issuer = Name.from_node(take("issuer"))

    validity = take("validity").expect(der.SEQUENCE, "Validity")
    if len(validity) != 2:
        raise DecodeError(DecodeErrorKind.MALFORMED, "Validity must have 2 elements", offset=validity.offset)
    not_before = validity[0].as_time()
    not_after = validity[1].as_time()

    subject = Name.from_node(take("subject"))
    spki = SubjectPublicKeyInfo.from_node(take("subjectPublicKeyInfo"))

    extensions: Tuple[Extension, ...] = ()
    for tag_number in (1, 2, 3):
        if pos < len(fields) and fields[pos].tag.is_context(tag_number):
            node = take(f"[{tag_number}]")
            if tag_number == 3:
                if version != 3:
                    raise DecodeError(
                        DecodeErrorKind.MALFORMED, "extensions require a v3 certificate", offset=node.offset
                    )
                extensions = _parse_extensions(node)
    if pos != len(fields):
        raise DecodeError(
            DecodeErrorKind.MALFORMED, "unexpected trailing TBSCertificate fields", offset=fields[pos].offset
        )

    return ParsedCertificate(
        version=version,
        serial_number=serial_node.as_int(),
        serial_bytes=serial_node.content,
        tbs_signature_algorithm=tbs_sig_alg,
        issuer=issuer,
        not_before=not_before,
        not_after=not_after,
        subject=subject,
        spki=spki,
        extensions=extensions,
        tbs_bytes=tbs.encoded,
        signature_algorithm=signature_algorithm,
        signature=signature,
        raw=root.encoded,
    )


def _parse_extensions(wrapper: der.Node) -> Tuple[Extension, ...]:
    if not wrapper.tag.constructed or len(wrapper) != 1:
        raise DecodeError(DecodeErrorKind.MALFORMED, "bad extensions wrapper", offset=wrapper.offset)
    seq = wrapper[0].expect(der.SEQUENCE, "Extensions")
    out: List[Extension] = []
    seen = set()
    for ext in seq:
        ext.expect(der.SEQUENCE, "Extension")
        parts = list(ext)
        if len(parts) not in (2, 3):
            raise DecodeError(DecodeErrorKind.MALFORMED, "Extension must have 2 or 3 elements", offset=ext.offset)
        oid = parts[0].as_oid()
        critical = parts[1].as_bool() if len(parts) == 3 else False
        value = parts[-1].as_octets()
        if oid in seen:
            raise DecodeError(
                DecodeErrorKind.MALFORMED, "duplicate extension", offset=ext.offset, ctx={"oid": oid}
            )
        seen.add(oid)
        out.append(Extension(oid, critical, value))
    return tuple(out)


def verify_signed_by(cert: ParsedCertificate, issuer_key: PublicKey) -> None:
    """
    Check ``cert``'s signature with ``issuer_key`` over the captured TBS bytes.
    The outer and inner signature AlgorithmIdentifiers must be identical.
    """
    if cert.signature_algorithm.encoded != cert.tbs_signature_algorithm.encoded:
        raise CryptoError(
            CryptoErrorKind.INVALID_SIGNATURE,
            "outer signature algorithm differs from TBSCertificate.signature",
            ctx={
                "outer": cert.signature_algorithm.oid,
                "inner": cert.tbs_signature_algorithm.oid,
            },
        )
    verify_signature(issuer_key, cert.tbs_bytes, cert.signature, cert.signature_algorithm.oid)


def require_attestation_extension(cert: ParsedCertificate) -> Extension:
    ext = cert.attestation_extension
    if ext is None:
        raise ExtensionError(
            ExtensionErrorKind.MISSING_MANDATORY_FIELD,
            "leaf certificate carries no key attestation extension",
            field_name="keyAttestationExtension",
        )
    return ext


# ─────────────────────────────────────────────────────────────────────────────
# PEM helpers
# ─────────────────────────────────────────────────────────────────────────────

_PEM_RE = re.compile(
    r"-----BEGIN CERTIFICATE-----\s*(?P<body>[A-Za-z0-9+/=\s]+?)\s*-----END CERTIFICATE-----"
)


def pem_to_der(text: str) -> List[bytes]:
    """All CERTIFICATE blocks of a PEM bundle, in order, as DER bytes."""
    out: List[bytes] = []
    for m in _PEM_RE.finditer(text):
        body = "".join(m.group("body").split())
        try:
            out.append(base64.b64decode(body, validate=True))
        except ValueError as e:
            raise DecodeError(DecodeErrorKind.MALFORMED, "invalid base64 in PEM block", cause=e) from e
    return out


def der_to_pem(certs: Iterable[bytes]) -> str:
    blocks = []
    for raw in certs:
        b64 = base64.b64encode(raw).decode("ascii")
        lines = [b64[i : i + 64] for i in range(0, len(b64), 64)]
        blocks.append("-----BEGIN CERTIFICATE-----\n" + "\n".join(lines) + "\n-----END CERTIFICATE-----\n")
    return "".join(blocks)


__all__ = [
    "KEY_ATTESTATION_OID",
    "OID_BASIC_CONSTRAINTS",
    "KNOWN_EXTENSIONS",
    "Name",
    "Extension",
    "ParsedCertificate",
    "parse_certificate",
    "verify_signed_by",
    "require_attestation_extension",
    "pem_to_der",
    "der_to_pem",
]
