from __future__ import annotations

from typing import List, Optional

import pytest
from cryptography import x509 as cx509

from keyattest import der
from keyattest.ec import P256PublicKey
from keyattest.errors import CryptoError, CryptoErrorKind, DecodeError, DecodeErrorKind, ExtensionError
from keyattest.keys import OID_EC_PUBLIC_KEY, SubjectPublicKeyInfo, key_name, public_key_from_spki
from keyattest.rsa import RSAPublicKey
from keyattest.x509 import (
    KEY_ATTESTATION_OID,
    der_to_pem,
    parse_certificate,
    pem_to_der,
    require_attestation_extension,
    verify_signed_by,
)

from .builders import NOT_AFTER, NOT_BEFORE, issue, p256_key, rsa_key

ECDSA_SHA256 = "1.2.840.10045.4.3.2"


def _handmade(extensions: Optional[List[bytes]] = None, *, version: Optional[int] = 2) -> bytes:
    """Structurally valid certificate with a placeholder signature."""
    alg = der.sequence(der.oid(ECDSA_SHA256))
    name = der.sequence(der.set_of(der.sequence(der.oid("2.5.4.3"), der.utf8_string("hand made"))))
    nums = p256_key().public_key().public_numbers()
    point = P256PublicKey.from_coordinates(nums.x, nums.y).to_sec1()
    spki = der.sequence(
        der.sequence(der.oid(OID_EC_PUBLIC_KEY), der.oid("1.2.840.10045.3.1.7")), der.bit_string(point)
    )
    fields = []
    if version is not None:
        fields.append(der.explicit(0, der.integer(version)))
    fields += [der.integer(42), alg, name, der.sequence(der.utc_time(NOT_BEFORE), der.utc_time(NOT_AFTER)), name, spki]
    if extensions is not None:
        fields.append(der.explicit(3, der.sequence(*extensions)))
    return der.sequence(der.sequence(*fields), alg, der.bit_string(der.sequence(der.integer(1), der.integer(1))))


def _ext(oid: str, value: bytes, critical: bool = False) -> bytes:
    parts = [der.oid(oid)]
    if critical:
        parts.append(der.boolean(True))
    parts.append(der.octet_string(value))
    return der.sequence(*parts)


# ----------------------------- parsing ----------------------------------------


def test_parse_matches_independent_parser(chain):
    for raw in chain.certs:
        ours = parse_certificate(raw)
        theirs = cx509.load_der_x509_certificate(raw)
        assert ours.version == 3
        assert ours.serial_number == theirs.serial_number
        assert ours.tbs_bytes == theirs.tbs_certificate_bytes
        assert ours.signature == theirs.signature
        assert ours.signature_algorithm.oid == theirs.signature_algorithm_oid.dotted_string
        assert ours.not_before == int(theirs.not_valid_before_utc.timestamp())
        assert ours.not_after == int(theirs.not_valid_after_utc.timestamp())
        assert ours.raw == raw


def test_names_and_flags(chain):
    root = parse_certificate(chain.root)
    leaf = parse_certificate(chain.leaf)
    assert str(root.subject) == "CN=Test Root"
    assert root.subject.get("2.5.4.3") == "Test Root"
    assert root.is_self_issued and root.is_ca
    assert root.basic_constraints() == (True, None)
    assert not leaf.is_self_issued
    assert leaf.basic_constraints() is None and not leaf.is_ca
    assert leaf.certificate_id == (leaf.issuer.encoded, leaf.serial_bytes)


def test_attestation_extension_found(chain):
    leaf = parse_certificate(chain.leaf)
    ext = require_attestation_extension(leaf)
    assert ext.oid == KEY_ATTESTATION_OID
    assert not ext.critical
    assert der.decode(ext.value).tag.is_universal(der.SEQUENCE)


def test_missing_attestation_extension(chain):
    with pytest.raises(ExtensionError) as ei:
        require_attestation_extension(parse_certificate(chain.root))
    assert ei.value.field == "keyAttestationExtension"


def test_public_keys(chain):
    assert key_name(public_key_from_spki(parse_certificate(chain.root).spki)) == "RSA-2048"
    assert key_name(public_key_from_spki(parse_certificate(chain.intermediate).spki)) == "P-384"
    assert key_name(public_key_from_spki(parse_certificate(chain.leaf).spki)) == "P-256"


def test_unsupported_curve_key():
    spki = der.sequence(
        der.sequence(der.oid(OID_EC_PUBLIC_KEY), der.oid("1.3.132.0.10")),  # secp256k1
        der.bit_string(b"\x04" + b"\x01" * 64),
    )
    with pytest.raises(CryptoError) as ei:
        public_key_from_spki(SubjectPublicKeyInfo.from_der(spki))
    assert ei.value.kind == CryptoErrorKind.UNSUPPORTED_ALGORITHM


def test_v1_certificate_without_extensions():
    cert = parse_certificate(_handmade(version=None))
    assert cert.version == 1
    assert cert.extensions == ()


def test_extensions_on_v1_rejected():
    with pytest.raises(DecodeError):
        parse_certificate(_handmade([_ext("2.5.29.15", b"\x03\x02\x05\xa0")], version=None))


def test_duplicate_extension_rejected():
    ext = _ext("2.5.29.15", b"\x03\x02\x05\xa0")
    with pytest.raises(DecodeError) as ei:
        parse_certificate(_handmade([ext, ext]))
    assert ei.value.kind == DecodeErrorKind.MALFORMED
    assert ei.value.ctx["oid"] == "2.5.29.15"


def test_unknown_critical_extension_kept():
    cert = parse_certificate(_handmade([_ext("1.2.3.4.5", b"\x05\x00", critical=True)]))
    assert cert.unknown_critical_extensions() == ("1.2.3.4.5",)


def test_trailing_bytes_after_certificate(chain):
    with pytest.raises(DecodeError) as ei:
        parse_certificate(chain.leaf + b"\x00")
    assert ei.value.kind == DecodeErrorKind.TRAILING_BYTES


def test_size_ceiling(chain):
    with pytest.raises(DecodeError) as ei:
        parse_certificate(chain.root, max_size=100)
    assert ei.value.kind == DecodeErrorKind.OVERSIZED


# ----------------------------- signatures -------------------------------------


def test_verify_signed_by(chain):
    leaf = parse_certificate(chain.leaf)
    inter = parse_certificate(chain.intermediate)
    root = parse_certificate(chain.root)
    verify_signed_by(leaf, public_key_from_spki(inter.spki))
    verify_signed_by(inter, public_key_from_spki(root.spki))
    verify_signed_by(root, public_key_from_spki(root.spki))
    with pytest.raises(CryptoError):
        verify_signed_by(leaf, public_key_from_spki(root.spki))


def test_outer_and_inner_algorithm_must_match(chain):
    node = der.decode(chain.leaf)
    tbs, _, sig = node.children
    swapped = der.sequence(tbs.encoded, der.sequence(der.oid(ECDSA_SHA256)), sig.encoded)
    cert = parse_certificate(swapped)
    inter = parse_certificate(chain.intermediate)
    with pytest.raises(CryptoError) as ei:
        verify_signed_by(cert, public_key_from_spki(inter.spki))
    assert ei.value.kind == CryptoErrorKind.INVALID_SIGNATURE


def test_key_type_must_match_algorithm():
    rk = rsa_key()
    ek = p256_key()
    cert = parse_certificate(issue("x", ek, "y", ek))
    nums = rk.public_key().public_numbers()
    with pytest.raises(CryptoError) as ei:
        verify_signed_by(cert, RSAPublicKey.from_numbers(nums.n, nums.e))
    assert ei.value.kind == CryptoErrorKind.UNSUPPORTED_ALGORITHM


# ----------------------------- PEM --------------------------------------------


def test_pem_round_trip(chain):
    text = "leading text\n" + der_to_pem(chain.certs) + "trailing\n"
    assert pem_to_der(text) == chain.certs


def test_pem_bad_base64():
    with pytest.raises(DecodeError):
        pem_to_der("-----BEGIN CERTIFICATE-----\nAAA=A\n-----END CERTIFICATE-----\n")
