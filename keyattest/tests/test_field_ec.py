from __future__ import annotations

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec

from keyattest.ec import EcdsaSignature, P256PublicKey, P384PublicKey
from keyattest.ec.ecdsa import digest_to_scalar
from keyattest.ec.p256 import CURVE as P256, P256Field
from keyattest.ec.p384 import CURVE as P384, P384Field
from keyattest.errors import CryptoError, CryptoErrorKind
from keyattest.field import FieldElement

MESSAGE = b"keyattest known answer"

# Public points for fixed private scalars, and one signature each over MESSAGE
# (produced with OpenSSL).
P256_K = 0xC51E4753AFDEC1E6B6C6A5B992F43F8DD0C7A8933072708B6522468B2FFB06FD
P256_KG = (
    0x942C9F408EAD9D82D34A1B9A6A827EBE3E2DDF782B448D23BE1B6143988CCEF4,
    0x8C9EAF6C0D14D992FC63BAD3E2496BE2EEE61CB5B97F65F428CA94A5D0EE19A1,
)
P256_SIG = bytes.fromhex(
    "3044022011711dc9ce6ed0f67c7109a6419b8dc994f81daffeb0086b96c8e0da61aec23a"
    "022077ff31bc32264ab9ee8666a112ac7f957d513f05ac25ee5d0b2bc18519a42fba"
)
P256_2G = (
    0x7CF27B188D034F7E8A52380304B51AC3C08969E277F21B35A60B48FC47669978,
    0x07775510DB8ED040293D9AC69F7430DBBA7DADE63CE982299E04B79D227873D1,
)

P384_K = int(
    "0beb646634ba87735d77ae4809a0ebea865535de4c1e1dcb692e84708e81a5af62e528c38b2a81b35309668d73524d9f", 16
)
P384_KG = (
    int("96281bf8dd5e0525ca049c048d345d3082968d10fedf5c5aca0c64e6465a97ea5ce10c9dfec21797415710721f437922", 16),
    int("447688ba94708eb6e2e4d59f6ab6d7edff9301d249fe49c33096655f5d502fad3d383b91c5e7edaa2b714cc99d5743ca", 16),
)
P384_SIG = bytes.fromhex(
    "306402306a03299534a5525e44f06713d6a0d8732a763ba8c313a836623cae9448a8e6f79aab4baf43ee8ce3feb38556813d58d3"
    "0230319d2d94146bd4978148e668b4bbe510a257bf34d7c9a99eb5337e267f1ba607cf1150b90a1f9bdfbc6195d9e5670be1"
)
P384_2G = (
    int("08d999057ba3d2d969260045c55b97f089025959a6f434d651d207d19fb96e9e4fe0e86ebe0e64f85b96a9c75295df61", 16),
    int("8e80f1fa5b1b3cedb7bfe8dffd6dba74b275d875bc6cc43e904e505f256ab4255ffd43e94d39e22d61501e700a940e80", 16),
)


# ----------------------------- field -----------------------------------------


def test_field_inverse_and_reduction():
    a = P256Field(P256Field.P + 5)
    assert int(a) == 5
    assert a * a.inv() == 1
    assert (a / a) == P256Field.one()
    with pytest.raises(ZeroDivisionError):
        P256Field.zero().inv()


def test_field_sqrt():
    a = P384Field(12345)
    r = a.square().sqrt()
    assert r is not None and r.square() == a.square()
    # -1 is a non-residue when P ≡ 3 (mod 4)
    assert P384Field(-1).sqrt() is None
    assert not P384Field(-1).is_square()


def test_field_bytes_strict():
    assert P256Field.from_bytes(P256Field(7).to_bytes()) == P256Field(7)
    with pytest.raises(ValueError):
        P256Field.from_bytes(b"\x01")
    with pytest.raises(ValueError):
        P256Field.from_bytes(P256Field.P.to_bytes(32, "big"))


def test_fields_do_not_mix():
    with pytest.raises(TypeError):
        P256Field(1) + P384Field(1)


def test_field_modulus_validation():
    with pytest.raises(TypeError):

        class Even(FieldElement):
            P = 2**255

    with pytest.raises(TypeError):

        class TooWide(FieldElement):
            P = 2**521 - 1


# ----------------------------- curve arithmetic -------------------------------


@pytest.mark.parametrize(
    "curve,k,expected",
    [(P256, 2, P256_2G), (P256, P256_K, P256_KG), (P384, 2, P384_2G), (P384, P384_K, P384_KG)],
)
def test_scalar_multiplication_known_answers(curve, k, expected):
    assert curve.generator().multiply(k).to_affine() == expected


@pytest.mark.parametrize("curve", [P256, P384])
def test_group_order(curve):
    g = curve.generator()
    assert g.multiply(curve.n).is_infinity
    minus_g = g.multiply(curve.n - 1).to_affine()
    assert minus_g == (curve.gx, curve.p - curve.gy)
    assert g.add(g) == g.double()
    assert (g.multiply(5)).add(g.multiply(7)) == g.multiply(12)


def test_sec1_compressed_and_uncompressed():
    key = P256PublicKey.from_coordinates(*P256_KG)
    for compressed in (False, True):
        assert P256PublicKey.from_sec1(key.to_sec1(compressed=compressed)) == key
    key384 = P384PublicKey.from_coordinates(*P384_KG)
    assert P384PublicKey.from_sec1(key384.to_sec1(compressed=True)) == key384


def test_point_not_on_curve():
    x, y = P256_KG
    with pytest.raises(CryptoError) as ei:
        P256PublicKey.from_coordinates(x, y + 1)
    assert ei.value.kind == CryptoErrorKind.POINT_NOT_ON_CURVE


@pytest.mark.parametrize(
    "data,kind",
    [
        (b"", CryptoErrorKind.INVALID_KEY),
        (b"\x00", CryptoErrorKind.INVALID_KEY),
        (b"\x04" + b"\x01" * 10, CryptoErrorKind.INVALID_KEY),
        (b"\x04" + b"\xff" * 64, CryptoErrorKind.POINT_NOT_ON_CURVE),
    ],
)
def test_bad_sec1_encodings(data, kind):
    with pytest.raises(CryptoError) as ei:
        P256PublicKey.from_sec1(data)
    assert ei.value.kind == kind


# ----------------------------- ECDSA -----------------------------------------


def test_ecdsa_known_answers():
    P256PublicKey.from_coordinates(*P256_KG).verify(MESSAGE, P256_SIG)
    P384PublicKey.from_coordinates(*P384_KG).verify(MESSAGE, P384_SIG)


def test_ecdsa_rejects_other_message_and_key():
    with pytest.raises(CryptoError) as ei:
        P256PublicKey.from_coordinates(*P256_KG).verify(MESSAGE + b"!", P256_SIG)
    assert ei.value.kind == CryptoErrorKind.INVALID_SIGNATURE
    with pytest.raises(CryptoError):
        P256PublicKey.from_coordinates(*P256_2G).verify(MESSAGE, P256_SIG)


def test_ecdsa_scalar_range():
    key = P256PublicKey.from_coordinates(*P256_KG)
    sig = EcdsaSignature.from_der(P256_SIG)
    with pytest.raises(CryptoError) as ei:
        key.verify(MESSAGE, EcdsaSignature(sig.r, sig.s + P256.n))
    assert ei.value.kind == CryptoErrorKind.SCALAR_OUT_OF_RANGE
    with pytest.raises(CryptoError) as ei:
        EcdsaSignature.from_der(EcdsaSignature(0, 1).to_der())
    assert ei.value.kind == CryptoErrorKind.SCALAR_OUT_OF_RANGE


def test_ecdsa_malformed_der():
    with pytest.raises(CryptoError) as ei:
        EcdsaSignature.from_der(P256_SIG + b"\x00")
    assert ei.value.kind == CryptoErrorKind.INVALID_SIGNATURE


@pytest.mark.parametrize(
    "curve_cls,key_cls,hash_cls,hash_name",
    [
        (ec.SECP256R1, P256PublicKey, hashes.SHA256, "sha256"),
        (ec.SECP256R1, P256PublicKey, hashes.SHA384, "sha384"),
        (ec.SECP384R1, P384PublicKey, hashes.SHA384, "sha384"),
        (ec.SECP384R1, P384PublicKey, hashes.SHA512, "sha512"),
    ],
)
def test_ecdsa_against_independent_signer(curve_cls, key_cls, hash_cls, hash_name):
    priv = ec.generate_private_key(curve_cls())
    nums = priv.public_key().public_numbers()
    key = key_cls.from_coordinates(nums.x, nums.y)
    for i in range(3):
        msg = b"message %d" % i
        sig = priv.sign(msg, ec.ECDSA(hash_cls()))
        key.verify(msg, sig, hash_name)
        with pytest.raises(CryptoError):
            key.verify(msg + b".", sig, hash_name)


def test_digest_truncation():
    h = bytes(range(64))  # 512-bit digest, truncated to 384 bits on P-384
    assert digest_to_scalar(P384, h) == int.from_bytes(h[:48], "big")
    assert digest_to_scalar(P256, h[:32]) == int.from_bytes(h[:32], "big")
