from __future__ import annotations

import pytest

from keyattest import der
from keyattest.anchors import TrustAnchorSet
from keyattest.chain import ChainLimits, order_chain, parse_chain, validate_chain
from keyattest.errors import ChainError, ChainErrorKind, DecodeError, DecodeErrorKind
from keyattest.x509 import parse_certificate

from .builders import NOT_AFTER, NOT_BEFORE, REFERENCE_TIME, build_chain, issue


@pytest.fixture(scope="module")
def other_chain():
    return build_chain()


def _chain_error(certs, anchors, at=REFERENCE_TIME, **kw) -> ChainError:
    with pytest.raises(ChainError) as ei:
        validate_chain(certs, anchors, at, **kw)
    return ei.value


def _subjects(validated):
    return [str(c.subject) for c in validated.certificates]


# ----------------------------- accepted paths ---------------------------------


def test_valid_chain(chain, anchors):
    v = validate_chain(chain.certs, anchors, REFERENCE_TIME)
    assert v.anchor == anchors.anchors[0]
    assert _subjects(v) == ["CN=Android Keystore Key", "CN=Test Intermediate", "CN=Test Root"]
    assert v.leaf.raw == chain.leaf
    assert len(v.certificate_ids) == 3


@pytest.mark.parametrize("order", [(2, 1, 0), (1, 2, 0), (2, 0, 1)])
def test_input_order_is_normalized(chain, anchors, order):
    certs = chain.certs
    v = validate_chain([certs[i] for i in order], anchors, REFERENCE_TIME)
    assert _subjects(v)[0] == "CN=Android Keystore Key"
    assert v == validate_chain(certs, anchors, REFERENCE_TIME)


def test_validity_bounds_are_inclusive(chain, anchors):
    validate_chain(chain.certs, anchors, NOT_BEFORE)
    validate_chain(chain.certs, anchors, NOT_AFTER)


def test_anchor_may_issue_the_terminal_certificate(chain, anchors):
    v = validate_chain([chain.leaf, chain.intermediate], anchors, REFERENCE_TIME)
    assert v.anchor == anchors.anchors[0]
    assert len(v.certificates) == 2


def test_intermediate_pinned_by_certificate(chain):
    pinned = TrustAnchorSet.from_certificates([chain.intermediate])
    v = validate_chain([chain.leaf, chain.intermediate], pinned, REFERENCE_TIME)
    assert v.anchor.certificate_fingerprint == parse_certificate(chain.intermediate).fingerprint


def test_root_pinned_by_key_only(chain):
    spki = parse_certificate(chain.root).spki.fingerprint.hex()
    v = validate_chain(chain.certs, TrustAnchorSet.from_fingerprints({"key pin": spki}), REFERENCE_TIME)
    assert v.anchor.name == "key pin"


def test_intermediate_pinned_by_key_only(chain):
    inter = parse_certificate(chain.intermediate)
    pins = TrustAnchorSet.from_fingerprints({"pinned-inter": inter.spki.fingerprint.hex()})
    v = validate_chain([chain.leaf, chain.intermediate], pins, REFERENCE_TIME)
    assert v.anchor.name == "pinned-inter"
    assert len(v.certificates) == 2


def test_certificate_pin_rejects_an_altered_intermediate(chain):
    pinned = TrustAnchorSet.from_certificates([chain.intermediate])
    altered = chain.intermediate.replace(b"Test Intermediate", b"Test Intermediatf")
    err = _chain_error([chain.leaf, altered], pinned)
    assert err.kind == ChainErrorKind.SIGNATURE_MISMATCH
    assert err.index == 1


def test_intermediate_key_pin_still_checks_the_leaf(chain, other_chain):
    inter = parse_certificate(chain.intermediate)
    pins = TrustAnchorSet.from_fingerprints({"pinned-inter": inter.spki.fingerprint.hex()})
    err = _chain_error([other_chain.leaf, chain.intermediate], pins)
    assert err.kind == ChainErrorKind.SIGNATURE_MISMATCH
    assert err.index == 0


# ----------------------------- rejections -------------------------------------


def test_tampered_leaf_is_signature_mismatch(chain, anchors):
    bad = chain.leaf.replace(b"Keystore", b"Keystorf")
    err = _chain_error(chain.with_leaf(bad), anchors)
    assert err.kind == ChainErrorKind.SIGNATURE_MISMATCH
    assert err.index == 0


def test_tampered_signature_bytes(chain, anchors):
    bad = chain.leaf[:-1] + bytes([chain.leaf[-1] ^ 0x01])
    err = _chain_error(chain.with_leaf(bad), anchors)
    assert err.kind == ChainErrorKind.SIGNATURE_MISMATCH
    assert err.index == 0


def test_zeroed_leaf_signature(chain, anchors):
    cert = der.decode(chain.leaf)
    tbs, sig_alg, sig = cert.children
    zeroed = der.sequence(tbs.encoded, sig_alg.encoded, der.bit_string(bytes(len(sig.as_bit_string_bytes()))))
    err = _chain_error(chain.with_leaf(zeroed), anchors)
    assert err.kind == ChainErrorKind.SIGNATURE_MISMATCH
    assert err.index == 0


def test_leaf_from_another_issuer(chain, anchors, other_chain):
    err = _chain_error(chain.with_leaf(other_chain.leaf), anchors)
    assert err.kind == ChainErrorKind.SIGNATURE_MISMATCH
    assert err.index == 0


def test_signature_checked_before_validity(chain, anchors):
    bad = chain.leaf.replace(b"Keystore", b"Keystorf")
    err = _chain_error(chain.with_leaf(bad), anchors, at=NOT_AFTER + 1)
    assert err.kind == ChainErrorKind.SIGNATURE_MISMATCH


@pytest.mark.parametrize("at", [NOT_BEFORE - 1, NOT_AFTER + 1])
def test_outside_validity_window(chain, anchors, at):
    err = _chain_error(chain.certs, anchors, at=at)
    assert err.kind == ChainErrorKind.EXPIRED
    assert err.index == 0
    assert err.ctx["reference_time"] == at


def test_expired_leaf_only(chain, anchors):
    leaf = chain.reissue_leaf(not_after=REFERENCE_TIME - 1)
    err = _chain_error(chain.with_leaf(leaf), anchors)
    assert err.kind == ChainErrorKind.EXPIRED
    assert err.index == 0


def test_unknown_root_with_empty_anchor_set(chain):
    err = _chain_error(chain.certs, TrustAnchorSet())
    assert err.kind == ChainErrorKind.UNKNOWN_ROOT


def test_unknown_root_with_same_name_other_key(chain, other_chain):
    # Same "Test Root" subject, different key: name matching alone must not anchor.
    err = _chain_error(chain.certs, TrustAnchorSet.from_certificates([other_chain.root]))
    assert err.kind == ChainErrorKind.UNKNOWN_ROOT
    err = _chain_error([chain.leaf, chain.intermediate], TrustAnchorSet.from_certificates([other_chain.root]))
    assert err.kind == ChainErrorKind.UNKNOWN_ROOT


@pytest.mark.parametrize("ca", [False, None])
def test_intermediate_must_be_ca(root_key, anchors, ca):
    c = build_chain(root_key=root_key, intermediate_ca=ca)
    err = _chain_error(c.certs, anchors)
    assert err.kind == ChainErrorKind.NOT_A_CA
    assert err.index == 1
    relaxed = validate_chain(c.certs, anchors, REFERENCE_TIME, limits=ChainLimits(require_ca_issuers=False))
    assert relaxed.anchor == anchors.anchors[0]


def test_path_length_constraint(chain, anchors):
    root = issue("Test Root", chain.root_key, "Test Root", chain.root_key, ca=True, path_length=0, serial=101)
    err = _chain_error([chain.leaf, chain.intermediate, root], anchors)
    assert err.kind == ChainErrorKind.NOT_A_CA
    assert err.index == 2
    assert err.ctx["path_len"] == 0


def test_empty_chain(anchors):
    assert _chain_error([], anchors).kind == ChainErrorKind.EMPTY


def test_too_long(chain, anchors):
    err = _chain_error([chain.leaf] * 6, anchors)
    assert err.kind == ChainErrorKind.TOO_LONG
    assert err.ctx["max_length"] == 5
    err = _chain_error(chain.certs, anchors, limits=ChainLimits(max_chain_length=2))
    assert err.kind == ChainErrorKind.TOO_LONG


def test_oversized_certificate(chain, anchors):
    with pytest.raises(DecodeError) as ei:
        validate_chain(chain.certs, anchors, REFERENCE_TIME, limits=ChainLimits(max_certificate_size=100))
    assert ei.value.kind == DecodeErrorKind.OVERSIZED
    assert ei.value.ctx["index"] == 0


def test_malformed_certificate_reports_input_position(chain):
    with pytest.raises(DecodeError) as ei:
        parse_chain([chain.leaf, b"\x30\x03\x02\x01\x00", chain.root])
    assert ei.value.ctx["index"] == 1


def test_order_chain_keeps_unlinkable_input(chain, other_chain):
    certs = [parse_certificate(c) for c in (chain.leaf, other_chain.leaf, chain.intermediate)]
    assert order_chain(certs) == certs
