"""
keyattest.chain
===============

Certificate-path validation from an attestation leaf to a pinned anchor.

Order of work (cheap before expensive):

  1. chain length and per-certificate size ceilings
  2. DER parsing of every certificate
  3. ordering (leaf first; root-first and shuffled input are normalized)
  4. every signature link, then the terminal certificate's own signature
     (when it is self-issued, or differs from the certificate it is pinned by)
  5. issuer CA flags and path-length constraints
  6. validity windows against the caller's reference time
  7. trust-anchor match

Signatures are checked before validity so that any modification of signed
bytes surfaces as SIGNATURE_MISMATCH; a chain with intact signatures but an
out-of-window certificate is EXPIRED. Indices in ChainError are leaf-first
positions after ordering; DecodeError ``index`` refers to the input position.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from . import der
from .anchors import TrustAnchor, TrustAnchorSet
from .errors import (
    ChainError,
    ChainErrorKind,
    CryptoError,
    DecodeError,
    DecodeErrorKind,
    rethrow_as,
)
from .keys import public_key_from_spki
from .logging import get_logger
from .x509 import ParsedCertificate, parse_certificate, verify_signed_by

log = get_logger("keyattest.chain")

DEFAULT_MAX_CHAIN_LENGTH = 5
DEFAULT_MAX_CERTIFICATE_SIZE = 3000


@dataclass(frozen=True)
class ChainLimits:
    max_chain_length: int = DEFAULT_MAX_CHAIN_LENGTH
    max_certificate_size: int = DEFAULT_MAX_CERTIFICATE_SIZE
    max_depth: int = der.DEFAULT_MAX_DEPTH
    require_ca_issuers: bool = True


@dataclass(frozen=True)
class ValidatedChain:
    certificates: Tuple[ParsedCertificate, ...]  # leaf first
    anchor: TrustAnchor

    @property
    def leaf(self) -> ParsedCertificate:
        return self.certificates[0]

    @property
    def certificate_ids(self) -> Tuple[Tuple[bytes, bytes], ...]:
        return tuple(c.certificate_id for c in self.certificates)


def parse_chain(raw_chain: Sequence[bytes], limits: ChainLimits = ChainLimits()) -> List[ParsedCertificate]:
    """Structural checks and parsing; no cryptography."""
    if not raw_chain:
        raise ChainError(ChainErrorKind.EMPTY, "certificate chain is empty")
    if len(raw_chain) > limits.max_chain_length:
        raise ChainError(
            ChainErrorKind.TOO_LONG,
            "certificate chain too long",
            ctx={"length": len(raw_chain), "max_length": limits.max_chain_length},
        )
    for i, raw in enumerate(raw_chain):
        if len(raw) > limits.max_certificate_size:
            raise DecodeError(
                DecodeErrorKind.OVERSIZED,
                "certificate exceeds size ceiling",
                ctx={"index": i, "size": len(raw), "max_size": limits.max_certificate_size},
            )
    certs: List[ParsedCertificate] = []
    for i, raw in enumerate(raw_chain):
        try:
            certs.append(parse_certificate(raw, max_depth=limits.max_depth))
        except DecodeError as e:
            e.ctx.setdefault("index", i)
            raise
    return certs


def order_chain(certs: Sequence[ParsedCertificate]) -> List[ParsedCertificate]:
    """
    Return the chain leaf first. Input already linked leaf-first is kept,
    root-first input is reversed, and otherwise a unique issuer/subject path
    through all certificates is used. Without one, input order is kept and
    the signature checks decide.
    """
    certs = list(certs)
    if len(certs) < 2 or _linked(certs):
        return certs
    reversed_certs = certs[::-1]
    if _linked(reversed_certs):
        return reversed_certs

    leaves = [
        c
        for c in certs
        if not any(o is not c and o.issuer.encoded == c.subject.encoded and not o.is_self_issued for o in certs)
    ]
    if len(leaves) != 1:
        return certs
    path = [leaves[0]]
    remaining = [c for c in certs if c is not leaves[0]]
    while remaining:
        cur = path[-1]
        nxt = [c for c in remaining if c.subject.encoded == cur.issuer.encoded]
        if len(nxt) != 1:
            return certs
        path.append(nxt[0])
        remaining.remove(nxt[0])
    return path


def _linked(certs: Sequence[ParsedCertificate]) -> bool:
    return all(certs[i].issuer.encoded == certs[i + 1].subject.encoded for i in range(len(certs) - 1))


def validate_chain(
    raw_chain: Sequence[bytes],
    anchors: TrustAnchorSet,
    reference_time: int,
    *,
    limits: Optional[ChainLimits] = None,
) -> ValidatedChain:
    limits = limits or ChainLimits()
    chain = order_chain(parse_chain(raw_chain, limits))
    n = len(chain)
    log.debug("validating chain", extra={"length": n, "reference_time": reference_time})

    for i in range(n - 1):
        _verify_link(chain[i], chain[i + 1], i)
    terminal = chain[-1]
    pinned = anchors.match(terminal)
    # A bare key pin anchors on the key; a certificate anchor needs the exact
    # certificate or a terminal that verifies under its own key.
    reissued = (
        pinned is not None
        and pinned.certificate_fingerprint is not None
        and pinned.certificate_fingerprint != terminal.fingerprint
    )
    if terminal.is_self_issued or reissued:
        _verify_link(terminal, terminal, n - 1)

    if limits.require_ca_issuers:
        for i in range(1, n):
            _check_ca(chain[i], i)

    for i, cert in enumerate(chain):
        if not cert.not_before <= reference_time <= cert.not_after:
            raise ChainError(
                ChainErrorKind.EXPIRED,
                "certificate not valid at reference time",
                index=i,
                ctx={
                    "not_before": cert.not_before,
                    "not_after": cert.not_after,
                    "reference_time": reference_time,
                },
            )

    anchor = pinned or _anchor_issuer(terminal, anchors)
    if anchor is None:
        raise ChainError(
            ChainErrorKind.UNKNOWN_ROOT,
            "chain does not terminate at a trusted root",
            ctx={"terminal_spki_sha256": terminal.spki.fingerprint.hex()},
        )
    log.debug("chain anchored", extra={"anchor": anchor.name})
    return ValidatedChain(tuple(chain), anchor)


def _verify_link(cert: ParsedCertificate, issuer: ParsedCertificate, index: int) -> None:
    def mismatch(e):
        return ChainError(
            ChainErrorKind.SIGNATURE_MISMATCH,
            "certificate signature does not verify under its issuer key",
            index=index,
            ctx={"reason": e.reason},
            cause=e,
        )

    with rethrow_as(mismatch):
        key = public_key_from_spki(issuer.spki)
        verify_signed_by(cert, key)


def _check_ca(issuer: ParsedCertificate, index: int) -> None:
    bc = issuer.basic_constraints()
    if not bc or not bc[0]:
        raise ChainError(ChainErrorKind.NOT_A_CA, "issuer is not a CA certificate", index=index)
    path_len = bc[1]
    # certificates between this issuer and the leaf, leaf excluded
    below = index - 1
    if path_len is not None and below > path_len:
        raise ChainError(
            ChainErrorKind.NOT_A_CA,
            "path length constraint exceeded",
            index=index,
            ctx={"path_len": path_len, "intermediates_below": below},
        )


def _anchor_issuer(terminal: ParsedCertificate, anchors: TrustAnchorSet) -> Optional[TrustAnchor]:
    for candidate in anchors.issuers_of(terminal):
        try:
            verify_signed_by(terminal, public_key_from_spki(candidate.spki))
        except CryptoError:
            continue
        return candidate
    return None


__all__ = [
    "ChainLimits",
    "ValidatedChain",
    "DEFAULT_MAX_CHAIN_LENGTH",
    "DEFAULT_MAX_CERTIFICATE_SIZE",
    "parse_chain",
    "order_chain",
    "validate_chain",
]
