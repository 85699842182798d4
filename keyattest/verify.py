"""
Verification engine: raw chain in, verdict out.

    chain validation → attested key → extension decode → policy

Every AttestationError raised along the way is returned inside a rejected
verdict. Anything else (a TypeError from a bad argument, say) is a caller bug
and propagates.
"""

from __future__ import annotations

from typing import Optional, Sequence

from .anchors import TrustAnchorSet
from .chain import ChainLimits, validate_chain
from .errors import AttestationError
from .key_description import decode_key_description
from .keys import public_key_from_spki
from .logging import get_logger
from .policy import Policy, evaluate
from .types import VerificationVerdict
from .x509 import require_attestation_extension

log = get_logger("keyattest.verify")


def verify_attestation(
    chain: Sequence[bytes],
    anchors: TrustAnchorSet,
    reference_time: int,
    policy: Optional[Policy] = None,
    *,
    limits: Optional[ChainLimits] = None,
) -> VerificationVerdict:
    """
    Verify an Android key attestation chain (DER certificates, leaf first)
    against ``anchors`` at ``reference_time`` (Unix seconds).

    The call reads no clock or environment; the same inputs always produce
    equal verdicts.
    """
    if isinstance(chain, (bytes, bytearray)):
        raise TypeError("chain must be a sequence of DER certificates, not a single bytes object")
    reference_time = int(reference_time)
    policy = policy if policy is not None else Policy()
    limits = limits or ChainLimits()

    try:
        validated = validate_chain(chain, anchors, reference_time, limits=limits)
        leaf = validated.leaf
        attested_key = public_key_from_spki(leaf.spki)
        extension = require_attestation_extension(leaf)
        record = decode_key_description(extension.value, max_depth=limits.max_depth)
    except AttestationError as e:
        verdict = VerificationVerdict.reject(e, reference_time=reference_time)
        log.info("attestation rejected", extra={"reason": e.reason, "ctx": e.ctx})
        return verdict

    verdict = VerificationVerdict.accept(
        reference_time=reference_time,
        record=record,
        anchor=validated.anchor,
        attested_key=attested_key,
        certificates=validated.certificates,
    )
    log.debug(
        "attestation decoded",
        extra={
            "version": record.attestation_version,
            "security_level": record.security_level,
            "anchor": validated.anchor.name,
        },
    )

    verdict = evaluate(verdict, record, policy)
    if verdict.accepted:
        log.info("attestation accepted", extra={"anchor": validated.anchor.name})
    else:
        log.info("attestation rejected", extra={"reason": verdict.reason, "ctx": verdict.error.ctx})
    return verdict


__all__ = ["verify_attestation"]
