"""
keyattest: offline verification of Android hardware key attestation.

Given a certificate chain (DER, leaf first), a set of pinned roots, a
reference time and a policy, `verify_attestation` returns a
`VerificationVerdict` that either carries the decoded `KeyAttestationRecord`
or the first error that rejected the chain.

    from keyattest import TrustAnchorSet, Policy, verify_attestation

    verdict = verify_attestation(chain, TrustAnchorSet.google_hardware_attestation(), now)
    if verdict:
        print(verdict.record.security_level.name)

Heavy submodules are imported on first attribute access.
"""

from __future__ import annotations

import importlib
from typing import Any

from .version import __version__

_LAZY = {
    "verify_attestation": "keyattest.verify",
    "Policy": "keyattest.policy",
    "TrustAnchor": "keyattest.anchors",
    "TrustAnchorSet": "keyattest.anchors",
    "ChainLimits": "keyattest.chain",
    "VerificationVerdict": "keyattest.types",
    "KeyAttestationRecord": "keyattest.types",
    "AuthorizationList": "keyattest.types",
    "RootOfTrust": "keyattest.types",
    "SecurityLevel": "keyattest.types",
    "VerifiedBootState": "keyattest.types",
    "AttestationError": "keyattest.errors",
    "DecodeError": "keyattest.errors",
    "CryptoError": "keyattest.errors",
    "ChainError": "keyattest.errors",
    "ExtensionError": "keyattest.errors",
    "PolicyError": "keyattest.errors",
    "parse_certificate": "keyattest.x509",
    "pem_to_der": "keyattest.x509",
}


def __getattr__(name: str) -> Any:
    mod_name = _LAZY.get(name)
    if mod_name is None:
        raise AttributeError(f"module 'keyattest' has no attribute {name!r}")
    value = getattr(importlib.import_module(mod_name), name)
    globals()[name] = value
    return value


def __dir__() -> list[str]:
    return sorted(set(globals()) | set(_LAZY))


__all__ = ["__version__", *_LAZY]
