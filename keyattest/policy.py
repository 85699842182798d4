"""
Policy evaluation over a cryptographically verified attestation.

`evaluate` is total and pure: it never raises for a well-formed record, reads
no clock (the verdict carries the reference time) and returns either the
verdict it was given or the same verdict turned into a PolicyError rejection.
Checks run in a fixed order and the first failure wins:

  security level → boot state → device lock → OS patch level →
  certificate age → application id → challenge → critical extensions
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass, fields
from typing import Any, FrozenSet, Mapping, Optional

from .errors import PolicyError, PolicyErrorKind
from .types import KeyAttestationRecord, SecurityLevel, VerificationVerdict, VerifiedBootState


@dataclass(frozen=True)
class Policy:
    min_security_level: SecurityLevel = SecurityLevel.TRUSTED_ENVIRONMENT
    # None accepts any state, including a record without RootOfTrust.
    accepted_boot_states: Optional[FrozenSet[VerifiedBootState]] = frozenset({VerifiedBootState.VERIFIED})
    max_certificate_age: Optional[int] = None  # seconds
    required_application_id: Optional[bytes] = None
    require_device_locked: bool = False
    min_os_patch_level: Optional[int] = None  # YYYYMM
    required_challenge: Optional[bytes] = None
    reject_unknown_critical_extensions: bool = False

    @classmethod
    def permissive(cls) -> "Policy":
        """Accept anything that verified cryptographically."""
        return cls(min_security_level=SecurityLevel.SOFTWARE, accepted_boot_states=None)

    @classmethod
    def from_mapping(cls, m: Mapping[str, Any]) -> "Policy":
        """
        Build from a config mapping. Enum values accept names or numbers;
        byte values are hex strings. Unknown keys raise ValueError.
        """
        unknown = set(m) - {f.name for f in fields(cls)}
        if unknown:
            raise ValueError(f"unknown policy settings: {sorted(unknown)}")
        kwargs: dict = {}
        if m.get("min_security_level") is not None:
            kwargs["min_security_level"] = SecurityLevel.parse(m["min_security_level"])
        if "accepted_boot_states" in m:
            states = m["accepted_boot_states"]
            kwargs["accepted_boot_states"] = (
                None if states is None else frozenset(VerifiedBootState.parse(s) for s in states)
            )
        if m.get("max_certificate_age") is not None:
            kwargs["max_certificate_age"] = int(m["max_certificate_age"])
        if m.get("required_application_id"):
            kwargs["required_application_id"] = bytes.fromhex(m["required_application_id"])
        if m.get("require_device_locked") is not None:
            kwargs["require_device_locked"] = parse_flag("require_device_locked", m["require_device_locked"])
        if m.get("min_os_patch_level") is not None:
            kwargs["min_os_patch_level"] = int(m["min_os_patch_level"])
        if m.get("required_challenge"):
            kwargs["required_challenge"] = bytes.fromhex(m["required_challenge"])
        if m.get("reject_unknown_critical_extensions") is not None:
            kwargs["reject_unknown_critical_extensions"] = parse_flag(
                "reject_unknown_critical_extensions", m["reject_unknown_critical_extensions"]
            )
        return cls(**kwargs)


_TRUE = {"1", "true", "t", "yes", "y", "on"}
_FALSE = {"0", "false", "f", "no", "n", "off"}


def parse_flag(name: str, v: Any) -> bool:
    """Booleans from config: real bools, or strings such as "yes" and "off"."""
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in _TRUE:
        return True
    if s in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean, got {v!r}")


def evaluate(
    verdict: VerificationVerdict, record: KeyAttestationRecord, policy: Policy
) -> VerificationVerdict:
    if not verdict.accepted:
        return verdict
    error = _first_violation(verdict, record, policy)
    return verdict if error is None else verdict.rejected_with(error)


def _first_violation(
    verdict: VerificationVerdict, record: KeyAttestationRecord, policy: Policy
) -> Optional[PolicyError]:
    if record.security_level < policy.min_security_level:
        return PolicyError(
            PolicyErrorKind.SECURITY_LEVEL_TOO_LOW,
            "attestation security level below policy minimum",
            ctx={"got": record.security_level.name, "min": policy.min_security_level.name},
        )

    if policy.accepted_boot_states is not None:
        state = record.verified_boot_state
        if state is None or state not in policy.accepted_boot_states:
            return PolicyError(
                PolicyErrorKind.BOOT_STATE_NOT_ACCEPTED,
                "verified boot state not accepted",
                ctx={
                    "got": state.name if state is not None else None,
                    "accepted": sorted(s.name for s in policy.accepted_boot_states),
                },
            )

    if policy.require_device_locked and record.device_locked is not True:
        return PolicyError(PolicyErrorKind.DEVICE_NOT_LOCKED, "bootloader is not locked")

    if policy.min_os_patch_level is not None:
        patch = record.os_patch_level
        if patch is None or patch < policy.min_os_patch_level:
            return PolicyError(
                PolicyErrorKind.PATCH_LEVEL_TOO_OLD,
                "OS patch level below policy minimum",
                ctx={"got": patch, "min": policy.min_os_patch_level},
            )

    if policy.max_certificate_age is not None:
        issued = _issued_at(verdict, record)
        age = max(0, verdict.reference_time - issued)
        if age > policy.max_certificate_age:
            return PolicyError(
                PolicyErrorKind.CERTIFICATE_TOO_OLD,
                "attestation older than policy allows",
                ctx={"age": age, "max_age": policy.max_certificate_age},
            )

    if policy.required_application_id is not None:
        app_id = record.application_id
        if app_id is None or not hmac.compare_digest(app_id, policy.required_application_id):
            return PolicyError(PolicyErrorKind.APPLICATION_ID_MISMATCH, "attestation application id mismatch")

    if policy.required_challenge is not None and not hmac.compare_digest(
        record.challenge, policy.required_challenge
    ):
        return PolicyError(PolicyErrorKind.CHALLENGE_MISMATCH, "attestation challenge mismatch")

    if policy.reject_unknown_critical_extensions:
        for i, cert in enumerate(verdict.certificates):
            unknown = cert.unknown_critical_extensions()
            if unknown:
                return PolicyError(
                    PolicyErrorKind.UNKNOWN_CRITICAL_EXTENSION,
                    "certificate carries an unrecognized critical extension",
                    ctx={"index": i, "oids": list(unknown)},
                )
    return None


def _issued_at(verdict: VerificationVerdict, record: KeyAttestationRecord) -> int:
    created_ms = record.creation_datetime
    if created_ms is not None:
        return created_ms // 1000
    if verdict.certificates:
        return verdict.certificates[0].not_before
    return verdict.reference_time


__all__ = ["Policy", "evaluate", "parse_flag"]
