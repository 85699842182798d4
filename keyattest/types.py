"""
keyattest.types: data model shared by the decoder, policy and engine.

All records are frozen dataclasses; equality is by value, which is what makes
two verifications of the same input compare equal.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Any, Dict, Optional, Tuple

from .anchors import TrustAnchor
from .errors import AttestationError
from .keys import PublicKey, key_name
from .x509 import ParsedCertificate


class SecurityLevel(IntEnum):
    """Where the key lives. Ordered: SOFTWARE < TRUSTED_ENVIRONMENT < STRONG_BOX."""

    SOFTWARE = 0
    TRUSTED_ENVIRONMENT = 1
    STRONG_BOX = 2

    @classmethod
    def parse(cls, value: Any) -> "SecurityLevel":
        if isinstance(value, SecurityLevel):
            return value
        if isinstance(value, int):
            return cls(value)
        key = str(value).strip().upper().replace("-", "_")
        aliases = {"TEE": "TRUSTED_ENVIRONMENT", "STRONGBOX": "STRONG_BOX"}
        return cls[aliases.get(key, key)]


class VerifiedBootState(IntEnum):
    VERIFIED = 0
    SELF_SIGNED = 1
    UNVERIFIED = 2
    FAILED = 3

    @classmethod
    def parse(cls, value: Any) -> "VerifiedBootState":
        if isinstance(value, VerifiedBootState):
            return value
        if isinstance(value, int):
            return cls(value)
        return cls[str(value).strip().upper().replace("-", "_")]


# Authorization list tags (KeyMint Tag numbers without the type bits).
class Tag(IntEnum):
    PURPOSE = 1
    ALGORITHM = 2
    KEY_SIZE = 3
    DIGEST = 5
    PADDING = 6
    EC_CURVE = 10
    RSA_PUBLIC_EXPONENT = 200
    MGF_DIGEST = 203
    ROLLBACK_RESISTANCE = 303
    EARLY_BOOT_ONLY = 305
    ACTIVE_DATETIME = 400
    ORIGINATION_EXPIRE_DATETIME = 401
    USAGE_EXPIRE_DATETIME = 402
    USAGE_COUNT_LIMIT = 405
    NO_AUTH_REQUIRED = 503
    USER_AUTH_TYPE = 504
    AUTH_TIMEOUT = 505
    ALLOW_WHILE_ON_BODY = 506
    TRUSTED_USER_PRESENCE_REQUIRED = 507
    TRUSTED_CONFIRMATION_REQUIRED = 508
    UNLOCKED_DEVICE_REQUIRED = 509
    ALL_APPLICATIONS = 600
    APPLICATION_ID = 601
    CREATION_DATETIME = 701
    ORIGIN = 702
    ROLLBACK_RESISTANT = 703
    ROOT_OF_TRUST = 704
    OS_VERSION = 705
    OS_PATCH_LEVEL = 706
    ATTESTATION_APPLICATION_ID = 709
    ATTESTATION_ID_BRAND = 710
    ATTESTATION_ID_DEVICE = 711
    ATTESTATION_ID_PRODUCT = 712
    ATTESTATION_ID_SERIAL = 713
    ATTESTATION_ID_IMEI = 714
    ATTESTATION_ID_MEID = 715
    ATTESTATION_ID_MANUFACTURER = 716
    ATTESTATION_ID_MODEL = 717
    VENDOR_PATCH_LEVEL = 718
    BOOT_PATCH_LEVEL = 719
    DEVICE_UNIQUE_ATTESTATION = 720
    ATTESTATION_ID_SECOND_IMEI = 721
    MODULE_HASH = 724


@dataclass(frozen=True)
class RootOfTrust:
    verified_boot_key: bytes
    device_locked: bool
    verified_boot_state: VerifiedBootState
    verified_boot_hash: Optional[bytes] = None  # attestation version >= 3


@dataclass(frozen=True)
class AuthorizationList:
    """
    Decoded authorization list, in tag order. Values are int, tuple of int
    (SET OF INTEGER), True (NULL flags), bytes, or RootOfTrust. Unknown tags
    keep the raw DER of their inner value.
    """

    entries: Tuple[Tuple[int, Any], ...] = ()

    def get(self, tag: int, default: Any = None) -> Any:
        for t, v in self.entries:
            if t == tag:
                return v
        return default

    def __contains__(self, tag: object) -> bool:
        return any(t == tag for t, _ in self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def tags(self) -> Tuple[int, ...]:
        return tuple(t for t, _ in self.entries)

    @property
    def root_of_trust(self) -> Optional[RootOfTrust]:
        return self.get(Tag.ROOT_OF_TRUST)

    @property
    def os_version(self) -> Optional[int]:
        return self.get(Tag.OS_VERSION)

    @property
    def os_patch_level(self) -> Optional[int]:
        return self.get(Tag.OS_PATCH_LEVEL)

    @property
    def vendor_patch_level(self) -> Optional[int]:
        return self.get(Tag.VENDOR_PATCH_LEVEL)

    @property
    def boot_patch_level(self) -> Optional[int]:
        return self.get(Tag.BOOT_PATCH_LEVEL)

    @property
    def creation_datetime(self) -> Optional[int]:
        return self.get(Tag.CREATION_DATETIME)

    @property
    def attestation_application_id(self) -> Optional[bytes]:
        return self.get(Tag.ATTESTATION_APPLICATION_ID)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for t, v in self.entries:
            try:
                name = Tag(t).name.lower()
            except ValueError:
                name = f"tag_{t}"
            out[name] = _jsonable(v)
        return out


@dataclass(frozen=True)
class KeyAttestationRecord:
    attestation_version: int
    security_level: SecurityLevel
    keymaster_version: int
    keymaster_security_level: SecurityLevel
    challenge: bytes
    unique_id: bytes
    software_enforced: AuthorizationList
    hardware_enforced: AuthorizationList

    def _pick(self, tag: int) -> Any:
        """Hardware-enforced value first, software-enforced as fallback."""
        v = self.hardware_enforced.get(tag)
        return v if v is not None else self.software_enforced.get(tag)

    @property
    def root_of_trust(self) -> Optional[RootOfTrust]:
        return self._pick(Tag.ROOT_OF_TRUST)

    @property
    def verified_boot_state(self) -> Optional[VerifiedBootState]:
        rot = self.root_of_trust
        return rot.verified_boot_state if rot else None

    @property
    def device_locked(self) -> Optional[bool]:
        rot = self.root_of_trust
        return rot.device_locked if rot else None

    @property
    def verified_boot_key(self) -> Optional[bytes]:
        rot = self.root_of_trust
        return rot.verified_boot_key if rot else None

    @property
    def verified_boot_hash(self) -> Optional[bytes]:
        rot = self.root_of_trust
        return rot.verified_boot_hash if rot else None

    @property
    def os_version(self) -> Optional[int]:
        return self._pick(Tag.OS_VERSION)

    @property
    def os_patch_level(self) -> Optional[int]:
        return self._pick(Tag.OS_PATCH_LEVEL)

    @property
    def vendor_patch_level(self) -> Optional[int]:
        return self._pick(Tag.VENDOR_PATCH_LEVEL)

    @property
    def boot_patch_level(self) -> Optional[int]:
        return self._pick(Tag.BOOT_PATCH_LEVEL)

    @property
    def application_id(self) -> Optional[bytes]:
        return self._pick(Tag.ATTESTATION_APPLICATION_ID)

    @property
    def creation_datetime(self) -> Optional[int]:
        """Key creation time in milliseconds since the epoch, if attested."""
        return self._pick(Tag.CREATION_DATETIME)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attestation_version": self.attestation_version,
            "security_level": self.security_level.name,
            "keymaster_version": self.keymaster_version,
            "keymaster_security_level": self.keymaster_security_level.name,
            "challenge": self.challenge.hex(),
            "unique_id": self.unique_id.hex(),
            "verified_boot_state": self.verified_boot_state.name if self.verified_boot_state is not None else None,
            "device_locked": self.device_locked,
            "os_version": self.os_version,
            "os_patch_level": self.os_patch_level,
            "vendor_patch_level": self.vendor_patch_level,
            "boot_patch_level": self.boot_patch_level,
            "application_id": self.application_id.hex() if self.application_id is not None else None,
            "software_enforced": self.software_enforced.to_dict(),
            "hardware_enforced": self.hardware_enforced.to_dict(),
        }


@dataclass(frozen=True)
class VerificationVerdict:
    """
    Outcome of one verification. ``accepted`` verdicts carry the record, the
    matched anchor, the attested leaf key and the ordered chain (leaf first);
    rejected verdicts carry the first error encountered.
    """

    accepted: bool
    reference_time: int
    record: Optional[KeyAttestationRecord] = None
    anchor: Optional[TrustAnchor] = None
    attested_key: Optional[PublicKey] = None
    certificates: Tuple[ParsedCertificate, ...] = ()
    certificate_ids: Tuple[Tuple[bytes, bytes], ...] = ()
    error: Optional[AttestationError] = field(default=None)

    @classmethod
    def accept(
        cls,
        *,
        reference_time: int,
        record: KeyAttestationRecord,
        anchor: TrustAnchor,
        attested_key: PublicKey,
        certificates: Tuple[ParsedCertificate, ...],
    ) -> "VerificationVerdict":
        return cls(
            accepted=True,
            reference_time=reference_time,
            record=record,
            anchor=anchor,
            attested_key=attested_key,
            certificates=tuple(certificates),
            certificate_ids=tuple(c.certificate_id for c in certificates),
        )

    @classmethod
    def reject(cls, error: AttestationError, *, reference_time: int) -> "VerificationVerdict":
        return cls(accepted=False, reference_time=reference_time, error=error)

    def rejected_with(self, error: AttestationError) -> "VerificationVerdict":
        """Same context, turned into a rejection."""
        return replace(self, accepted=False, error=error)

    def __bool__(self) -> bool:
        return self.accepted

    @property
    def reason(self) -> str:
        return "accepted" if self.accepted else (self.error.reason if self.error else "rejected")

    def require_ok(self) -> "VerificationVerdict":
        if not self.accepted:
            if self.error is not None:
                raise self.error
            raise AttestationError(msg="attestation rejected")
        return self

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "accepted": self.accepted,
            "reason": self.reason,
            "reference_time": self.reference_time,
        }
        if self.error is not None:
            out["error"] = self.error.to_dict()
        if self.record is not None:
            out["record"] = self.record.to_dict()
        if self.anchor is not None:
            out["anchor"] = self.anchor.to_dict()
        if self.attested_key is not None:
            out["attested_key"] = key_name(self.attested_key)
        if self.certificates:
            out["chain"] = [
                {"subject": str(c.subject), "sha256": c.fingerprint.hex()} for c in self.certificates
            ]
        return out


def _jsonable(v: Any) -> Any:
    if isinstance(v, bytes):
        return v.hex()
    if isinstance(v, RootOfTrust):
        return {
            "verified_boot_key": v.verified_boot_key.hex(),
            "device_locked": v.device_locked,
            "verified_boot_state": v.verified_boot_state.name,
            "verified_boot_hash": v.verified_boot_hash.hex() if v.verified_boot_hash is not None else None,
        }
    if isinstance(v, tuple):
        return [_jsonable(x) for x in v]
    return v


__all__ = [
    "SecurityLevel",
    "VerifiedBootState",
    "Tag",
    "RootOfTrust",
    "AuthorizationList",
    "KeyAttestationRecord",
    "VerificationVerdict",
]
