"""
Trust anchors: the pinned vendor roots that terminate chain validation.

A `TrustAnchorSet` is an immutable mapping from a root identifier to a
`TrustAnchor`. Two identifiers are registered per anchor certificate:

  - SHA-256 of its DER SubjectPublicKeyInfo (survives root re-issuance)
  - SHA-256 of the whole certificate

Anchors built from bare fingerprints carry no key and can only match a
chain that presents the root certificate itself.

The Google hardware attestation roots ship with the package
(`keyattest/roots/google_hardware_attestation.pem`) and are available via
`TrustAnchorSet.google_hardware_attestation()`. Nothing is loaded implicitly:
callers always pass the set they trust.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Union

from .keys import SubjectPublicKeyInfo
from .x509 import ParsedCertificate, parse_certificate, pem_to_der

BUILTIN_ROOTS_RESOURCE = "google_hardware_attestation.pem"


@dataclass(frozen=True)
class TrustAnchor:
    name: str
    spki_fingerprint: Optional[bytes] = None
    certificate_fingerprint: Optional[bytes] = None
    subject: Optional[bytes] = None  # DER Name of the anchor
    spki: Optional[SubjectPublicKeyInfo] = None

    @classmethod
    def from_certificate(cls, cert: ParsedCertificate, name: Optional[str] = None) -> "TrustAnchor":
        return cls(
            name=name or _default_name(cert),
            spki_fingerprint=cert.spki.fingerprint,
            certificate_fingerprint=cert.fingerprint,
            subject=cert.subject.encoded,
            spki=cert.spki,
        )

    def identifiers(self) -> Tuple[bytes, ...]:
        return tuple(i for i in (self.spki_fingerprint, self.certificate_fingerprint) if i)

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "name": self.name,
            "spki_sha256": self.spki_fingerprint.hex() if self.spki_fingerprint else None,
            "certificate_sha256": self.certificate_fingerprint.hex()
            if self.certificate_fingerprint
            else None,
        }


def _default_name(cert: ParsedCertificate) -> str:
    return f"{str(cert.subject) or 'root'} #{cert.serial_bytes.hex()}"


class TrustAnchorSet(Mapping):
    """Immutable set of anchors, indexed by fingerprint."""

    __slots__ = ("_anchors", "_by_id")

    def __init__(self, anchors: Iterable[TrustAnchor] = ()) -> None:
        unique: List[TrustAnchor] = []
        by_id: Dict[bytes, TrustAnchor] = {}
        for a in anchors:
            ids = a.identifiers()
            if not ids:
                raise ValueError(f"trust anchor {a.name!r} has no identifier")
            if any(i in by_id for i in ids):
                continue
            unique.append(a)
            for i in ids:
                by_id[i] = a
        self._anchors: Tuple[TrustAnchor, ...] = tuple(unique)
        self._by_id = by_id

    # Mapping protocol (identifier -> anchor)
    def __getitem__(self, key: bytes) -> TrustAnchor:
        return self._by_id[key]

    def __iter__(self) -> Iterator[bytes]:
        return iter(self._by_id)

    def __len__(self) -> int:
        return len(self._by_id)

    def __repr__(self) -> str:
        return f"TrustAnchorSet({[a.name for a in self._anchors]!r})"

    @property
    def anchors(self) -> Tuple[TrustAnchor, ...]:
        return self._anchors

    def match(self, cert: ParsedCertificate) -> Optional[TrustAnchor]:
        """Anchor whose key or certificate fingerprint equals ``cert``'s."""
        return self._by_id.get(cert.spki.fingerprint) or self._by_id.get(cert.fingerprint)

    def issuers_of(self, cert: ParsedCertificate) -> Tuple[TrustAnchor, ...]:
        """Keyed anchors whose subject equals ``cert``'s issuer name."""
        return tuple(
            a for a in self._anchors if a.spki is not None and a.subject == cert.issuer.encoded
        )

    def union(self, other: "TrustAnchorSet") -> "TrustAnchorSet":
        return TrustAnchorSet(self._anchors + other.anchors)

    # --- Constructors -----------------------------------------------------

    @classmethod
    def from_certificates(
        cls, certificates: Iterable[Union[bytes, ParsedCertificate]], *, vendor: Optional[str] = None
    ) -> "TrustAnchorSet":
        out = []
        for c in certificates:
            cert = c if isinstance(c, ParsedCertificate) else parse_certificate(c)
            name = f"{vendor} #{cert.serial_bytes.hex()}" if vendor else None
            out.append(TrustAnchor.from_certificate(cert, name))
        return cls(out)

    @classmethod
    def from_pem(cls, text: str, *, vendor: Optional[str] = None) -> "TrustAnchorSet":
        return cls.from_certificates(pem_to_der(text), vendor=vendor)

    @classmethod
    def from_pem_files(cls, paths: Iterable[Union[str, Path]], *, vendor: Optional[str] = None) -> "TrustAnchorSet":
        out = cls()
        for p in paths:
            out = out.union(cls.from_pem(Path(p).expanduser().read_text(encoding="utf-8"), vendor=vendor))
        return out

    @classmethod
    def from_fingerprints(cls, fingerprints: Mapping) -> "TrustAnchorSet":
        """``{name: spki_sha256_hex}`` → key-fingerprint-only anchors."""
        return cls(
            TrustAnchor(name=str(name), spki_fingerprint=bytes.fromhex(fp)) for name, fp in fingerprints.items()
        )

    @classmethod
    def google_hardware_attestation(cls) -> "TrustAnchorSet":
        text = resources.files("keyattest").joinpath("roots").joinpath(BUILTIN_ROOTS_RESOURCE).read_text(encoding="utf-8")
        return cls.from_pem(text, vendor="google")


__all__ = ["TrustAnchor", "TrustAnchorSet", "BUILTIN_ROOTS_RESOURCE"]
