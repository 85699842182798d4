"""
Typed exceptions for the keyattest verification engine.

Every failure the engine can report is one of five families, each with a
closed set of kinds:

  - DecodeError     malformed DER / size ceilings
  - CryptoError     invalid keys, points, scalars or signatures
  - ChainError      broken, expired, unanchored or oversized chains
  - ExtensionError  malformed or unsupported key-attestation payloads
  - PolicyError     well-formed attestations that the policy rejects

Components raise these; `keyattest.verify.verify_attestation` catches them and
returns them inside a rejected verdict. Errors compare by value (code, msg,
ctx) so two verifications of the same input produce equal verdicts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class DecodeErrorKind(str, Enum):
    TRUNCATED = "TRUNCATED"
    INVALID_TAG = "INVALID_TAG"
    NON_MINIMAL_LENGTH = "NON_MINIMAL_LENGTH"
    DEPTH_EXCEEDED = "DEPTH_EXCEEDED"
    TRAILING_BYTES = "TRAILING_BYTES"
    INDEFINITE_LENGTH = "INDEFINITE_LENGTH"
    MALFORMED = "MALFORMED"  # content does not match the declared type
    OVERSIZED = "OVERSIZED"  # input above a configured byte ceiling


class CryptoErrorKind(str, Enum):
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    POINT_NOT_ON_CURVE = "POINT_NOT_ON_CURVE"
    SCALAR_OUT_OF_RANGE = "SCALAR_OUT_OF_RANGE"
    UNSUPPORTED_ALGORITHM = "UNSUPPORTED_ALGORITHM"
    INVALID_KEY = "INVALID_KEY"


class ChainErrorKind(str, Enum):
    SIGNATURE_MISMATCH = "SIGNATURE_MISMATCH"
    EXPIRED = "EXPIRED"
    UNKNOWN_ROOT = "UNKNOWN_ROOT"
    TOO_LONG = "TOO_LONG"
    EMPTY = "EMPTY"
    NOT_A_CA = "NOT_A_CA"


class ExtensionErrorKind(str, Enum):
    UNSUPPORTED_VERSION = "UNSUPPORTED_VERSION"
    MALFORMED_AUTHORIZATION_LIST = "MALFORMED_AUTHORIZATION_LIST"
    MISSING_MANDATORY_FIELD = "MISSING_MANDATORY_FIELD"
    MALFORMED = "MALFORMED"


class PolicyErrorKind(str, Enum):
    SECURITY_LEVEL_TOO_LOW = "SECURITY_LEVEL_TOO_LOW"
    BOOT_STATE_NOT_ACCEPTED = "BOOT_STATE_NOT_ACCEPTED"
    CERTIFICATE_TOO_OLD = "CERTIFICATE_TOO_OLD"
    APPLICATION_ID_MISMATCH = "APPLICATION_ID_MISMATCH"
    DEVICE_NOT_LOCKED = "DEVICE_NOT_LOCKED"
    PATCH_LEVEL_TOO_OLD = "PATCH_LEVEL_TOO_OLD"
    CHALLENGE_MISMATCH = "CHALLENGE_MISMATCH"
    UNKNOWN_CRITICAL_EXTENSION = "UNKNOWN_CRITICAL_EXTENSION"


@dataclass
class AttestationError(Exception):
    """
    Base structured error.

    Fields:
      code:  stable machine code (one of the *ErrorKind enums)
      msg:   human-readable summary
      ctx:   small dict of contextual fields (indices, field names, hex ids)
      cause: optional underlying exception (not compared, not serialized)
    """

    code: Enum | str = "UNKNOWN"
    msg: str = "attestation verification failed"
    ctx: Dict[str, Any] = field(default_factory=dict)
    cause: Optional[BaseException] = field(default=None, compare=False)

    family = "attestation"

    def __post_init__(self) -> None:
        if not isinstance(self.ctx, dict):
            self.ctx = {"_ctx_type_error": str(type(self.ctx)), "repr": repr(self.ctx)}

    def __str__(self) -> str:
        parts = [f"[{self.family}.{_code_str(self.code)}] {self.msg}"]
        if self.ctx:
            parts.append(f"ctx={self.ctx}")
        if self.cause:
            parts.append(f"cause={self.cause!r}")
        return " ".join(parts)

    @property
    def kind(self) -> Enum | str:
        return self.code

    @property
    def reason(self) -> str:
        """Dotted machine reason, e.g. ``chain.SIGNATURE_MISMATCH``."""
        return f"{self.family}.{_code_str(self.code)}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "family": self.family,
            "code": _code_str(self.code),
            "msg": self.msg,
            "ctx": _jsonable(self.ctx),
        }


def _code_str(code: Enum | str) -> str:
    return code.value if isinstance(code, Enum) else str(code)


def _jsonable(ctx: Mapping[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for k, v in ctx.items():
        if isinstance(v, (bytes, bytearray)):
            out[k] = bytes(v).hex()
        elif isinstance(v, Enum):
            out[k] = v.value if isinstance(v.value, (str, int)) else v.name
        else:
            out[k] = v
    return out


def _ctx(base: Dict[str, Any], extra: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    if extra:
        base.update(extra)
    return base


class DecodeError(AttestationError):
    """Malformed DER, or input exceeding a configured ceiling."""

    family = "decode"

    def __init__(
        self,
        kind: DecodeErrorKind,
        msg: str = "DER decoding failed",
        *,
        offset: Optional[int] = None,
        ctx: Optional[Mapping[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        base: Dict[str, Any] = {}
        if offset is not None:
            base["offset"] = int(offset)
        super().__init__(code=DecodeErrorKind(kind), msg=msg, ctx=_ctx(base, ctx), cause=cause)


class CryptoError(AttestationError):
    """Key, point, scalar or signature failure."""

    family = "crypto"

    def __init__(
        self,
        kind: CryptoErrorKind,
        msg: str = "cryptographic check failed",
        *,
        ctx: Optional[Mapping[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(code=CryptoErrorKind(kind), msg=msg, ctx=_ctx({}, ctx), cause=cause)


class ChainError(AttestationError):
    """Certificate-path failure. ``index`` is leaf-first (leaf = 0)."""

    family = "chain"

    def __init__(
        self,
        kind: ChainErrorKind,
        msg: str = "certificate chain rejected",
        *,
        index: Optional[int] = None,
        ctx: Optional[Mapping[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        base: Dict[str, Any] = {}
        if index is not None:
            base["index"] = int(index)
        super().__init__(code=ChainErrorKind(kind), msg=msg, ctx=_ctx(base, ctx), cause=cause)

    @property
    def index(self) -> Optional[int]:
        return self.ctx.get("index")


class ExtensionError(AttestationError):
    """The key-attestation extension is missing, malformed or unsupported."""

    family = "extension"

    def __init__(
        self,
        kind: ExtensionErrorKind,
        msg: str = "key attestation extension rejected",
        *,
        field_name: Optional[str] = None,
        ctx: Optional[Mapping[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        base: Dict[str, Any] = {}
        if field_name is not None:
            base["field"] = field_name
        super().__init__(
            code=ExtensionErrorKind(kind), msg=msg, ctx=_ctx(base, ctx), cause=cause
        )

    @property
    def field(self) -> Optional[str]:
        return self.ctx.get("field")


class PolicyError(AttestationError):
    """A well-formed attestation that does not satisfy the policy."""

    family = "policy"

    def __init__(
        self,
        kind: PolicyErrorKind,
        msg: str = "attestation rejected by policy",
        *,
        ctx: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(code=PolicyErrorKind(kind), msg=msg, ctx=_ctx({}, ctx))


# Rethrow helper ---------------------------------------------------------------


def rethrow_as(factory, **ctx: Any):
    """
    Context manager converting an AttestationError raised inside the block
    into the error produced by ``factory(err)``, chaining the original.

      with rethrow_as(lambda e: ChainError(ChainErrorKind.SIGNATURE_MISMATCH, index=i, cause=e)):
          key = public_key_from_spki(issuer.spki)
    """

    class _Ctx:
        def __enter__(self) -> None:
            return None

        def __exit__(self, exc_type, exc, tb) -> bool:
            if exc is None or not isinstance(exc, AttestationError):
                return False
            new = factory(exc)
            if ctx:
                new.ctx.update(ctx)
            raise new from exc

    return _Ctx()


__all__ = [
    "AttestationError",
    "DecodeError",
    "DecodeErrorKind",
    "CryptoError",
    "CryptoErrorKind",
    "ChainError",
    "ChainErrorKind",
    "ExtensionError",
    "ExtensionErrorKind",
    "PolicyError",
    "PolicyErrorKind",
    "rethrow_as",
]
