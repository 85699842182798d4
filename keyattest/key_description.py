"""
Decoder for the Android key attestation extension (OID 1.3.6.1.4.1.11129.2.1.17).

    KeyDescription ::= SEQUENCE {
        attestationVersion         INTEGER,
        attestationSecurityLevel   SecurityLevel,
        keyMintVersion             INTEGER,
        keyMintSecurityLevel       SecurityLevel,
        attestationChallenge       OCTET STRING,
        uniqueId                   OCTET STRING,
        softwareEnforced           AuthorizationList,
        hardwareEnforced           AuthorizationList,
    }

    AuthorizationList ::= SEQUENCE {
        purpose        [1]   EXPLICIT SET OF INTEGER OPTIONAL,
        ...
        rootOfTrust    [704] EXPLICIT RootOfTrust OPTIONAL,
        ...
    }

    RootOfTrust ::= SEQUENCE {
        verifiedBootKey   OCTET STRING,
        deviceLocked      BOOLEAN,
        verifiedBootState VerifiedBootState,
        verifiedBootHash  OCTET STRING,     -- attestation version 3 and later
    }

The eight top-level fields are mandatory in every supported version. Fields
inside an authorization list are optional, appear in ascending tag order and
are each wrapped in an explicit context tag; tags this module does not know
are kept with their raw inner encoding.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Tuple

from . import der
from .errors import ExtensionError, ExtensionErrorKind
from .types import AuthorizationList, KeyAttestationRecord, RootOfTrust, SecurityLevel, Tag, VerifiedBootState

# Keymaster 2/3/4/4.1 use 1, 2, 3, 4; KeyMint 1/2/3/4 use 100, 200, 300, 400.
SUPPORTED_VERSIONS = frozenset({1, 2, 3, 4, 100, 200, 300, 400})

ROOT_OF_TRUST_HASH_SINCE = 3

_TOP_LEVEL: Tuple[Tuple[str, int], ...] = (
    ("attestationVersion", der.INTEGER),
    ("attestationSecurityLevel", der.ENUMERATED),
    ("keyMintVersion", der.INTEGER),
    ("keyMintSecurityLevel", der.ENUMERATED),
    ("attestationChallenge", der.OCTET_STRING),
    ("uniqueId", der.OCTET_STRING),
    ("softwareEnforced", der.SEQUENCE),
    ("hardwareEnforced", der.SEQUENCE),
)

_INT = "int"
_SET_INT = "set_int"
_NULL = "null"
_BYTES = "bytes"
_ROT = "root_of_trust"

_TAG_KINDS: Dict[int, str] = {
    Tag.PURPOSE: _SET_INT,
    Tag.ALGORITHM: _INT,
    Tag.KEY_SIZE: _INT,
    Tag.DIGEST: _SET_INT,
    Tag.PADDING: _SET_INT,
    Tag.EC_CURVE: _INT,
    Tag.RSA_PUBLIC_EXPONENT: _INT,
    Tag.MGF_DIGEST: _SET_INT,
    Tag.ROLLBACK_RESISTANCE: _NULL,
    Tag.EARLY_BOOT_ONLY: _NULL,
    Tag.ACTIVE_DATETIME: _INT,
    Tag.ORIGINATION_EXPIRE_DATETIME: _INT,
    Tag.USAGE_EXPIRE_DATETIME: _INT,
    Tag.USAGE_COUNT_LIMIT: _INT,
    Tag.NO_AUTH_REQUIRED: _NULL,
    Tag.USER_AUTH_TYPE: _INT,
    Tag.AUTH_TIMEOUT: _INT,
    Tag.ALLOW_WHILE_ON_BODY: _NULL,
    Tag.TRUSTED_USER_PRESENCE_REQUIRED: _NULL,
    Tag.TRUSTED_CONFIRMATION_REQUIRED: _NULL,
    Tag.UNLOCKED_DEVICE_REQUIRED: _NULL,
    Tag.ALL_APPLICATIONS: _NULL,
    Tag.APPLICATION_ID: _BYTES,
    Tag.CREATION_DATETIME: _INT,
    Tag.ORIGIN: _INT,
    Tag.ROLLBACK_RESISTANT: _NULL,
    Tag.ROOT_OF_TRUST: _ROT,
    Tag.OS_VERSION: _INT,
    Tag.OS_PATCH_LEVEL: _INT,
    Tag.ATTESTATION_APPLICATION_ID: _BYTES,
    Tag.ATTESTATION_ID_BRAND: _BYTES,
    Tag.ATTESTATION_ID_DEVICE: _BYTES,
    Tag.ATTESTATION_ID_PRODUCT: _BYTES,
    Tag.ATTESTATION_ID_SERIAL: _BYTES,
    Tag.ATTESTATION_ID_IMEI: _BYTES,
    Tag.ATTESTATION_ID_MEID: _BYTES,
    Tag.ATTESTATION_ID_MANUFACTURER: _BYTES,
    Tag.ATTESTATION_ID_MODEL: _BYTES,
    Tag.VENDOR_PATCH_LEVEL: _INT,
    Tag.BOOT_PATCH_LEVEL: _INT,
    Tag.DEVICE_UNIQUE_ATTESTATION: _NULL,
    Tag.ATTESTATION_ID_SECOND_IMEI: _BYTES,
    Tag.MODULE_HASH: _BYTES,
}


def peek_version(value: bytes, *, max_depth: int = der.DEFAULT_MAX_DEPTH) -> int:
    """Attestation version without decoding the rest of the payload."""
    root = _root(value, max_depth)
    return _version(root)


def decode_key_description(value: bytes, *, max_depth: int = der.DEFAULT_MAX_DEPTH) -> KeyAttestationRecord:
    """Decode the extension value (the OCTET STRING contents) into a record."""
    root = _root(value, max_depth)
    version = _version(root)

    fields = root.children
    for i, (name, tag_number) in enumerate(_TOP_LEVEL):
        if i >= len(fields) or not fields[i].tag.is_universal(tag_number):
            ctx = {"position": i}
            if i < len(fields):
                ctx["got"] = str(fields[i].tag)
            raise ExtensionError(
                ExtensionErrorKind.MISSING_MANDATORY_FIELD,
                f"KeyDescription field {name} missing or mistyped",
                field_name=name,
                ctx=ctx,
            )
    if len(fields) > len(_TOP_LEVEL):
        raise ExtensionError(
            ExtensionErrorKind.MALFORMED,
            "unexpected trailing KeyDescription fields",
            ctx={"count": len(fields)},
        )

    return KeyAttestationRecord(
        attestation_version=version,
        security_level=_security_level(fields[1], "attestationSecurityLevel"),
        keymaster_version=fields[2].as_int(),
        keymaster_security_level=_security_level(fields[3], "keyMintSecurityLevel"),
        challenge=fields[4].as_octets(),
        unique_id=fields[5].as_octets(),
        software_enforced=decode_authorization_list(fields[6], version, "softwareEnforced"),
        hardware_enforced=decode_authorization_list(fields[7], version, "hardwareEnforced"),
    )


def _root(value: bytes, max_depth: int) -> der.Node:
    root = der.decode(value, max_depth=max_depth)
    if not root.tag.is_universal(der.SEQUENCE):
        raise ExtensionError(ExtensionErrorKind.MALFORMED, "KeyDescription is not a SEQUENCE")
    return root


def _version(root: der.Node) -> int:
    if not root.children or not root[0].tag.is_universal(der.INTEGER):
        raise ExtensionError(
            ExtensionErrorKind.MISSING_MANDATORY_FIELD,
            "attestation version missing",
            field_name="attestationVersion",
        )
    version = root[0].as_int()
    if version not in SUPPORTED_VERSIONS:
        raise ExtensionError(
            ExtensionErrorKind.UNSUPPORTED_VERSION,
            "unsupported attestation version",
            ctx={"version": version},
        )
    return version


def _security_level(node: der.Node, name: str) -> SecurityLevel:
    v = node.as_int()
    try:
        return SecurityLevel(v)
    except ValueError as e:
        raise ExtensionError(
            ExtensionErrorKind.MALFORMED, "unknown security level", field_name=name, ctx={"value": v}, cause=e
        ) from e


# ─────────────────────────────────────────────────────────────────────────────
# Authorization lists
# ─────────────────────────────────────────────────────────────────────────────


def _bad_list(msg: str, list_name: str, **ctx: Any) -> ExtensionError:
    return ExtensionError(
        ExtensionErrorKind.MALFORMED_AUTHORIZATION_LIST, msg, field_name=list_name, ctx=ctx
    )


def decode_authorization_list(node: der.Node, version: int, list_name: str) -> AuthorizationList:
    entries: List[Tuple[int, Any]] = []
    previous = -1
    for child in node:
        t = child.tag
        if t.cls != der.TagClass.CONTEXT or not t.constructed or len(child) != 1:
            raise _bad_list("entry is not an explicit context tag", list_name, tag=str(t))
        if t.number <= previous:
            raise _bad_list("tags not in strictly ascending order", list_name, tag=t.number, previous=previous)
        previous = t.number
        entries.append((t.number, _decode_value(t.number, child[0], version, list_name)))
    return AuthorizationList(tuple(entries))


def _decode_value(tag: int, inner: der.Node, version: int, list_name: str) -> Any:
    kind = _TAG_KINDS.get(tag)
    if kind is None:
        return inner.encoded
    decoder = _VALUE_DECODERS[kind]
    return decoder(tag, inner, version, list_name)


def _want(inner: der.Node, number: int, tag: int, list_name: str) -> der.Node:
    if not inner.tag.is_universal(number):
        raise _bad_list("unexpected value type", list_name, tag=tag, got=str(inner.tag))
    return inner


def _int_value(tag: int, inner: der.Node, version: int, list_name: str) -> int:
    return _want(inner, der.INTEGER, tag, list_name).as_int()


def _set_int_value(tag: int, inner: der.Node, version: int, list_name: str) -> Tuple[int, ...]:
    _want(inner, der.SET, tag, list_name)
    return tuple(_want(v, der.INTEGER, tag, list_name).as_int() for v in inner)


def _null_value(tag: int, inner: der.Node, version: int, list_name: str) -> bool:
    _want(inner, der.NULL, tag, list_name)
    return True


def _bytes_value(tag: int, inner: der.Node, version: int, list_name: str) -> bytes:
    return _want(inner, der.OCTET_STRING, tag, list_name).as_octets()


def _root_of_trust_value(tag: int, inner: der.Node, version: int, list_name: str) -> RootOfTrust:
    _want(inner, der.SEQUENCE, tag, list_name)
    parts = inner.children
    expected = (
        ("verifiedBootKey", der.OCTET_STRING),
        ("deviceLocked", der.BOOLEAN),
        ("verifiedBootState", der.ENUMERATED),
        ("verifiedBootHash", der.OCTET_STRING),
    )
    required = 4 if version >= ROOT_OF_TRUST_HASH_SINCE else 3
    if len(parts) > len(expected):
        raise _bad_list("RootOfTrust has trailing fields", list_name, tag=tag)
    for i, (name, number) in enumerate(expected):
        if i >= len(parts):
            if i < required:
                raise ExtensionError(
                    ExtensionErrorKind.MISSING_MANDATORY_FIELD,
                    f"RootOfTrust.{name} missing",
                    field_name=f"rootOfTrust.{name}",
                    ctx={"version": version},
                )
            break
        _want(parts[i], number, tag, list_name)

    state = parts[2].as_int()
    try:
        boot_state = VerifiedBootState(state)
    except ValueError as e:
        raise _bad_list("unknown verified boot state", list_name, tag=tag, value=state) from e
    return RootOfTrust(
        verified_boot_key=parts[0].as_octets(),
        device_locked=parts[1].as_bool(),
        verified_boot_state=boot_state,
        verified_boot_hash=parts[3].as_octets() if len(parts) > 3 else None,
    )


_VALUE_DECODERS: Dict[str, Callable[[int, der.Node, int, str], Any]] = {
    _INT: _int_value,
    _SET_INT: _set_int_value,
    _NULL: _null_value,
    _BYTES: _bytes_value,
    _ROT: _root_of_trust_value,
}


__all__ = [
    "SUPPORTED_VERSIONS",
    "peek_version",
    "decode_key_description",
    "decode_authorization_list",
]
