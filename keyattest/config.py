"""
keyattest configuration loader.

Layered, with clear precedence:
    1) Explicit overrides passed to `load()` (highest)
    2) Environment variables (KEYATTEST_*)
    3) Config file (TOML or JSON)
    4) Built-in defaults (lowest)

Example TOML:

    [limits]
    max_chain_length = 5
    max_certificate_size = 3000

    [anchors]
    include_builtin = true
    pem_files = ["/etc/keyattest/extra-roots.pem"]

    [policy]
    min_security_level = "TRUSTED_ENVIRONMENT"
    accepted_boot_states = ["VERIFIED"]
    max_certificate_age = 86400

    [log]
    level = "INFO"
    format = "json"

The loaded configuration only builds the engine's explicit inputs (limits,
anchors, policy); the engine never reads configuration on its own.
"""

from __future__ import annotations

import json
import os
import tomllib
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import der
from .anchors import TrustAnchorSet
from .chain import DEFAULT_MAX_CERTIFICATE_SIZE, DEFAULT_MAX_CHAIN_LENGTH, ChainLimits
from .policy import Policy, parse_flag

ENV_PREFIX = "KEYATTEST_"


# ------------------------------
# Env helpers
# ------------------------------


def _expand(p: str | Path) -> Path:
    return Path(os.path.expandvars(str(p))).expanduser()


def _parse_bool(v: str) -> bool:
    return v.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _split_list(v: str) -> List[str]:
    return [s.strip() for s in v.split(",") if s.strip()]


def _env_int(name: str, default: int) -> int:
    v = os.environ.get(name)
    if v is None or v == "":
        return default
    try:
        return int(v, 0)
    except ValueError as e:
        raise ValueError(f"{name} must be int, got {v!r}") from e


# ------------------------------
# Typed configuration model
# ------------------------------


@dataclass
class LimitsConfig:
    max_chain_length: int = DEFAULT_MAX_CHAIN_LENGTH
    max_certificate_size: int = DEFAULT_MAX_CERTIFICATE_SIZE
    max_der_depth: int = der.DEFAULT_MAX_DEPTH
    require_ca_issuers: bool = True

    def validate(self) -> None:
        if self.max_chain_length < 1:
            raise ValueError("limits.max_chain_length must be >= 1")
        if self.max_certificate_size < 64:
            raise ValueError("limits.max_certificate_size is unreasonably small")
        if not 4 <= self.max_der_depth <= 256:
            raise ValueError("limits.max_der_depth must be within [4, 256]")


@dataclass
class AnchorsConfig:
    include_builtin: bool = True
    pem_files: List[str] = field(default_factory=list)


@dataclass
class LogConfig:
    level: str = "INFO"
    format: str = "auto"  # auto | json | text
    file: Optional[str] = None


@dataclass
class EngineConfig:
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    anchors: AnchorsConfig = field(default_factory=AnchorsConfig)
    policy: Dict[str, Any] = field(default_factory=dict)
    log: LogConfig = field(default_factory=LogConfig)

    def chain_limits(self) -> ChainLimits:
        return ChainLimits(
            max_chain_length=self.limits.max_chain_length,
            max_certificate_size=self.limits.max_certificate_size,
            max_depth=self.limits.max_der_depth,
            require_ca_issuers=self.limits.require_ca_issuers,
        )

    def build_policy(self) -> Policy:
        return Policy.from_mapping(self.policy)

    def build_anchors(self) -> TrustAnchorSet:
        anchors = TrustAnchorSet.google_hardware_attestation() if self.anchors.include_builtin else TrustAnchorSet()
        if self.anchors.pem_files:
            anchors = anchors.union(TrustAnchorSet.from_pem_files(_expand(p) for p in self.anchors.pem_files))
        return anchors

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _load_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(str(path))
    suffix = path.suffix.lower()
    with path.open("rb") as f:
        if suffix in {".toml", ".tml"}:
            return tomllib.load(f)
        if suffix == ".json":
            return json.load(f)
    raise ValueError(f"Unsupported config format: {suffix}. Use .toml or .json")


def _merge_dict(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    """Nested dict merge: values in b override a."""
    out = dict(a)
    for k, v in b.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge_dict(out[k], v)
        else:
            out[k] = v
    return out


def _env_layer() -> Dict[str, Any]:
    env = os.environ
    p = ENV_PREFIX
    layer: Dict[str, Any] = {"limits": {}, "anchors": {}, "policy": {}, "log": {}}

    if p + "MAX_CHAIN_LENGTH" in env:
        layer["limits"]["max_chain_length"] = _env_int(p + "MAX_CHAIN_LENGTH", DEFAULT_MAX_CHAIN_LENGTH)
    if p + "MAX_CERT_SIZE" in env:
        layer["limits"]["max_certificate_size"] = _env_int(p + "MAX_CERT_SIZE", DEFAULT_MAX_CERTIFICATE_SIZE)
    if p + "MAX_DER_DEPTH" in env:
        layer["limits"]["max_der_depth"] = _env_int(p + "MAX_DER_DEPTH", der.DEFAULT_MAX_DEPTH)
    if p + "REQUIRE_CA" in env:
        layer["limits"]["require_ca_issuers"] = _parse_bool(env[p + "REQUIRE_CA"])

    if p + "BUILTIN_ANCHORS" in env:
        layer["anchors"]["include_builtin"] = _parse_bool(env[p + "BUILTIN_ANCHORS"])
    if p + "ANCHORS" in env:
        layer["anchors"]["pem_files"] = _split_list(env[p + "ANCHORS"])

    if p + "MIN_SECURITY_LEVEL" in env:
        layer["policy"]["min_security_level"] = env[p + "MIN_SECURITY_LEVEL"].strip()
    if p + "ACCEPTED_BOOT_STATES" in env:
        raw = env[p + "ACCEPTED_BOOT_STATES"].strip()
        layer["policy"]["accepted_boot_states"] = None if raw.lower() in ("any", "*") else _split_list(raw)
    if p + "MAX_CERT_AGE" in env:
        layer["policy"]["max_certificate_age"] = _env_int(p + "MAX_CERT_AGE", 0)
    if p + "MIN_OS_PATCH_LEVEL" in env:
        layer["policy"]["min_os_patch_level"] = _env_int(p + "MIN_OS_PATCH_LEVEL", 0)
    if p + "REQUIRE_LOCKED" in env:
        layer["policy"]["require_device_locked"] = _parse_bool(env[p + "REQUIRE_LOCKED"])

    if p + "LOG_LEVEL" in env:
        layer["log"]["level"] = env[p + "LOG_LEVEL"].strip().upper()
    if p + "LOG_FORMAT" in env:
        layer["log"]["format"] = env[p + "LOG_FORMAT"].strip().lower()
    if p + "LOG_FILE" in env:
        layer["log"]["file"] = env[p + "LOG_FILE"].strip()

    return {k: v for k, v in layer.items() if v}


def _section(base: Dict[str, Any], name: str, model: type) -> Dict[str, Any]:
    section = base.get(name)
    if not isinstance(section, dict):
        raise ValueError(f"config section {name!r} must be a table, got {type(section).__name__}")
    unknown = set(section) - {f.name for f in fields(model)}
    if unknown:
        raise ValueError(f"unknown {name} settings: {sorted(unknown)}")
    return section


def _int(section: Dict[str, Any], key: str) -> int:
    v = section[key]
    if isinstance(v, bool):
        raise ValueError(f"limits.{key} must be int, got {v!r}")
    try:
        return int(v)
    except (TypeError, ValueError) as e:
        raise ValueError(f"limits.{key} must be int, got {v!r}") from e


def _str_list(v: Any) -> List[str]:
    if v is None:
        return []
    if isinstance(v, str):
        return _split_list(v)
    return [str(x) for x in v]


def load(config_file: Optional[str | Path] = None, **overrides: Any) -> EngineConfig:
    """
    Load the engine configuration. Precedence: overrides > env > file > defaults.

    overrides: nested keyword overrides, e.g. load(limits={"max_chain_length": 4})
    """
    base: Dict[str, Any] = EngineConfig().to_dict()

    if config_file:
        base = _merge_dict(base, _load_file(_expand(config_file)))

    base = _merge_dict(base, _env_layer())

    if overrides:
        base = _merge_dict(base, overrides)

    unknown = set(base) - {"limits", "anchors", "policy", "log"}
    if unknown:
        raise ValueError(f"unknown config sections: {sorted(unknown)}")
    limits = _section(base, "limits", LimitsConfig)
    anchors = _section(base, "anchors", AnchorsConfig)
    log = _section(base, "log", LogConfig)
    policy = base.get("policy") or {}
    if not isinstance(policy, dict):
        raise ValueError(f"config section 'policy' must be a table, got {type(policy).__name__}")

    cfg = EngineConfig(
        limits=LimitsConfig(
            max_chain_length=_int(limits, "max_chain_length"),
            max_certificate_size=_int(limits, "max_certificate_size"),
            max_der_depth=_int(limits, "max_der_depth"),
            require_ca_issuers=parse_flag("limits.require_ca_issuers", limits["require_ca_issuers"]),
        ),
        anchors=AnchorsConfig(
            include_builtin=parse_flag("anchors.include_builtin", anchors["include_builtin"]),
            pem_files=_str_list(anchors.get("pem_files")),
        ),
        policy=dict(policy),
        log=LogConfig(
            level=str(log["level"]),
            format=str(log["format"]),
            file=log.get("file"),
        ),
    )
    cfg.limits.validate()
    # Fail early on bad policy values rather than at first verification.
    cfg.build_policy()
    return cfg


__all__ = ["EngineConfig", "LimitsConfig", "AnchorsConfig", "LogConfig", "load", "ENV_PREFIX"]
