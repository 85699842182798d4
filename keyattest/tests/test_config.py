from __future__ import annotations

import json
import os

import pytest

from keyattest import config
from keyattest.chain import ChainLimits
from keyattest.policy import Policy
from keyattest.types import SecurityLevel, VerifiedBootState
from keyattest.x509 import der_to_pem


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for k in list(os.environ):
        if k.startswith(config.ENV_PREFIX):
            monkeypatch.delenv(k, raising=False)


def test_defaults():
    cfg = config.load()
    assert cfg.chain_limits() == ChainLimits()
    assert cfg.build_policy() == Policy()
    assert cfg.anchors.include_builtin is True
    assert cfg.log.level == "INFO"


def test_toml_file(tmp_path):
    path = tmp_path / "keyattest.toml"
    path.write_text(
        """
[limits]
max_chain_length = 4
require_ca_issuers = false

[policy]
min_security_level = "STRONG_BOX"
accepted_boot_states = ["VERIFIED", "SELF_SIGNED"]
max_certificate_age = 600

[log]
format = "json"
""",
        encoding="utf-8",
    )
    cfg = config.load(path)
    assert cfg.limits.max_chain_length == 4
    assert cfg.limits.max_certificate_size == 3000
    assert cfg.chain_limits().require_ca_issuers is False
    policy = cfg.build_policy()
    assert policy.min_security_level == SecurityLevel.STRONG_BOX
    assert policy.accepted_boot_states == frozenset({VerifiedBootState.VERIFIED, VerifiedBootState.SELF_SIGNED})
    assert policy.max_certificate_age == 600
    assert cfg.log.format == "json"


def test_json_file(tmp_path):
    path = tmp_path / "keyattest.json"
    path.write_text(json.dumps({"limits": {"max_der_depth": 16}}), encoding="utf-8")
    assert config.load(path).chain_limits().max_depth == 16


def test_env_over_file_and_overrides_over_env(tmp_path, monkeypatch):
    path = tmp_path / "c.toml"
    path.write_text("[limits]\nmax_chain_length = 4\n", encoding="utf-8")
    monkeypatch.setenv("KEYATTEST_MAX_CHAIN_LENGTH", "3")
    monkeypatch.setenv("KEYATTEST_ACCEPTED_BOOT_STATES", "any")
    monkeypatch.setenv("KEYATTEST_REQUIRE_LOCKED", "yes")
    monkeypatch.setenv("KEYATTEST_LOG_LEVEL", "debug")
    cfg = config.load(path)
    assert cfg.limits.max_chain_length == 3
    assert cfg.build_policy().accepted_boot_states is None
    assert cfg.build_policy().require_device_locked is True
    assert cfg.log.level == "DEBUG"

    cfg = config.load(path, limits={"max_chain_length": 2})
    assert cfg.limits.max_chain_length == 2


def test_env_anchor_files(tmp_path, monkeypatch, chain):
    pem = tmp_path / "roots.pem"
    pem.write_text(der_to_pem([chain.root]), encoding="utf-8")
    monkeypatch.setenv("KEYATTEST_BUILTIN_ANCHORS", "0")
    monkeypatch.setenv("KEYATTEST_ANCHORS", f" {pem} , ")
    cfg = config.load()
    assert cfg.anchors.pem_files == [str(pem)]
    anchors = cfg.build_anchors()
    assert len(anchors.anchors) == 1


def test_builtin_and_extra_anchors(tmp_path, chain):
    pem = tmp_path / "roots.pem"
    pem.write_text(der_to_pem([chain.root]), encoding="utf-8")
    cfg = config.load(anchors={"pem_files": [str(pem)]})
    builtin = config.load().build_anchors()
    assert len(cfg.build_anchors().anchors) == len(builtin.anchors) + 1


@pytest.mark.parametrize(
    "overrides,exc",
    [
        ({"limits": {"max_chain_length": 0}}, ValueError),
        ({"limits": {"max_der_depth": 1000}}, ValueError),
        ({"policy": {"min_security_level": "nope"}}, KeyError),
        ({"engine": {}}, ValueError),
    ],
)
def test_invalid_values_fail_at_load(overrides, exc):
    with pytest.raises(exc):
        config.load(**overrides)


def test_bad_env_int(monkeypatch):
    monkeypatch.setenv("KEYATTEST_MAX_CERT_SIZE", "big")
    with pytest.raises(ValueError):
        config.load()


def test_missing_or_unsupported_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        config.load(tmp_path / "absent.toml")
    other = tmp_path / "c.yaml"
    other.write_text("limits: {}\n", encoding="utf-8")
    with pytest.raises(ValueError):
        config.load(other)


def test_to_dict_reflects_overrides():
    cfg = config.load(policy={"max_certificate_age": 60})
    assert cfg.to_dict()["policy"] == {"max_certificate_age": 60}
    assert cfg.to_dict()["limits"]["max_chain_length"] == 5


def test_misspelled_settings_fail_at_load(tmp_path):
    path = tmp_path / "typo.toml"
    path.write_text('[policy]\nrequired_challange = "cafe"\nmin_securty_level = "STRONG_BOX"\n', encoding="utf-8")
    with pytest.raises(ValueError, match="required_challange"):
        config.load(path)

    path.write_text("[limits]\nmax_chain_lenght = 2\n", encoding="utf-8")
    with pytest.raises(ValueError, match="max_chain_lenght"):
        config.load(path)

    with pytest.raises(ValueError):
        config.load(log={"colour": True})
    with pytest.raises(ValueError):
        Policy.from_mapping({"min_securty_level": "STRONG_BOX"})


def test_string_booleans_are_parsed(tmp_path):
    path = tmp_path / "c.json"
    path.write_text(
        json.dumps(
            {
                "limits": {"require_ca_issuers": "false"},
                "anchors": {"include_builtin": "no"},
                "policy": {"require_device_locked": "true"},
            }
        ),
        encoding="utf-8",
    )
    cfg = config.load(path)
    assert cfg.chain_limits().require_ca_issuers is False
    assert cfg.anchors.include_builtin is False
    assert cfg.build_policy().require_device_locked is True

    with pytest.raises(ValueError):
        config.load(limits={"require_ca_issuers": "maybe"})


@pytest.mark.parametrize("section", ["limits", "anchors", "policy", "log"])
def test_section_must_be_a_table(tmp_path, section):
    path = tmp_path / "c.toml"
    path.write_text(f"{section} = 5\n", encoding="utf-8")
    with pytest.raises(ValueError, match=section):
        config.load(path)


def test_non_integer_limit():
    with pytest.raises(ValueError):
        config.load(limits={"max_chain_length": "five"})
    with pytest.raises(ValueError):
        config.load(limits={"max_chain_length": True})
