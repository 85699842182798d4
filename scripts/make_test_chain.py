#!/usr/bin/env python3
"""
Write a synthetic attestation chain (chain.pem) and its root (root.pem) to a
directory, for trying the CLI without a device:

    python scripts/make_test_chain.py out/ --security-level 2 --challenge cafe
    keyattest verify out/chain.pem --no-builtin-roots --roots out/root.pem --at 1700000000

Needs the test extra (cryptography).
"""
import argparse
from pathlib import Path

from keyattest.tests.builders import (
    REFERENCE_TIME,
    build_chain,
    default_hardware_entries,
    key_description,
    root_of_trust,
    to_pem,
)

ap = argparse.ArgumentParser()
ap.add_argument("out", type=Path)
ap.add_argument("--version", type=int, default=200, help="attestation version")
ap.add_argument("--security-level", type=int, default=1, help="0 software, 1 TEE, 2 StrongBox")
ap.add_argument("--challenge", default="", help="challenge (hex)")
ap.add_argument("--boot-state", type=int, default=0, help="0 verified .. 3 failed")
ap.add_argument("--unlocked", action="store_true")
args = ap.parse_args()

rot = root_of_trust(
    state=args.boot_state,
    locked=not args.unlocked,
    boot_hash=None if args.version < 3 else b"\x22" * 32,
)
hardware = default_hardware_entries({704: rot})
payload = key_description(
    version=args.version,
    security_level=args.security_level,
    challenge=bytes.fromhex(args.challenge),
    hardware=hardware,
)
chain = build_chain(attestation=payload)

args.out.mkdir(parents=True, exist_ok=True)
(args.out / "chain.pem").write_text(to_pem(chain.certs), encoding="utf-8")
(args.out / "root.pem").write_text(to_pem([chain.root]), encoding="utf-8")
print(f"wrote {args.out / 'chain.pem'} and {args.out / 'root.pem'} (verify with --at {REFERENCE_TIME})")
