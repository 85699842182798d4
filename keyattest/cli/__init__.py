"""
keyattest.cli
-------------
Command-line entrypoints:

- verify : Verify an attestation chain against pinned roots at a reference time
- decode : Print the attestation record of a leaf certificate (no trust decision)

Usage:
  keyattest verify chain.pem --at 1700000000
  python -m keyattest.cli decode leaf.der
"""

from __future__ import annotations

from .verify import build_app, main

__all__ = ["build_app", "main"]
