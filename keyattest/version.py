"""
Version of the keyattest package.

KEYATTEST_VERSION overrides the in-tree value at build time.
"""

from __future__ import annotations

import os

__version__ = os.getenv("KEYATTEST_VERSION", "0.1.0")


def runtime_banner(prefix: str = "keyattest") -> str:
    return f"{prefix} {__version__}"


__all__ = ["__version__", "runtime_banner"]
