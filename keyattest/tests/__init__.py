from __future__ import annotations

import base64
import json
from pathlib import Path
from typing import Any, Dict, List

ROOT = Path(__file__).resolve().parents[1]
VECTORS = ROOT / "test_vectors"


def load_android_vectors() -> Dict[str, Any]:
    return json.loads((VECTORS / "android_chains.json").read_text(encoding="utf-8"))


def chain_from_b64(items: List[str]) -> List[bytes]:
    return [base64.b64decode(s) for s in items]


__all__ = ["ROOT", "VECTORS", "load_android_vectors", "chain_from_b64"]
