"""Content hashes recorded with every plan."""

from __future__ import annotations

import hashlib
import json
from typing import Any


def sha256_hex(value: Any) -> str:
    """SHA-256 of a string, or of the compact JSON encoding of anything else."""

    if not isinstance(value, str):
        value = json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def stable_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def hash_ssot(ssot_text: str) -> str:
    return sha256_hex((ssot_text or "").strip())


def hash_snapshot(payload: Any) -> str:
    return sha256_hex(stable_json(payload))
