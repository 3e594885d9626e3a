"""Canonical JSON and stable hashing.

Canonical form
──────────────
  * mapping keys sorted at every level
  * list order preserved
  * ``None``-valued mapping entries omitted (``None`` inside a list → null)
  * enums → raw value, dataclass contracts → ``to_dict()``, tuples → lists
  * compact separators, UTF-8, no ASCII escaping
"""

from __future__ import annotations

import hashlib
import json
from enum import Enum
from typing import Any

from src.contracts.job import CANONICAL_ALGORITHM, HASH_ALGORITHM, Canonicalization


def canonicalize_value(value: Any) -> Any:
    """Return a plain JSON-compatible copy of *value* in canonical shape."""
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, "to_dict") and callable(value.to_dict):
        return canonicalize_value(value.to_dict())
    if isinstance(value, dict):
        return {
            str(k): canonicalize_value(v)
            for k, v in sorted(value.items(), key=lambda kv: str(kv[0]))
            if v is not None
        }
    if isinstance(value, (list, tuple)):
        return [canonicalize_value(v) for v in value]
    if isinstance(value, float) and value.is_integer():
        # 2.0 and 2 must hash the same
        return int(value)
    return value


def canonical_json(value: Any) -> str:
    return json.dumps(
        canonicalize_value(value),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def canonicalize(value: Any) -> tuple[str, str]:
    """Return ``(canonical_json, sha256_hex)`` for *value*."""
    text = canonical_json(value)
    return text, sha256_hex(text)


def stable_hash(value: Any) -> str:
    return canonicalize(value)[1]


def hash_canonical_json(value: Any) -> Canonicalization:
    return Canonicalization(
        hash=stable_hash(value),
        algorithm=CANONICAL_ALGORITHM,
        hash_algorithm=HASH_ALGORITHM,
    )


def short_hash(value: Any, length: int = 16) -> str:
    return stable_hash(value)[:length]


def content_id(value: Any, prefix: str | None = None) -> str:
    """Content-addressable identifier, e.g. ``grp-3f2a9c0d1b4e5f60``."""
    digest = short_hash(value)
    return f"{prefix}-{digest}" if prefix else digest


def seeded_id(prefix: str, seed: str, length: int = 12) -> str:
    """``<prefix>-<sha256(seed)[:length]>`` — deterministic ids for stable output."""
    return f"{prefix}-{sha256_hex(seed)[:length]}"


def stable_pretty_stringify(value: Any) -> str:
    """Sorted, indented JSON with a trailing newline (human-diffable files)."""
    return (
        json.dumps(canonicalize_value(value), sort_keys=True, indent=2, ensure_ascii=False)
        + "\n"
    )


def deep_equal(a: Any, b: Any) -> bool:
    return canonical_json(a) == canonical_json(b)
