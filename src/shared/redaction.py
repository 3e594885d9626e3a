"""Denylist-based secret redaction for logs and evidence artifacts."""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any

REDACTED = "[REDACTED]"

DEFAULT_DENY_KEYS: frozenset[str] = frozenset(
    {
        "password",
        "secret",
        "token",
        "api_key",
        "apikey",
        "api-key",
        "authorization",
        "auth_token",
        "access_token",
        "refresh_token",
        "private_key",
        "privatekey",
        "secret_key",
        "secretkey",
        "credential",
        "credentials",
        "aws_secret_access_key",
        "aws_access_key_id",
        "database_url",
        "connection_string",
        "session_token",
        "cookie",
        "x-api-key",
        "bearer",
        "client_secret",
    }
)

_NORM_RE = re.compile(r"[-_\s]")


def _norm_key(key: str) -> str:
    return _NORM_RE.sub("", key.lower())


def _deny_set(extra: Iterable[str] | None) -> list[str]:
    keys = set(DEFAULT_DENY_KEYS)
    if extra:
        keys.update(extra)
    return sorted({_norm_key(k) for k in keys})


def is_denied(key: str, extra_deny_keys: Iterable[str] | None = None) -> bool:
    """True when the normalised *key* contains any normalised denied key."""
    norm = _norm_key(key)
    return any(d in norm for d in _deny_set(extra_deny_keys))


def redact(
    obj: Any,
    extra_deny_keys: Iterable[str] | None = None,
    replacement: str = REDACTED,
) -> Any:
    """Return a redacted deep copy of *obj*.

    Mapping values whose key matches the denylist are replaced; lists and
    nested mappings are walked.  Scalars are returned unchanged.  A container
    seen twice on the current path (a cycle) is replaced as well.
    """
    denied = _deny_set(extra_deny_keys)
    return _redact(obj, denied, replacement, set())


def _redact(obj: Any, denied: list[str], replacement: str, seen: set[int]) -> Any:
    if isinstance(obj, dict):
        if id(obj) in seen:
            return replacement
        seen.add(id(obj))
        out: dict[str, Any] = {}
        for key, value in obj.items():
            norm = _norm_key(str(key))
            if any(d in norm for d in denied):
                out[key] = replacement
            else:
                out[key] = _redact(value, denied, replacement, seen)
        seen.discard(id(obj))
        return out
    if isinstance(obj, (list, tuple)):
        if id(obj) in seen:
            return replacement
        seen.add(id(obj))
        items = [_redact(item, denied, replacement, seen) for item in obj]
        seen.discard(id(obj))
        return items
    return obj


def redact_string(
    text: str,
    extra_deny_keys: Iterable[str] | None = None,
    replacement: str = REDACTED,
) -> str:
    """Mask ``key=value`` / ``key: value`` and JSON ``"key": "value"`` pairs."""
    keys = set(DEFAULT_DENY_KEYS)
    if extra_deny_keys:
        keys.update(extra_deny_keys)
    out = text
    masked = re.escape(replacement)
    for key in sorted(keys, key=len, reverse=True):
        esc = re.escape(key)
        out = re.sub(
            rf'("{esc}"\s*:\s*)"[^"]*"',
            lambda m: f'{m.group(1)}"{replacement}"',
            out,
            flags=re.IGNORECASE,
        )
        # already-masked values are left alone for shorter overlapping keys
        out = re.sub(
            rf"({esc}\s*[=:]\s*)(?!{masked})[^\s,;\"'}}\]]+",
            lambda m: m.group(1) + replacement,
            out,
            flags=re.IGNORECASE,
        )
    return out
