"""Small helpers shared by the contract data-classes."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

STABLE_TIMESTAMP = "2000-01-01T00:00:00.000Z"
STABLE_ID = "00000000-0000-0000-0000-000000000000"

MAX_IDENTIFIER_LEN = 256


def parse_ts(iso: str) -> datetime:
    """Parse ISO-8601 timestamp to an aware datetime (UTC)."""
    return datetime.fromisoformat(iso.replace("Z", "+00:00"))


def format_ts(dt: datetime) -> str:
    """Format *dt* as ISO-8601 UTC with millisecond precision and ``Z`` suffix."""
    dt = dt.astimezone(UTC)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def utc_now_iso() -> str:
    return format_ts(datetime.now(UTC))


def generate_id() -> str:
    return str(uuid.uuid4())


def is_iso_timestamp(value: Any) -> bool:
    if not isinstance(value, str) or not value:
        return False
    try:
        dt = parse_ts(value)
    except ValueError:
        return False
    return dt.tzinfo is not None


def is_identifier(value: Any) -> bool:
    return isinstance(value, str) and 0 < len(value) <= MAX_IDENTIFIER_LEN


def drop_none(data: dict[str, Any]) -> dict[str, Any]:
    """Return a shallow copy of *data* without ``None`` values; enums become raw values."""
    out: dict[str, Any] = {}
    for key, value in data.items():
        if value is None:
            continue
        out[key] = value.value if isinstance(value, Enum) else value
    return out
