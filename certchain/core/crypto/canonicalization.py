"""Canonicalization helpers for stable cross-platform hashing."""

from __future__ import annotations

import unicodedata
from datetime import UTC, date, datetime
from typing import Any

import rfc8785


def canonicalize_jcs_bytes(data: Any) -> bytes:
    """Return RFC 8785 (JCS) canonical bytes.

    Keys are sorted at every nesting level and no insignificant whitespace is
    emitted, so any JCS implementation in any language reproduces the bytes.
    """
    canonical = rfc8785.dumps(data)
    if isinstance(canonical, bytes):
        return canonical
    return str(canonical).encode("utf-8")


def normalize_text(value: str) -> str:
    """Trim surrounding whitespace and apply Unicode NFC normalization."""
    return unicodedata.normalize("NFC", value).strip()


def to_unix_ms(value: datetime | int) -> int:
    """Render a timestamp as integer milliseconds since the epoch.

    Naive datetimes are interpreted as UTC.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return int(value.timestamp() * 1000)
    return int(value)


def normalize_value(value: Any) -> Any:
    """Recursively normalize a JSON-like value for hashing.

    Strings are trimmed and NFC-normalized, ``None`` entries are dropped from
    mappings, datetimes become unix milliseconds and dates become ISO strings.
    """
    if isinstance(value, str):
        return normalize_text(value)
    if isinstance(value, datetime):
        return to_unix_ms(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {
            str(key): normalize_value(item)
            for key, item in value.items()
            if item is not None
        }
    if isinstance(value, (list, tuple)):
        return [normalize_value(item) for item in value]
    return value
