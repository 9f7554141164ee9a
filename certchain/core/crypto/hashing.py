"""
Deterministic digests over certificate content and raw bytes.

Certificate content is hashed over its canonical form: camelCase keys,
normalized values (trimmed strings, lower-cased email, integer millisecond
timestamps), optional fields omitted when absent, serialized with RFC 8785.
Two submissions that differ only in key order, surrounding whitespace or email
case therefore produce the same ``certificateHash``.
"""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel

from certchain.core.crypto.canonicalization import (
    canonicalize_jcs_bytes,
    normalize_text,
    normalize_value,
)
from certchain.core.errors import InvalidInputError

EMPTY_SHA256: str = hashlib.sha256(b"").hexdigest()

REQUIRED_CONTENT_FIELDS: tuple[str, ...] = (
    "recipientName",
    "recipientEmail",
    "issuerName",
    "courseName",
    "completionDate",
)

# Fields that are part of the stored payload envelope but not of the hashed content.
ENVELOPE_FIELDS: frozenset[str] = frozenset({"certificateHash", "type", "version"})

_SNAKE_TO_CAMEL: dict[str, str] = {
    "recipient_name": "recipientName",
    "recipient_email": "recipientEmail",
    "issuer_name": "issuerName",
    "issuer_organization": "issuerOrganization",
    "course_name": "courseName",
    "completion_date": "completionDate",
    "issue_timestamp": "issueTimestamp",
    "expiry_timestamp": "expiryTimestamp",
    "certificate_id": "certificateId",
    "file_name": "fileName",
    "file_type": "fileType",
}


def _as_mapping(content: Mapping[str, Any] | BaseModel) -> dict[str, Any]:
    if isinstance(content, BaseModel):
        return content.model_dump(by_alias=True, exclude_none=True, mode="json")
    if isinstance(content, Mapping):
        return dict(content)
    raise InvalidInputError(f"Unsupported certificate content type: {type(content).__name__}")


def _camelize_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {_SNAKE_TO_CAMEL.get(key, key): _camelize_keys(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_camelize_keys(item) for item in value]
    return value


def canonical_content(content: Mapping[str, Any] | BaseModel) -> dict[str, Any]:
    """Return the normalized dict that ``hash_content`` digests.

    Raises
    ------
    InvalidInputError
        If a required field is missing or empty after trimming.
    """
    raw = _camelize_keys(_as_mapping(content))
    normalized = normalize_value({k: v for k, v in raw.items() if k not in ENVELOPE_FIELDS})

    missing = [
        name
        for name in REQUIRED_CONTENT_FIELDS
        if not isinstance(normalized.get(name), str) or not normalized[name]
    ]
    if missing:
        raise InvalidInputError(
            f"Missing required certificate fields: {', '.join(missing)}",
            fields=missing,
        )

    normalized["recipientEmail"] = normalized["recipientEmail"].lower()
    return normalized


def canonical_bytes(content: Mapping[str, Any] | BaseModel) -> bytes:
    """RFC 8785 bytes of the canonical content."""
    return canonicalize_jcs_bytes(canonical_content(content))


def hash_content(content: Mapping[str, Any] | BaseModel) -> str:
    """Compute the ``certificateHash`` of certificate content.

    Parameters
    ----------
    content:
        A ``CertificateContent`` model or a mapping using camelCase or
        snake_case field names. Envelope fields (``certificateHash``,
        ``type``, ``version``) are ignored so a stored payload can be passed
        back in directly.

    Returns
    -------
    str
        64-character lowercase hex SHA-256 digest.

    Raises
    ------
    InvalidInputError
        If a required field is missing or empty after trimming.
    """
    return hashlib.sha256(canonical_bytes(content)).hexdigest()


def hash_bytes(payload: bytes | str) -> str:
    """SHA-256 hex digest over raw bytes (strings are UTF-8 encoded).

    Used for file hashing and for the ``cidHash`` over a CID string. The empty
    input hashes to :data:`EMPTY_SHA256`.
    """
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


def hash_text(value: str) -> str:
    """Digest of a trimmed, lower-cased identity field (recipient email, course name)."""
    return hash_bytes(normalize_text(value).lower())


def verify_hash(content: Mapping[str, Any] | BaseModel, expected_digest: str) -> bool:
    """Recompute the content hash and compare it with ``expected_digest``.

    Never raises: invalid content or a malformed digest simply yields ``False``.
    """
    if not isinstance(expected_digest, str):
        return False
    try:
        computed = hash_content(content)
    except (InvalidInputError, TypeError, ValueError):
        return False
    return hmac.compare_digest(
        computed.encode("ascii"), expected_digest.strip().lower().encode("utf-8")
    )
