"""Stored certificate payload: canonical content plus its digest envelope."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from certchain.core.crypto.canonicalization import canonicalize_jcs_bytes
from certchain.core.crypto.hashing import canonical_content, hash_content
from certchain.core.errors import InvalidInputError
from certchain.modules.certificates.schemas import PublicCertificate

PAYLOAD_TYPE = "CERTIFICATE"
PAYLOAD_VERSION = "1.0"


def build_payload(content: Mapping[str, Any] | BaseModel) -> tuple[bytes, str]:
    """Serialize content for the content store.

    Returns the RFC 8785 bytes of the canonical content extended with
    ``certificateHash``, ``type`` and ``version``, and the digest itself.
    """
    canonical = canonical_content(content)
    digest = hash_content(canonical)
    envelope = dict(canonical)
    envelope.update(
        {
            "certificateHash": digest,
            "type": PAYLOAD_TYPE,
            "version": PAYLOAD_VERSION,
        }
    )
    return canonicalize_jcs_bytes(envelope), digest


def parse_payload(payload: bytes) -> dict[str, Any]:
    """Decode a stored payload.

    Raises
    ------
    InvalidInputError
        If the bytes are not a JSON object.
    """
    try:
        decoded = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise InvalidInputError("Certificate payload is not valid JSON") from exc
    if not isinstance(decoded, dict):
        raise InvalidInputError("Certificate payload must be a JSON object")
    return decoded


def public_fields(payload: Mapping[str, Any]) -> PublicCertificate | None:
    """Fields of a stored payload that may be shown to any verifier."""
    try:
        return PublicCertificate.model_validate(dict(payload))
    except PydanticValidationError:
        return None
