"""
Cryptographic primitives for certificate integrity.

Pure library modules:
- **canonicalization**: RFC 8785 canonical JSON and value normalization
- **hashing**: content and byte digests (the hashing engine)
- **signing**: operator signatures for ledger gateway requests
"""

from certchain.core.crypto.canonicalization import (
    canonicalize_jcs_bytes,
    normalize_text,
    normalize_value,
)
from certchain.core.crypto.hashing import (
    EMPTY_SHA256,
    canonical_bytes,
    canonical_content,
    hash_bytes,
    hash_content,
    hash_text,
    verify_hash,
)
from certchain.core.crypto.signing import (
    generate_operator_keypair,
    load_operator_key,
    sign_payload,
    verify_payload_signature,
)

__all__ = [
    "canonicalize_jcs_bytes",
    "normalize_text",
    "normalize_value",
    "EMPTY_SHA256",
    "canonical_bytes",
    "canonical_content",
    "hash_bytes",
    "hash_content",
    "hash_text",
    "verify_hash",
    "generate_operator_keypair",
    "load_operator_key",
    "sign_payload",
    "verify_payload_signature",
]
