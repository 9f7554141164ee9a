"""
Operator signatures for ledger gateway requests.

Uses the ``cryptography`` library. The operator key may be Ed25519 or an EC
key (secp256k1 / P-256); the gateway checks the signature against the public
key registered for the operator account before submitting the transaction.
"""

from __future__ import annotations

import base64

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
    load_pem_private_key,
    load_pem_public_key,
)

OperatorPrivateKey = Ed25519PrivateKey | ec.EllipticCurvePrivateKey


def generate_operator_keypair() -> tuple[str, str]:
    """Generate a new Ed25519 key pair for an operator account.

    Returns
    -------
    tuple[str, str]
        ``(private_key_pem, public_key_pem)`` as PEM-encoded strings.
    """
    private_key = Ed25519PrivateKey.generate()
    private_pem = private_key.private_bytes(
        encoding=Encoding.PEM,
        format=PrivateFormat.PKCS8,
        encryption_algorithm=NoEncryption(),
    ).decode("utf-8")
    public_pem = private_key.public_key().public_bytes(
        encoding=Encoding.PEM,
        format=PublicFormat.SubjectPublicKeyInfo,
    ).decode("utf-8")
    return private_pem, public_pem


def load_operator_key(private_key_pem: str) -> OperatorPrivateKey:
    """Load an operator private key from PEM."""
    private_key = load_pem_private_key(private_key_pem.encode("utf-8"), password=None)
    if not isinstance(private_key, (Ed25519PrivateKey, ec.EllipticCurvePrivateKey)):
        raise TypeError("Expected an Ed25519 or EC private key")
    return private_key


def sign_payload(payload: bytes, private_key: OperatorPrivateKey) -> str:
    """Sign request bytes and return the base64 signature."""
    if isinstance(private_key, Ed25519PrivateKey):
        signature = private_key.sign(payload)
    else:
        signature = private_key.sign(payload, ec.ECDSA(hashes.SHA256()))
    return base64.b64encode(signature).decode("utf-8")


def verify_payload_signature(payload: bytes, signature: str, public_key_pem: str) -> bool:
    """Verify a base64 signature produced by :func:`sign_payload`."""
    public_key = load_pem_public_key(public_key_pem.encode("utf-8"))
    raw = base64.b64decode(signature)
    try:
        if isinstance(public_key, Ed25519PublicKey):
            public_key.verify(raw, payload)
        elif isinstance(public_key, ec.EllipticCurvePublicKey):
            public_key.verify(raw, payload, ec.ECDSA(hashes.SHA256()))
        else:
            raise TypeError("Expected an Ed25519 or EC public key")
        return True
    except InvalidSignature:
        return False
