"""Pydantic schemas for certificate content, ledger proofs and verification results."""

from __future__ import annotations

import json
from datetime import date, datetime
from enum import Enum
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from certchain.core.crypto.canonicalization import canonicalize_jcs_bytes, to_unix_ms

PROOF_TYPE = "CERTIFICATE_PROOF"
PROOF_SCHEMA_VERSION = "1.0"
TOKEN_HASH_PREFIX_LENGTH = 32
TOKEN_ORG_MAX_LENGTH = 20

# ---------------------------------------------------------------------------
# Certificate content
# ---------------------------------------------------------------------------


class FileAttachment(BaseModel):
    """Embedded copy of (or reference to) the originally uploaded certificate file."""

    file_name: str = Field(alias="fileName")
    file_type: str | None = Field(default=None, alias="fileType")
    data: str | None = Field(default=None, description="Base64 file bytes")
    sha256: str | None = Field(default=None, description="Digest of the raw file bytes")

    model_config = ConfigDict(populate_by_name=True)


class CertificateContent(BaseModel):
    """The canonical certificate record that is hashed and stored.

    Emptiness of required fields is checked after trimming by the hashing
    engine and the validator, so blank strings are accepted here.
    """

    recipient_name: str = Field(alias="recipientName")
    recipient_email: str = Field(alias="recipientEmail")
    issuer_name: str = Field(alias="issuerName")
    issuer_organization: str | None = Field(default=None, alias="issuerOrganization")
    course_name: str = Field(alias="courseName")
    completion_date: str = Field(alias="completionDate", description="ISO YYYY-MM-DD")
    issue_timestamp: int | None = Field(
        default=None, alias="issueTimestamp", description="Unix milliseconds"
    )
    certificate_id: UUID | None = Field(default=None, alias="certificateId")
    expiry_timestamp: int | None = Field(
        default=None, alias="expiryTimestamp", description="Unix milliseconds"
    )
    file: FileAttachment | None = None

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("completion_date", mode="before")
    @classmethod
    def _date_to_iso(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return value.date().isoformat()
        if isinstance(value, date):
            return value.isoformat()
        return value

    @field_validator("issue_timestamp", "expiry_timestamp", mode="before")
    @classmethod
    def _timestamp_to_ms(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return to_unix_ms(value)
        return value


class PublicCertificate(BaseModel):
    """Certificate fields safe to echo back from public verification."""

    certificate_id: str | None = Field(default=None, alias="certificateId")
    recipient_name: str | None = Field(default=None, alias="recipientName")
    issuer_name: str | None = Field(default=None, alias="issuerName")
    issuer_organization: str | None = Field(default=None, alias="issuerOrganization")
    course_name: str | None = Field(default=None, alias="courseName")
    completion_date: str | None = Field(default=None, alias="completionDate")
    issue_timestamp: int | None = Field(default=None, alias="issueTimestamp")
    expiry_timestamp: int | None = Field(default=None, alias="expiryTimestamp")

    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Ledger proof
# ---------------------------------------------------------------------------


class Proof(BaseModel):
    """Compact proof committed to the ledger.

    Contains hashes of the recipient and course fields, never the raw values.
    """

    type: Literal["CERTIFICATE_PROOF"] = PROOF_TYPE
    version: str = PROOF_SCHEMA_VERSION
    certificate_id: str = Field(alias="certificateId")
    ipfs_cid: str = Field(alias="ipfsCid")
    cid_hash: str = Field(alias="cidHash")
    certificate_hash: str = Field(alias="certificateHash")
    recipient_hash: str = Field(alias="recipientHash")
    course_hash: str = Field(alias="courseHash")
    issuer_identity: str | None = Field(default=None, alias="issuerIdentity")
    timestamp: int

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> bytes:
        """Canonical (RFC 8785) UTF-8 JSON submitted as a consensus message."""
        return canonicalize_jcs_bytes(self.model_dump(by_alias=True, exclude_none=True))

    @classmethod
    def from_wire(cls, payload: bytes | str) -> Proof:
        """Parse a consensus message body. Raises ``ValueError`` on malformed input."""
        return cls.model_validate_json(payload)

    def token_metadata(self) -> TokenMetadata:
        """Deterministic truncated subset embedded in a minted NFT."""
        return TokenMetadata(
            cid=self.ipfs_cid,
            hash=self.certificate_hash[:TOKEN_HASH_PREFIX_LENGTH],
            org=(self.issuer_identity or "")[:TOKEN_ORG_MAX_LENGTH],
        )


class TokenMetadata(BaseModel):
    """NFT metadata ``{"cid", "hash", "org"}`` in that fixed order."""

    cid: str
    hash: str
    org: str = ""

    def to_bytes(self) -> bytes:
        return json.dumps(
            {"cid": self.cid, "hash": self.hash, "org": self.org},
            separators=(",", ":"),
            ensure_ascii=False,
        ).encode("utf-8")

    @classmethod
    def from_bytes(cls, payload: bytes | str) -> TokenMetadata:
        return cls.model_validate_json(payload)


class AnchorReceipt(BaseModel):
    """Reference to a committed proof.

    ``ledger_locator`` is ``topic_id/sequence_number`` for consensus-log
    anchors and ``token_id/serial_number`` for token-mint anchors.
    """

    transaction_reference: str = Field(alias="transactionReference")
    ledger_locator: str = Field(alias="ledgerLocator")
    strategy: Literal["consensus_log", "token_mint"]
    consensus_timestamp: str | None = Field(default=None, alias="consensusTimestamp")

    model_config = ConfigDict(populate_by_name=True)

    @property
    def locator_parts(self) -> tuple[str, int]:
        resource_id, _, position = self.ledger_locator.partition("/")
        return resource_id, int(position)

    @property
    def nft_token_id(self) -> str | None:
        """``token_id-serial`` reference used by NFT-based verification."""
        if self.strategy != "token_mint":
            return None
        token_id, serial = self.locator_parts
        return f"{token_id}-{serial}"


class AnchoredProof(BaseModel):
    """A proof as read back from the ledger.

    Consensus-log anchors carry the full ``proof``; token-mint anchors carry
    only ``token_metadata``.
    """

    receipt: AnchorReceipt
    proof: Proof | None = None
    token_metadata: TokenMetadata | None = Field(default=None, alias="tokenMetadata")

    model_config = ConfigDict(populate_by_name=True)

    @property
    def cid(self) -> str | None:
        if self.proof is not None:
            return self.proof.ipfs_cid
        if self.token_metadata is not None:
            return self.token_metadata.cid
        return None

    @property
    def certificate_id(self) -> str | None:
        return self.proof.certificate_id if self.proof is not None else None


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


class VerificationStatus(str, Enum):
    MATCH = "MATCH"
    MISMATCH = "MISMATCH"
    NOT_FOUND = "NOT_FOUND"


class VerificationChecks(BaseModel):
    """Per-check outcomes; ``None`` means the check did not apply."""

    cid_hash: bool | None = Field(default=None, alias="cidHash")
    certificate_hash: bool | None = Field(default=None, alias="certificateHash")
    recipient_hash: bool | None = Field(default=None, alias="recipientHash")
    course_hash: bool | None = Field(default=None, alias="courseHash")
    certificate_id: bool | None = Field(default=None, alias="certificateId")

    model_config = ConfigDict(populate_by_name=True)

    def all_passed(self) -> bool:
        values = [v for v in self.model_dump().values() if v is not None]
        return bool(values) and all(values)


class VerificationResult(BaseModel):
    status: VerificationStatus
    proof: Proof | None = None
    receipt: AnchorReceipt | None = None
    checks: VerificationChecks = Field(default_factory=VerificationChecks)
    reason: str | None = None
    certificate: PublicCertificate | None = None
    certificate_status: str | None = Field(
        default=None,
        alias="certificateStatus",
        description="Last-known side-table status (issued, revoked, expired)",
    )
    gateway_url: str | None = Field(default=None, alias="gatewayUrl")
    explorer_url: str | None = Field(default=None, alias="explorerUrl")
    verified_at: datetime = Field(alias="verifiedAt")

    model_config = ConfigDict(populate_by_name=True)

    @property
    def is_valid(self) -> bool:
        return self.status == VerificationStatus.MATCH


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------


class IssuanceResult(BaseModel):
    """Outcome of a completed (or previously completed) issuance."""

    certificate_id: str = Field(alias="certificateId")
    status: str
    certificate_hash: str = Field(alias="certificateHash")
    ipfs_cid: str = Field(alias="ipfsCid")
    cid_hash: str = Field(alias="cidHash")
    transaction_id: str = Field(alias="transactionId")
    ledger_locator: str = Field(alias="ledgerLocator")
    nft_token_id: str | None = Field(default=None, alias="nftTokenId")
    gateway_url: str = Field(alias="gatewayUrl")
    explorer_url: str = Field(alias="explorerUrl")
    verification_url: str = Field(alias="verificationUrl")

    model_config = ConfigDict(populate_by_name=True)


class CertificateStatusResponse(BaseModel):
    """Side-table view of a certificate for operators."""

    id: UUID
    status: str
    certificate_hash: str | None = Field(default=None, alias="certificateHash")
    ipfs_cid: str | None = Field(default=None, alias="ipfsCid")
    cid_hash: str | None = Field(default=None, alias="cidHash")
    anchor_strategy: str | None = Field(default=None, alias="anchorStrategy")
    transaction_id: str | None = Field(default=None, alias="transactionId")
    ledger_locator: str | None = Field(default=None, alias="ledgerLocator")
    nft_token_id: str | None = Field(default=None, alias="nftTokenId")
    anchor_attempted_at: datetime | None = Field(default=None, alias="anchorAttemptedAt")
    failure_step: str | None = Field(default=None, alias="failureStep")
    failure_reason: str | None = Field(default=None, alias="failureReason")
    expiry_timestamp: int | None = Field(default=None, alias="expiryTimestamp")
    revoked_at: datetime | None = Field(default=None, alias="revokedAt")
    revocation_reason: str | None = Field(default=None, alias="revocationReason")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class ResumeAnchoringRequest(BaseModel):
    force: bool = Field(
        default=False,
        description="Confirm that a previous in-doubt anchor attempt did not commit",
    )


class RevokeRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=1000)
