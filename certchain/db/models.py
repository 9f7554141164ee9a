"""
SQLAlchemy ORM models for the certificate side-table.

The side-table is a mutable, non-authoritative cache of last-known certificate
status and pointers into the content store and the ledger. The ledger remains
the source of truth for anchored proofs.
"""

from datetime import UTC, datetime
from enum import Enum as PyEnum
from uuid import UUID

from sqlalchemy import BigInteger, DateTime, Enum, Index, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""


# =============================================================================
# Enums
# =============================================================================


class CertificateStatus(str, PyEnum):
    """Certificate lifecycle status.

    ``pending`` is the draft state. ``expired`` is never stored by the
    pipeline; it is reported for issued records whose expiry has elapsed.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    ISSUED = "issued"
    FAILED = "failed"
    REVOKED = "revoked"
    EXPIRED = "expired"


class AnchorStrategy(str, PyEnum):
    """Ledger anchoring strategy used for a certificate."""

    CONSENSUS_LOG = "consensus_log"
    TOKEN_MINT = "token_mint"


# =============================================================================
# Models
# =============================================================================


class CertificateRecord(Base):
    """
    Side-table row for one certificate.

    ``anchor_attempted_at`` is the durable marker written before the ledger
    is called; it is set at most once per certificate through a conditional
    update and guards against double anchoring across processes.
    """

    __tablename__ = "certificates"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    status: Mapped[CertificateStatus] = mapped_column(
        Enum(
            CertificateStatus,
            name="certificatestatus",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        default=CertificateStatus.PENDING,
        nullable=False,
    )
    certificate_hash: Mapped[str | None] = mapped_column(
        String(64),
        comment="SHA-256 over the canonical certificate content",
    )
    ipfs_hash: Mapped[str | None] = mapped_column(
        String(128),
        comment="CID returned by the content store",
    )
    cid_hash: Mapped[str | None] = mapped_column(String(64))
    anchor_strategy: Mapped[AnchorStrategy | None] = mapped_column(
        Enum(
            AnchorStrategy,
            name="anchorstrategy",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
    )
    hedera_transaction_id: Mapped[str | None] = mapped_column(String(128), unique=True)
    ledger_locator: Mapped[str | None] = mapped_column(
        String(128),
        comment="topic_id/sequence_number or token_id/serial_number",
    )
    nft_token_id: Mapped[str | None] = mapped_column(
        String(128),
        comment="token_id-serial_number for token-mint anchors",
    )
    proof_payload: Mapped[str | None] = mapped_column(
        Text,
        comment="Canonical proof JSON prepared for anchoring (no raw PII)",
    )
    issuer_organization: Mapped[str | None] = mapped_column(String(255))
    expiry_timestamp: Mapped[int | None] = mapped_column(
        BigInteger,
        comment="Unix milliseconds after which an issued certificate is expired",
    )
    anchor_attempted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    failure_step: Mapped[str | None] = mapped_column(String(32))
    failure_reason: Mapped[str | None] = mapped_column(Text)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    revocation_reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index("ix_certificates_ipfs_hash", "ipfs_hash"),
        Index("ix_certificates_certificate_hash", "certificate_hash"),
        Index("ix_certificates_nft_token_id", "nft_token_id"),
        Index("ix_certificates_status", "status"),
    )

    def effective_status(self, now: datetime | None = None) -> CertificateStatus:
        """Stored status, reported as ``expired`` once an issued certificate lapses."""
        if self.status == CertificateStatus.ISSUED and self.expiry_timestamp is not None:
            current = now or datetime.now(UTC)
            if int(current.timestamp() * 1000) >= self.expiry_timestamp:
                return CertificateStatus.EXPIRED
        return self.status
