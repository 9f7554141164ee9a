"""Create certificates side-table

Revision ID: 0001_certificates
Revises:
Create Date: 2026-10-18
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_certificates"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    certificatestatus = sa.Enum(
        "pending",
        "processing",
        "issued",
        "failed",
        "revoked",
        "expired",
        name="certificatestatus",
    )
    certificatestatus.create(op.get_bind(), checkfirst=True)

    anchorstrategy = sa.Enum("consensus_log", "token_mint", name="anchorstrategy")
    anchorstrategy.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "certificates",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "status",
            postgresql.ENUM(
                "pending",
                "processing",
                "issued",
                "failed",
                "revoked",
                "expired",
                name="certificatestatus",
                create_type=False,
            ),
            nullable=False,
            server_default="pending",
        ),
        sa.Column(
            "certificate_hash",
            sa.String(64),
            nullable=True,
            comment="SHA-256 over the canonical certificate content",
        ),
        sa.Column(
            "ipfs_hash",
            sa.String(128),
            nullable=True,
            comment="CID returned by the content store",
        ),
        sa.Column("cid_hash", sa.String(64), nullable=True),
        sa.Column(
            "anchor_strategy",
            postgresql.ENUM(
                "consensus_log",
                "token_mint",
                name="anchorstrategy",
                create_type=False,
            ),
            nullable=True,
        ),
        sa.Column("hedera_transaction_id", sa.String(128), nullable=True, unique=True),
        sa.Column(
            "ledger_locator",
            sa.String(128),
            nullable=True,
            comment="topic_id/sequence_number or token_id/serial_number",
        ),
        sa.Column(
            "nft_token_id",
            sa.String(128),
            nullable=True,
            comment="token_id-serial_number for token-mint anchors",
        ),
        sa.Column(
            "proof_payload",
            sa.Text(),
            nullable=True,
            comment="Canonical proof JSON prepared for anchoring (no raw PII)",
        ),
        sa.Column("issuer_organization", sa.String(255), nullable=True),
        sa.Column(
            "expiry_timestamp",
            sa.BigInteger(),
            nullable=True,
            comment="Unix milliseconds after which an issued certificate is expired",
        ),
        sa.Column("anchor_attempted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failure_step", sa.String(32), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revocation_reason", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    op.create_index("ix_certificates_ipfs_hash", "certificates", ["ipfs_hash"])
    op.create_index("ix_certificates_certificate_hash", "certificates", ["certificate_hash"])
    op.create_index("ix_certificates_nft_token_id", "certificates", ["nft_token_id"])
    op.create_index("ix_certificates_status", "certificates", ["status"])


def downgrade() -> None:
    op.drop_index("ix_certificates_status", table_name="certificates")
    op.drop_index("ix_certificates_nft_token_id", table_name="certificates")
    op.drop_index("ix_certificates_certificate_hash", table_name="certificates")
    op.drop_index("ix_certificates_ipfs_hash", table_name="certificates")
    op.drop_table("certificates")

    sa.Enum(name="anchorstrategy").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="certificatestatus").drop(op.get_bind(), checkfirst=True)
