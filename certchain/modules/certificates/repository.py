"""
Side-table access for certificate records.

Every state transition is a single conditional statement committed
immediately, so concurrent orchestrators for the same certificate id race on
the database rather than on in-process state.
"""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import ColumnElement, and_, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from certchain.db.models import AnchorStrategy, CertificateRecord, CertificateStatus
from certchain.modules.certificates.schemas import AnchorReceipt

# Statuses from which an issuance may start over from the upload step.
_CLAIMABLE = (CertificateStatus.PENDING, CertificateStatus.FAILED)


class CertificateRepository:
    """Async repository over the ``certificates`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, certificate_id: UUID) -> CertificateRecord | None:
        return await self._session.get(
            CertificateRecord, certificate_id, populate_existing=True
        )

    async def _first(self, *criteria: ColumnElement[bool]) -> CertificateRecord | None:
        result = await self._session.execute(
            select(CertificateRecord)
            .where(*criteria)
            .order_by(CertificateRecord.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_by_cid(self, cid: str) -> CertificateRecord | None:
        return await self._first(CertificateRecord.ipfs_hash == cid)

    async def find_by_certificate_hash(self, certificate_hash: str) -> CertificateRecord | None:
        return await self._first(CertificateRecord.certificate_hash == certificate_hash)

    async def find_by_transaction(self, transaction_id: str) -> CertificateRecord | None:
        return await self._first(CertificateRecord.hedera_transaction_id == transaction_id)

    async def find_by_nft(self, nft_token_id: str) -> CertificateRecord | None:
        return await self._first(CertificateRecord.nft_token_id == nft_token_id)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def create_pending(
        self,
        certificate_id: UUID,
        *,
        issuer_organization: str | None = None,
        expiry_timestamp: int | None = None,
    ) -> bool:
        """Insert a ``pending`` record. ``False`` if the id already exists."""
        statement = (
            pg_insert(CertificateRecord)
            .values(
                id=certificate_id,
                status=CertificateStatus.PENDING,
                issuer_organization=issuer_organization,
                expiry_timestamp=expiry_timestamp,
            )
            .on_conflict_do_nothing(index_elements=[CertificateRecord.id])
            .returning(CertificateRecord.id)
        )
        result = await self._session.execute(statement)
        inserted = result.scalar_one_or_none()
        await self._session.commit()
        return inserted is not None

    async def claim(self, certificate_id: UUID, *, stale_before: datetime | None = None) -> bool:
        """Move a pending or failed-before-upload record to ``processing``.

        With ``stale_before``, a ``processing`` record last touched before that
        instant is taken over too: its owner stopped before uploading.
        """
        claimable: ColumnElement[bool] = CertificateRecord.status.in_(_CLAIMABLE)
        if stale_before is not None:
            claimable = or_(
                claimable,
                and_(
                    CertificateRecord.status == CertificateStatus.PROCESSING,
                    CertificateRecord.updated_at < stale_before,
                ),
            )
        result = await self._session.execute(
            update(CertificateRecord)
            .where(
                CertificateRecord.id == certificate_id,
                claimable,
                CertificateRecord.anchor_attempted_at.is_(None),
                CertificateRecord.ipfs_hash.is_(None),
            )
            .values(
                status=CertificateStatus.PROCESSING,
                failure_step=None,
                failure_reason=None,
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        await self._session.commit()
        return bool(result.rowcount)  # type: ignore[attr-defined]

    async def record_upload(
        self,
        certificate_id: UUID,
        *,
        certificate_hash: str,
        cid: str,
        cid_hash: str,
        proof_payload: str,
        anchor_strategy: str,
    ) -> None:
        await self._session.execute(
            update(CertificateRecord)
            .where(CertificateRecord.id == certificate_id)
            .values(
                certificate_hash=certificate_hash,
                ipfs_hash=cid,
                cid_hash=cid_hash,
                proof_payload=proof_payload,
                anchor_strategy=AnchorStrategy(anchor_strategy),
            )
            .execution_options(synchronize_session=False)
        )
        await self._session.commit()

    async def mark_anchor_attempted(
        self, certificate_id: UUID, *, previous: datetime | None = None
    ) -> bool:
        """Durably record that the ledger is about to be called.

        Succeeds only if the marker still holds ``previous`` (``NULL`` for a
        first attempt), so at most one orchestrator wins. Committed before
        returning.
        """
        marker = (
            CertificateRecord.anchor_attempted_at.is_(None)
            if previous is None
            else CertificateRecord.anchor_attempted_at == previous
        )
        result = await self._session.execute(
            update(CertificateRecord)
            .where(CertificateRecord.id == certificate_id, marker)
            .values(
                anchor_attempted_at=datetime.now(UTC),
                status=CertificateStatus.PROCESSING,
            )
            .execution_options(synchronize_session=False)
        )
        await self._session.commit()
        return bool(result.rowcount)  # type: ignore[attr-defined]

    async def record_receipt(self, certificate_id: UUID, receipt: AnchorReceipt) -> None:
        """Persist the anchor receipt; the certificate becomes ``issued``."""
        await self._session.execute(
            update(CertificateRecord)
            .where(CertificateRecord.id == certificate_id)
            .values(
                status=CertificateStatus.ISSUED,
                hedera_transaction_id=receipt.transaction_reference,
                ledger_locator=receipt.ledger_locator,
                nft_token_id=receipt.nft_token_id,
                anchor_strategy=AnchorStrategy(receipt.strategy),
                failure_step=None,
                failure_reason=None,
            )
            .execution_options(synchronize_session=False)
        )
        await self._session.commit()

    async def record_failure(
        self,
        certificate_id: UUID,
        *,
        step: str,
        reason: str,
        clear_anchor_attempt: bool = False,
    ) -> None:
        """Mark the record ``failed``.

        ``clear_anchor_attempt`` releases the marker when the failed attempt
        provably did not reach the ledger.
        """
        values: dict[str, object] = {
            "status": CertificateStatus.FAILED,
            "failure_step": step,
            "failure_reason": reason[:2000],
        }
        if clear_anchor_attempt:
            values["anchor_attempted_at"] = None
        # Discard a transaction left aborted by an earlier failed statement.
        await self._session.rollback()
        await self._session.execute(
            update(CertificateRecord)
            .where(CertificateRecord.id == certificate_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self._session.commit()

    async def revoke(self, certificate_id: UUID, reason: str) -> bool:
        result = await self._session.execute(
            update(CertificateRecord)
            .where(
                CertificateRecord.id == certificate_id,
                CertificateRecord.status == CertificateStatus.ISSUED,
            )
            .values(
                status=CertificateStatus.REVOKED,
                revoked_at=datetime.now(UTC),
                revocation_reason=reason,
            )
            .execution_options(synchronize_session=False)
        )
        await self._session.commit()
        return bool(result.rowcount)  # type: ignore[attr-defined]
