"""
Issuance pipeline: validate, hash, upload, anchor, persist.

Per certificate id the steps run strictly in sequence. The side-table is
checkpointed after each step so a failure can be resumed from the last
completed one; anchoring happens at most once per certificate id, guarded by
the durable ``anchor_attempted_at`` marker.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

import structlog

from certchain.core.config import Settings, get_settings
from certchain.core.crypto.hashing import hash_bytes, hash_text
from certchain.core.errors import (
    AnchorError,
    AnchorInDoubtError,
    AnchorUnavailableError,
    CertchainError,
    CertificateNotFoundError,
    DuplicateIssuanceError,
    InvalidInputError,
    IssuanceError,
    StorageError,
    ValidationError,
)
from certchain.core.logging import get_logger
from certchain.core.retry import retry_transient
from certchain.db.models import CertificateRecord, CertificateStatus
from certchain.modules.certificates.payload import build_payload
from certchain.modules.certificates.repository import CertificateRepository
from certchain.modules.certificates.schemas import (
    AnchorReceipt,
    CertificateContent,
    IssuanceResult,
    Proof,
)
from certchain.modules.certificates.validation import CertificateValidator, ContentValidator
from certchain.modules.ledger.base import LedgerAnchor
from certchain.modules.storage.base import ContentStore

logger = get_logger(__name__)

STEP_VALIDATE = "validate"
STEP_UPLOAD = "upload"
STEP_ANCHOR = "anchor"
STEP_PERSIST = "persist"


def _now_ms() -> int:
    return int(datetime.now(UTC).timestamp() * 1000)


def _may_have_landed(exc: CertchainError) -> bool:
    return isinstance(exc, AnchorUnavailableError) and exc.may_have_landed


class IssuancePipeline:
    """
    Orchestrates HashingEngine -> ContentStore -> LedgerAnchor -> side-table.

    A failure at upload never reaches the ledger. A failure at anchoring
    leaves the record ``failed`` with its CID and proof so
    :meth:`resume_anchoring` can re-run that step alone.
    """

    def __init__(
        self,
        repository: CertificateRepository,
        store: ContentStore,
        anchor: LedgerAnchor,
        *,
        validator: ContentValidator | None = None,
        settings: Settings | None = None,
        log: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._repository = repository
        self._store = store
        self._anchor = anchor
        self._validator = validator or CertificateValidator()
        self._settings = settings or get_settings()
        self._log = log or logger

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    async def issue(self, content: CertificateContent | Mapping[str, Any]) -> IssuanceResult:
        """Issue a certificate end to end.

        Raises
        ------
        ValidationError
            Content failed validation; nothing was stored.
        DuplicateIssuanceError
            The same certificate id is being issued by someone else, or a
            previous attempt must be resumed with :meth:`resume_anchoring`.
        IssuanceError
            A storage or ledger step failed after retries.
        """
        if not isinstance(content, CertificateContent):
            try:
                content = CertificateContent.model_validate(content)
            except ValueError as exc:
                raise InvalidInputError(f"Invalid certificate content: {exc}") from exc

        self._validator.validate(content)

        explicit_timestamp = content.issue_timestamp is not None
        certificate_id = content.certificate_id or uuid4()
        content = content.model_copy(
            update={
                "certificate_id": certificate_id,
                "issue_timestamp": content.issue_timestamp or _now_ms(),
            }
        )
        log = self._log.bind(certificate_id=str(certificate_id))
        payload, certificate_hash = build_payload(content)

        existing = await self._repository.get(certificate_id)
        if existing is not None and existing.status in (
            CertificateStatus.ISSUED,
            CertificateStatus.REVOKED,
        ):
            log.info("issuance_already_completed", status=existing.status.value)
            return self._result(existing)

        if (
            existing is not None
            and existing.ipfs_hash
            and existing.proof_payload
            and existing.anchor_attempted_at is None
        ):
            # Upload already done and the ledger provably untouched: anchor the stored proof.
            if explicit_timestamp and existing.certificate_hash != certificate_hash:
                raise DuplicateIssuanceError(
                    "Certificate id was already uploaded with different content",
                    certificate_id=str(certificate_id),
                )
            log.info("issuance_resuming_from_upload", cid=existing.ipfs_hash)
            return await self.resume_anchoring(certificate_id)

        if existing is None:
            created = await self._repository.create_pending(
                certificate_id,
                issuer_organization=content.issuer_organization,
                expiry_timestamp=content.expiry_timestamp,
            )
            if not created:
                raise DuplicateIssuanceError(
                    "Certificate is already being issued", certificate_id=str(certificate_id)
                )

        stale_before = datetime.now(UTC) - timedelta(
            seconds=self._settings.issuance_lease_seconds
        )
        if not await self._repository.claim(certificate_id, stale_before=stale_before):
            raise DuplicateIssuanceError(
                "Certificate issuance is in progress or awaiting resume_anchoring",
                certificate_id=str(certificate_id),
            )
        log.info("issuance_started")

        try:
            proof = await self._upload_step(certificate_id, content, payload, certificate_hash, log)
        except StorageError as exc:
            await self._release_claim(certificate_id, str(exc), log)
            log.error("issuance_upload_failed", error=str(exc))
            raise IssuanceError(
                f"Upload failed: {exc}",
                step=STEP_UPLOAD,
                certificate_id=str(certificate_id),
                cause=exc,
            ) from exc
        except BaseException as exc:
            # Cancellation or an unexpected error must not strand the record in processing.
            log.error("issuance_interrupted", error_type=type(exc).__name__, error=str(exc))
            try:
                await self._release_claim(
                    certificate_id, f"Interrupted: {type(exc).__name__}: {exc}", log
                )
            except Exception:
                log.exception("issuance_release_failed")
            raise

        if not await self._repository.mark_anchor_attempted(certificate_id):
            raise DuplicateIssuanceError(
                "Another process already attempted to anchor this certificate",
                certificate_id=str(certificate_id),
            )
        return await self._anchor_and_record(certificate_id, proof, log)

    # ------------------------------------------------------------------
    # Resume / revoke
    # ------------------------------------------------------------------

    async def resume_anchoring(
        self, certificate_id: UUID, *, force: bool = False
    ) -> IssuanceResult:
        """Re-run the anchoring step from the persisted proof.

        If a previous attempt may have reached the ledger, an already
        committed proof is adopted instead of anchoring again. When none is
        found the operator must confirm with ``force=True``.
        """
        log = self._log.bind(certificate_id=str(certificate_id))
        record = await self._require(certificate_id)

        if record.status in (CertificateStatus.ISSUED, CertificateStatus.REVOKED):
            return self._result(record)
        if not (record.proof_payload and record.ipfs_hash):
            raise IssuanceError(
                "Nothing was uploaded for this certificate; issue it again",
                step=STEP_UPLOAD,
                certificate_id=str(certificate_id),
            )
        proof = Proof.from_wire(record.proof_payload)

        if record.anchor_attempted_at is None:
            if not await self._repository.mark_anchor_attempted(certificate_id):
                raise DuplicateIssuanceError(
                    "Another process is anchoring this certificate",
                    certificate_id=str(certificate_id),
                )
            return await self._anchor_and_record(certificate_id, proof, log)

        existing = await self._anchor.find_proof(
            cid=record.ipfs_hash, certificate_id=str(certificate_id)
        )
        if existing is not None:
            log.warning(
                "anchor_receipt_adopted",
                transaction_id=existing.receipt.transaction_reference,
                ledger_locator=existing.receipt.ledger_locator,
            )
            await self._repository.record_receipt(certificate_id, existing.receipt)
            return await self._reload_result(certificate_id)

        previous_attempt = record.anchor_attempted_at
        if not force:
            raise AnchorInDoubtError(
                "A previous anchor attempt may have committed and no proof was found; "
                "confirm and resume with force=True",
                certificate_id=str(certificate_id),
            )

        if not await self._repository.mark_anchor_attempted(
            certificate_id, previous=previous_attempt
        ):
            raise DuplicateIssuanceError(
                "Another process is anchoring this certificate",
                certificate_id=str(certificate_id),
            )
        log.warning("anchor_forced_retry", previous_attempt=previous_attempt.isoformat())
        return await self._anchor_and_record(certificate_id, proof, log)

    async def revoke(self, certificate_id: UUID, reason: str) -> CertificateRecord:
        """Revoke an issued certificate. Revoking twice is a no-op."""
        record = await self._require(certificate_id)
        if record.status == CertificateStatus.REVOKED:
            return record
        if not reason.strip():
            raise InvalidInputError("A revocation reason is required", fields=["reason"])
        if not await self._repository.revoke(certificate_id, reason.strip()):
            raise ValidationError(
                f"Only issued certificates can be revoked (status: {record.status.value})"
            )
        self._log.info("certificate_revoked", certificate_id=str(certificate_id))
        return await self._require(certificate_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _upload_step(
        self,
        certificate_id: UUID,
        content: CertificateContent,
        payload: bytes,
        certificate_hash: str,
        log: structlog.stdlib.BoundLogger,
    ) -> Proof:
        """Pin the payload and checkpoint the CID and proof in the side-table."""
        upload = await retry_transient(
            lambda: self._store.upload(
                payload,
                name=f"certificate-{certificate_id}.json",
                tags={
                    "certificateId": str(certificate_id),
                    "certificateHash": certificate_hash,
                },
            ),
            attempts=self._settings.retry_max_attempts,
            base_delay=self._settings.retry_base_delay_seconds,
            step=STEP_UPLOAD,
            log=log,
        )

        proof = Proof(
            certificate_id=str(certificate_id),
            ipfs_cid=upload.cid,
            cid_hash=hash_bytes(upload.cid),
            certificate_hash=certificate_hash,
            recipient_hash=hash_text(content.recipient_email),
            course_hash=hash_text(content.course_name),
            issuer_identity=content.issuer_organization or content.issuer_name,
            timestamp=_now_ms(),
        )
        await self._repository.record_upload(
            certificate_id,
            certificate_hash=certificate_hash,
            cid=upload.cid,
            cid_hash=proof.cid_hash,
            proof_payload=proof.to_wire().decode("utf-8"),
            anchor_strategy=self._anchor.strategy,
        )
        log.info("issuance_uploaded", cid=upload.cid, certificate_hash=certificate_hash)
        return proof

    async def _release_claim(
        self, certificate_id: UUID, reason: str, log: structlog.stdlib.BoundLogger
    ) -> None:
        # Shielded so a cancelled request still records the failure.
        await asyncio.shield(
            self._repository.record_failure(certificate_id, step=STEP_UPLOAD, reason=reason)
        )
        log.info("issuance_claim_released")

    async def _anchor_and_record(
        self, certificate_id: UUID, proof: Proof, log: structlog.stdlib.BoundLogger
    ) -> IssuanceResult:
        # The marker is already committed; finish this step even if the caller goes away.
        return await asyncio.shield(self._anchor_step(certificate_id, proof, log))

    async def _anchor_step(
        self, certificate_id: UUID, proof: Proof, log: structlog.stdlib.BoundLogger
    ) -> IssuanceResult:
        try:
            receipt = await retry_transient(
                lambda: self._anchor.anchor(proof),
                attempts=self._settings.retry_max_attempts,
                base_delay=self._settings.retry_base_delay_seconds,
                step=STEP_ANCHOR,
                should_retry=lambda exc: not _may_have_landed(exc),
                log=log,
            )
        except AnchorError as exc:
            in_doubt = _may_have_landed(exc)
            await self._repository.record_failure(
                certificate_id,
                step=STEP_ANCHOR,
                reason=str(exc),
                clear_anchor_attempt=not in_doubt,
            )
            log.error(
                "issuance_anchor_failed",
                error=str(exc),
                error_type=type(exc).__name__,
                cid=proof.ipfs_cid,
                in_doubt=in_doubt,
            )
            raise IssuanceError(
                f"Anchoring failed: {exc}",
                step=STEP_ANCHOR,
                certificate_id=str(certificate_id),
                cid=proof.ipfs_cid,
                cause=exc,
            ) from exc

        await self._persist_receipt(certificate_id, receipt, log)
        return await self._reload_result(certificate_id)

    async def _persist_receipt(
        self,
        certificate_id: UUID,
        receipt: AnchorReceipt,
        log: structlog.stdlib.BoundLogger,
    ) -> None:
        try:
            await self._repository.record_receipt(certificate_id, receipt)
        except Exception:
            # The proof is on the ledger; resume_anchoring adopts it via find_proof.
            log.error(
                "anchor_receipt_persist_failed",
                transaction_id=receipt.transaction_reference,
                ledger_locator=receipt.ledger_locator,
            )
            raise
        log.info(
            "issuance_completed",
            transaction_id=receipt.transaction_reference,
            ledger_locator=receipt.ledger_locator,
        )

    async def _require(self, certificate_id: UUID) -> CertificateRecord:
        record = await self._repository.get(certificate_id)
        if record is None:
            raise CertificateNotFoundError(f"Certificate {certificate_id} not found")
        return record

    async def _reload_result(self, certificate_id: UUID) -> IssuanceResult:
        return self._result(await self._require(certificate_id))

    def _result(self, record: CertificateRecord) -> IssuanceResult:
        if not (record.ipfs_hash and record.hedera_transaction_id and record.certificate_hash):
            raise IssuanceError(
                "Certificate record is incomplete",
                step=STEP_PERSIST,
                certificate_id=str(record.id),
                cid=record.ipfs_hash,
            )
        settings = self._settings
        return IssuanceResult(
            certificate_id=str(record.id),
            status=record.effective_status().value,
            certificate_hash=record.certificate_hash,
            ipfs_cid=record.ipfs_hash,
            cid_hash=record.cid_hash or hash_bytes(record.ipfs_hash),
            transaction_id=record.hedera_transaction_id,
            ledger_locator=record.ledger_locator or "",
            nft_token_id=record.nft_token_id,
            gateway_url=self._store.gateway_url(record.ipfs_hash),
            explorer_url=f"{settings.explorer_url}/transaction/{record.hedera_transaction_id}",
            verification_url=f"{settings.public_base_url.rstrip('/')}/verify?id={record.id}",
        )
