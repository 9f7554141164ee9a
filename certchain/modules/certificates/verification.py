"""
Certificate verification.

Every entry point resolves an anchored proof from the ledger, fetches the
payload at the proof's CID, recomputes the digests and compares them. The
side-table is only consulted to locate proofs and report last-known status;
nothing is written. Infrastructure failures raise, everything else is a
``VerificationResult``.
"""

from __future__ import annotations

import hmac
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import structlog

from certchain.core.config import Settings, get_settings
from certchain.core.crypto.hashing import hash_bytes, hash_content, hash_text, verify_hash
from certchain.core.errors import InvalidInputError, NotFoundError
from certchain.core.logging import get_logger
from certchain.core.retry import retry_transient
from certchain.db.models import CertificateRecord
from certchain.modules.certificates.payload import parse_payload, public_fields
from certchain.modules.certificates.repository import CertificateRepository
from certchain.modules.certificates.schemas import (
    TOKEN_HASH_PREFIX_LENGTH,
    AnchoredProof,
    AnchorReceipt,
    VerificationChecks,
    VerificationResult,
    VerificationStatus,
)
from certchain.modules.ledger.base import (
    LedgerAnchor,
    canonical_transaction_id,
    is_valid_transaction_id,
)
from certchain.modules.ledger.token import TokenMintAnchor
from certchain.modules.storage.base import ContentStore
from certchain.modules.storage.client import is_valid_cid

logger = get_logger(__name__)


def _digest_equal(left: str | None, right: str | None) -> bool:
    if not left or not right:
        return False
    return hmac.compare_digest(left.lower().encode("utf-8"), right.lower().encode("utf-8"))


class VerificationService:
    """
    Stateless verifier. Safe to call concurrently and to retry without limit.

    ``anchors`` maps strategy names to ledger anchors used for reads, so a
    proof anchored under either strategy can be verified regardless of which
    strategy currently issues.
    """

    def __init__(
        self,
        store: ContentStore,
        anchors: Mapping[str, LedgerAnchor],
        *,
        repository: CertificateRepository | None = None,
        settings: Settings | None = None,
        log: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._store = store
        self._anchors = dict(anchors)
        self._repository = repository
        self._settings = settings or get_settings()
        self._log = log or logger

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def verify_by_cid(self, cid: str) -> VerificationResult:
        cid = cid.strip()
        if not is_valid_cid(cid):
            return self._not_found("Malformed CID")

        record = None
        if self._repository is not None:
            record = await self._repository.find_by_cid(cid)
        anchored = await self._from_record(record)
        if anchored is None:
            anchored = await self._scan(cid=cid)
        if anchored is None or anchored.cid != cid:
            return self._not_found("No anchored proof references this CID", record=record)
        return await self._check(anchored, record)

    async def verify_by_transaction(self, transaction_reference: str) -> VerificationResult:
        if not is_valid_transaction_id(transaction_reference):
            return self._not_found("Malformed transaction id")
        transaction_reference = canonical_transaction_id(transaction_reference)

        anchored: AnchoredProof | None = None
        for anchor in self._anchors.values():
            anchored = await anchor.resolve_transaction(transaction_reference)
            if anchored is not None:
                break
        if anchored is None:
            return self._not_found("Transaction did not anchor a certificate proof")

        record = None
        if self._repository is not None:
            record = await self._repository.find_by_transaction(transaction_reference)
        return await self._check(anchored, record)

    async def verify_by_certificate_id(self, certificate_id: UUID | str) -> VerificationResult:
        try:
            certificate_uuid = (
                certificate_id if isinstance(certificate_id, UUID) else UUID(str(certificate_id))
            )
        except ValueError:
            return self._not_found("Malformed certificate id")

        record = None
        if self._repository is not None:
            record = await self._repository.get(certificate_uuid)
        anchored = await self._from_record(record)
        if anchored is None:
            anchored = await self._scan(certificate_id=str(certificate_uuid))
        if anchored is None:
            return self._not_found("Certificate has not been anchored", record=record)
        return await self._check(anchored, record)

    async def verify_by_token(self, token_id: str, serial: int) -> VerificationResult:
        reader = self._anchors.get("token_mint")
        if not isinstance(reader, TokenMintAnchor):
            return self._not_found("Token verification is not available")
        anchored = await reader.lookup_nft(token_id, serial)
        if anchored is None:
            return self._not_found("No certificate proof for this token")

        record = None
        if self._repository is not None:
            record = await self._repository.find_by_nft(f"{token_id}-{serial}")
        return await self._check(anchored, record)

    async def verify_payload(self, payload: bytes) -> VerificationResult:
        """Verify an uploaded certificate payload file.

        The proof is located through the payload's own digest (or the digest it
        claims to carry); a payload whose content was altered after issuance
        yields ``MISMATCH``.
        """
        try:
            document = parse_payload(payload)
            computed = hash_content(document)
        except InvalidInputError as exc:
            return self._not_found(f"Not a certificate payload: {exc}")

        claimed = document.get("certificateHash")
        record: CertificateRecord | None = None
        if self._repository is not None:
            record = await self._repository.find_by_certificate_hash(computed)
            if record is None and isinstance(claimed, str) and claimed != computed:
                record = await self._repository.find_by_certificate_hash(claimed)

        anchored = await self._from_record(record)
        if anchored is None and isinstance(document.get("certificateId"), str):
            anchored = await self._scan(certificate_id=document["certificateId"])
        if anchored is None:
            return self._not_found("No anchored proof matches this payload", record=record)

        result = await self._check(anchored, record)
        if result.status == VerificationStatus.MATCH and not self._hash_matches(
            anchored, computed
        ):
            # Anchored payload is intact but the uploaded file differs from it.
            checks = result.checks.model_copy(update={"certificate_hash": False})
            return result.model_copy(
                update={
                    "status": VerificationStatus.MISMATCH,
                    "checks": checks,
                    "certificate": None,
                    "reason": "Uploaded payload differs from the anchored certificate",
                }
            )
        return result

    def verify_certificate_fields(self, content: Mapping[str, Any], expected_hash: str) -> bool:
        return verify_hash(content, expected_hash)

    # ------------------------------------------------------------------
    # Proof resolution
    # ------------------------------------------------------------------

    async def _from_record(self, record: CertificateRecord | None) -> AnchoredProof | None:
        """Read the proof a side-table record points at, if it has a receipt."""
        if record is None or record.anchor_strategy is None:
            return None
        if not (record.hedera_transaction_id and record.ledger_locator):
            return None
        reader = self._anchors.get(record.anchor_strategy.value)
        if reader is None:
            return None
        receipt = AnchorReceipt(
            transaction_reference=record.hedera_transaction_id,
            ledger_locator=record.ledger_locator,
            strategy=record.anchor_strategy.value,
        )
        return await reader.lookup(receipt)

    async def _scan(
        self, *, cid: str | None = None, certificate_id: str | None = None
    ) -> AnchoredProof | None:
        for anchor in self._anchors.values():
            found = await anchor.find_proof(cid=cid, certificate_id=certificate_id)
            if found is not None:
                return found
        return None

    # ------------------------------------------------------------------
    # Comparison
    # ------------------------------------------------------------------

    @staticmethod
    def _hash_matches(anchored: AnchoredProof, computed: str) -> bool:
        if anchored.proof is not None:
            return _digest_equal(computed, anchored.proof.certificate_hash)
        if anchored.token_metadata is not None:
            return _digest_equal(
                computed[:TOKEN_HASH_PREFIX_LENGTH], anchored.token_metadata.hash
            )
        return False

    async def _check(
        self, anchored: AnchoredProof, record: CertificateRecord | None
    ) -> VerificationResult:
        cid = anchored.cid
        if cid is None:
            return self._not_found("Anchored proof carries no CID", anchored=anchored)

        try:
            raw = await retry_transient(
                lambda: self._store.fetch(cid),
                attempts=self._settings.retry_max_attempts,
                base_delay=self._settings.retry_base_delay_seconds,
                step="fetch",
                log=self._log,
            )
        except NotFoundError:
            return self._not_found(
                "Anchored payload is no longer available from the content store",
                anchored=anchored,
                record=record,
            )

        checks = VerificationChecks()
        document: dict[str, Any] | None = None
        computed: str | None = None
        try:
            document = parse_payload(raw)
            computed = hash_content(document)
        except InvalidInputError:
            pass

        checks.certificate_hash = computed is not None and self._hash_matches(anchored, computed)
        if document is not None and computed is not None:
            embedded = document.get("certificateHash")
            if isinstance(embedded, str) and not _digest_equal(embedded, computed):
                checks.certificate_hash = False

        proof = anchored.proof
        if proof is not None:
            checks.cid_hash = _digest_equal(hash_bytes(cid), proof.cid_hash)
            checks.certificate_id = document is not None and str(
                document.get("certificateId", "")
            ) == proof.certificate_id
            checks.recipient_hash = document is not None and _digest_equal(
                hash_text(str(document.get("recipientEmail", ""))), proof.recipient_hash
            )
            checks.course_hash = document is not None and _digest_equal(
                hash_text(str(document.get("courseName", ""))), proof.course_hash
            )

        matched = checks.all_passed()
        self._log.info(
            "certificate_verified",
            cid=cid,
            transaction_id=anchored.receipt.transaction_reference,
            status="MATCH" if matched else "MISMATCH",
        )
        return self._result(
            VerificationStatus.MATCH if matched else VerificationStatus.MISMATCH,
            anchored=anchored,
            record=record,
            checks=checks,
            reason=None if matched else "Stored payload does not match the anchored proof",
            certificate=public_fields(document) if matched and document is not None else None,
        )

    # ------------------------------------------------------------------
    # Result construction
    # ------------------------------------------------------------------

    def _not_found(
        self,
        reason: str,
        *,
        anchored: AnchoredProof | None = None,
        record: CertificateRecord | None = None,
    ) -> VerificationResult:
        return self._result(
            VerificationStatus.NOT_FOUND, anchored=anchored, record=record, reason=reason
        )

    def _result(
        self,
        status: VerificationStatus,
        *,
        anchored: AnchoredProof | None,
        record: CertificateRecord | None,
        checks: VerificationChecks | None = None,
        reason: str | None = None,
        certificate: Any = None,
    ) -> VerificationResult:
        receipt = anchored.receipt if anchored is not None else None
        cid = anchored.cid if anchored is not None else None
        return VerificationResult(
            status=status,
            proof=anchored.proof if anchored is not None else None,
            receipt=receipt,
            checks=checks or VerificationChecks(),
            reason=reason,
            certificate=certificate,
            certificate_status=record.effective_status().value if record is not None else None,
            gateway_url=self._store.gateway_url(cid) if cid else None,
            explorer_url=(
                f"{self._settings.explorer_url}/transaction/{receipt.transaction_reference}"
                if receipt is not None
                else None
            ),
            verified_at=datetime.now(UTC),
        )
