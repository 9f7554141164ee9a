"""Operator endpoints for issuing, resuming and revoking certificates."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from certchain.core.errors import CertchainError
from certchain.core.logging import get_logger
from certchain.core.security import Operator
from certchain.db.models import CertificateRecord
from certchain.modules.certificates.dependencies import Pipeline, Repository, to_http_exception
from certchain.modules.certificates.schemas import (
    CertificateContent,
    CertificateStatusResponse,
    IssuanceResult,
    ResumeAnchoringRequest,
    RevokeRequest,
)

logger = get_logger(__name__)
router = APIRouter()


def _status_response(record: CertificateRecord) -> CertificateStatusResponse:
    return CertificateStatusResponse(
        id=record.id,
        status=record.effective_status().value,
        certificate_hash=record.certificate_hash,
        ipfs_cid=record.ipfs_hash,
        cid_hash=record.cid_hash,
        anchor_strategy=record.anchor_strategy.value if record.anchor_strategy else None,
        transaction_id=record.hedera_transaction_id,
        ledger_locator=record.ledger_locator,
        nft_token_id=record.nft_token_id,
        anchor_attempted_at=record.anchor_attempted_at,
        failure_step=record.failure_step,
        failure_reason=record.failure_reason,
        expiry_timestamp=record.expiry_timestamp,
        revoked_at=record.revoked_at,
        revocation_reason=record.revocation_reason,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


@router.post(
    "",
    response_model=IssuanceResult,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def issue_certificate(
    body: CertificateContent,
    pipeline: Pipeline,
    _operator: Operator,
) -> IssuanceResult:
    """Hash, upload and anchor a certificate (operator only)."""
    try:
        return await pipeline.issue(body)
    except CertchainError as exc:
        raise to_http_exception(exc) from exc


@router.get(
    "/{certificate_id}",
    response_model=CertificateStatusResponse,
    response_model_by_alias=True,
)
async def get_certificate(
    certificate_id: UUID,
    repository: Repository,
    _operator: Operator,
) -> CertificateStatusResponse:
    """Last-known side-table status of a certificate (operator only)."""
    record = await repository.get(certificate_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Certificate not found",
        )
    return _status_response(record)


@router.post(
    "/{certificate_id}/anchor",
    response_model=IssuanceResult,
    response_model_by_alias=True,
)
async def resume_anchoring(
    certificate_id: UUID,
    pipeline: Pipeline,
    _operator: Operator,
    body: ResumeAnchoringRequest | None = None,
) -> IssuanceResult:
    """Re-run the anchoring step for a certificate whose upload succeeded."""
    force = body.force if body is not None else False
    try:
        return await pipeline.resume_anchoring(certificate_id, force=force)
    except CertchainError as exc:
        raise to_http_exception(exc) from exc


@router.post(
    "/{certificate_id}/revoke",
    response_model=CertificateStatusResponse,
    response_model_by_alias=True,
)
async def revoke_certificate(
    certificate_id: UUID,
    body: RevokeRequest,
    pipeline: Pipeline,
    _operator: Operator,
) -> CertificateStatusResponse:
    """Revoke an issued certificate (operator only)."""
    try:
        record = await pipeline.revoke(certificate_id, body.reason)
    except CertchainError as exc:
        raise to_http_exception(exc) from exc
    return _status_response(record)
