"""Public (unauthenticated) certificate verification endpoints."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, File, HTTPException, Query, UploadFile, status

from certchain.core.errors import CertchainError
from certchain.modules.certificates.dependencies import Verifier, to_http_exception
from certchain.modules.certificates.schemas import VerificationResult
from certchain.modules.ledger.base import is_valid_transaction_id
from certchain.modules.storage.client import is_valid_cid

router = APIRouter()

MAX_VERIFY_UPLOAD_BYTES = 15 * 1024 * 1024


def _parse_nft(value: str) -> tuple[str, int]:
    """Split ``token_id-serial`` (also accepts ``token_id/serial``)."""
    token_id, separator, serial = value.strip().replace("/", "-").rpartition("-")
    if not separator or not token_id or not serial.isdigit():
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="nft must be formatted as <token_id>-<serial>",
        )
    return token_id, int(serial)


@router.get(
    "/verify",
    response_model=VerificationResult,
    response_model_by_alias=True,
)
async def verify_certificate(
    verifier: Verifier,
    cid: str | None = Query(None, description="Content identifier of the payload"),
    transaction_id: str | None = Query(None, description="Ledger transaction id"),
    certificate_id: UUID | None = Query(None, description="Certificate id"),
    nft: str | None = Query(None, description="NFT reference <token_id>-<serial>"),
) -> VerificationResult:
    """Verify a certificate by exactly one reference (public, no auth)."""
    provided = [v for v in (cid, transaction_id, certificate_id, nft) if v is not None]
    if len(provided) != 1:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Provide exactly one of cid, transaction_id, certificate_id or nft",
        )

    try:
        if cid is not None:
            if not is_valid_cid(cid):
                raise HTTPException(
                    status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                    detail="Malformed CID",
                )
            return await verifier.verify_by_cid(cid)
        if transaction_id is not None:
            if not is_valid_transaction_id(transaction_id):
                raise HTTPException(
                    status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                    detail="Malformed transaction id",
                )
            return await verifier.verify_by_transaction(transaction_id)
        if certificate_id is not None:
            return await verifier.verify_by_certificate_id(certificate_id)
        token_id, serial = _parse_nft(nft or "")
        return await verifier.verify_by_token(token_id, serial)
    except CertchainError as exc:
        raise to_http_exception(exc) from exc


@router.post(
    "/verify/file",
    response_model=VerificationResult,
    response_model_by_alias=True,
)
async def verify_certificate_file(
    verifier: Verifier,
    file: UploadFile = File(..., description="Certificate payload JSON"),
) -> VerificationResult:
    """Verify an uploaded certificate payload (public, no auth)."""
    payload = await file.read(MAX_VERIFY_UPLOAD_BYTES + 1)
    if len(payload) > MAX_VERIFY_UPLOAD_BYTES:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail="Certificate file is too large",
        )
    try:
        return await verifier.verify_payload(payload)
    except CertchainError as exc:
        raise to_http_exception(exc) from exc
