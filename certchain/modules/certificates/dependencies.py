"""FastAPI dependencies wiring services to the shared clients on ``app.state``."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from certchain.core.config import get_settings
from certchain.core.errors import (
    AnchorConfigurationError,
    AnchorInDoubtError,
    AnchorRejectedError,
    AnchorUnavailableError,
    CertchainError,
    CertificateNotFoundError,
    DuplicateIssuanceError,
    InsufficientFundsError,
    IssuanceError,
    NotFoundError,
    StorageRejectedError,
    StorageUnavailableError,
    ValidationError,
)
from certchain.db.session import DbSession
from certchain.modules.certificates.pipeline import IssuancePipeline
from certchain.modules.certificates.repository import CertificateRepository
from certchain.modules.certificates.verification import VerificationService

# Most specific first.
_STATUS_BY_ERROR: tuple[tuple[type[CertchainError], int], ...] = (
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (AnchorInDoubtError, status.HTTP_409_CONFLICT),
    (DuplicateIssuanceError, status.HTTP_409_CONFLICT),
    (CertificateNotFoundError, status.HTTP_404_NOT_FOUND),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InsufficientFundsError, status.HTTP_402_PAYMENT_REQUIRED),
    (AnchorConfigurationError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (StorageUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (AnchorUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (StorageRejectedError, status.HTTP_502_BAD_GATEWAY),
    (AnchorRejectedError, status.HTTP_502_BAD_GATEWAY),
)


def status_for(exc: CertchainError) -> int:
    """HTTP status for a domain error; pipeline errors map through their cause."""
    if isinstance(exc, IssuanceError) and exc.cause is not None:
        return status_for(exc.cause)
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def to_http_exception(exc: CertchainError) -> HTTPException:
    detail: dict[str, object] = {"error": type(exc).__name__, "message": str(exc)}
    if isinstance(exc, IssuanceError):
        detail.update(
            {
                "step": exc.step,
                "certificateId": exc.certificate_id,
                "cid": exc.cid,
                "uploadSucceeded": exc.upload_succeeded,
            }
        )
        if exc.cause is not None:
            detail["error"] = type(exc.cause).__name__
    elif isinstance(exc, DuplicateIssuanceError):
        detail["certificateId"] = exc.certificate_id
    if isinstance(exc, ValidationError) and getattr(exc, "fields", None):
        detail["fields"] = exc.fields  # type: ignore[attr-defined]
    return HTTPException(status_code=status_for(exc), detail=detail)


def get_repository(db: DbSession) -> CertificateRepository:
    return CertificateRepository(db)


Repository = Annotated[CertificateRepository, Depends(get_repository)]


def get_pipeline(request: Request, repository: Repository) -> IssuancePipeline:
    state = request.app.state
    return IssuancePipeline(
        repository,
        state.content_store,
        state.anchor,
        settings=get_settings(),
    )


def get_verification_service(request: Request, repository: Repository) -> VerificationService:
    state = request.app.state
    return VerificationService(
        state.content_store,
        state.anchors,
        repository=repository,
        settings=get_settings(),
    )


Pipeline = Annotated[IssuancePipeline, Depends(get_pipeline)]
Verifier = Annotated[VerificationService, Depends(get_verification_service)]
