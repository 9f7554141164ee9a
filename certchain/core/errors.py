"""
Error taxonomy for issuance and verification.

Transient infrastructure failures (``*UnavailableError``) are retried with
bounded backoff; everything else is surfaced to the caller unchanged. A hash
mismatch is deliberately absent: tamper detection is a verification result,
not an exception.
"""

from __future__ import annotations


class CertchainError(Exception):
    """Base class for all domain errors."""


# ---------------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------------


class ValidationError(CertchainError, ValueError):
    """Certificate content was rejected by validation. Not retried."""


class InvalidInputError(ValidationError):
    """Required certificate fields are missing or empty after normalization."""

    def __init__(self, message: str, *, fields: list[str] | None = None) -> None:
        super().__init__(message)
        self.fields = fields or []


# ---------------------------------------------------------------------------
# Content store
# ---------------------------------------------------------------------------


class StorageError(CertchainError):
    """Base class for content-store failures."""


class StorageUnavailableError(StorageError):
    """Network error, timeout or 5xx from the content store. Retryable."""


class StorageRejectedError(StorageError):
    """The content store refused the request (4xx, bad credentials). Fatal."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(StorageError):
    """No payload is available for the requested CID."""


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class AnchorError(CertchainError):
    """Base class for ledger anchoring failures."""


class AnchorUnavailableError(AnchorError):
    """Ledger node or gateway failure. Retryable.

    ``may_have_landed`` is ``False`` only when the request provably never
    reached the ledger (connection refused, DNS failure). Timeouts after the
    request was sent and 5xx responses may still have been committed.
    """

    def __init__(self, message: str, *, may_have_landed: bool = True) -> None:
        super().__init__(message)
        self.may_have_landed = may_have_landed


class AnchorRejectedError(AnchorError):
    """The ledger rejected the proof (malformed, oversized, bad signature). Fatal."""

    def __init__(self, message: str, *, status: str | None = None) -> None:
        super().__init__(message)
        self.status = status


class InsufficientFundsError(AnchorError):
    """Operator account balance or fee allowance exhausted. Requires operator action."""


class AnchorConfigurationError(AnchorError):
    """No topic/collection identifier is configured and bootstrap is disabled."""


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


class IssuanceError(CertchainError):
    """An issuance pipeline step failed.

    Carries enough context to resume: which step failed, whether the payload
    was already uploaded and the CID that was recorded, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        step: str,
        certificate_id: str,
        cid: str | None = None,
        cause: CertchainError | None = None,
    ) -> None:
        super().__init__(message)
        self.step = step
        self.certificate_id = certificate_id
        self.cid = cid
        self.cause = cause

    @property
    def upload_succeeded(self) -> bool:
        return self.cid is not None


class DuplicateIssuanceError(CertchainError):
    """Another issuance for the same certificate id is in flight or already anchored."""

    def __init__(self, message: str, *, certificate_id: str) -> None:
        super().__init__(message)
        self.certificate_id = certificate_id


class AnchorInDoubtError(DuplicateIssuanceError):
    """A previous anchor attempt may have landed and no proof was found on the ledger.

    The operator must confirm the first attempt did not commit and resume with
    ``force=True``.
    """


class CertificateNotFoundError(CertchainError):
    """No side-table record exists for the certificate id."""
