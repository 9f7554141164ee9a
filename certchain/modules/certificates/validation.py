"""Certificate content validation collaborator for the issuance pipeline."""

from __future__ import annotations

import base64
import binascii
import hashlib
import re
from datetime import date
from typing import Protocol

from certchain.core.crypto.canonicalization import normalize_text
from certchain.core.crypto.hashing import canonical_content
from certchain.core.errors import InvalidInputError
from certchain.modules.certificates.schemas import CertificateContent, FileAttachment

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MAX_FILE_SIZE = 10 * 1024 * 1024
SUPPORTED_FILE_TYPES = frozenset(
    {
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/webp",
        "image/gif",
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    }
)


class ContentValidator(Protocol):
    def validate(self, content: CertificateContent) -> None:
        """Raise ``ValidationError`` if ``content`` must not be issued."""
        ...


class CertificateValidator:
    """
    Default validation rules.

    Collects every problem before raising so callers can report all invalid
    fields at once.
    """

    def __init__(self, *, max_file_size: int = MAX_FILE_SIZE) -> None:
        self._max_file_size = max_file_size

    def validate(self, content: CertificateContent) -> None:
        # Raises InvalidInputError listing missing required fields.
        canonical_content(content)

        errors: list[str] = []
        fields: list[str] = []

        email = normalize_text(content.recipient_email)
        if not EMAIL_PATTERN.match(email):
            errors.append("Invalid email address format")
            fields.append("recipientEmail")

        try:
            date.fromisoformat(normalize_text(content.completion_date))
        except ValueError:
            errors.append("Completion date must be an ISO date (YYYY-MM-DD)")
            fields.append("completionDate")

        if (
            content.expiry_timestamp is not None
            and content.issue_timestamp is not None
            and content.expiry_timestamp <= content.issue_timestamp
        ):
            errors.append("Expiry must be later than the issue timestamp")
            fields.append("expiryTimestamp")

        if content.file is not None:
            file_errors = self._file_errors(content.file)
            if file_errors:
                errors.extend(file_errors)
                fields.append("file")

        if errors:
            raise InvalidInputError("; ".join(errors), fields=fields)

    def _file_errors(self, attachment: FileAttachment) -> list[str]:
        problems: list[str] = []
        if attachment.file_type and attachment.file_type not in SUPPORTED_FILE_TYPES:
            problems.append(f"Unsupported file type: {attachment.file_type}")
        if attachment.data is None:
            return problems
        try:
            raw = base64.b64decode(attachment.data, validate=True)
        except (binascii.Error, ValueError):
            problems.append("File data is not valid base64")
            return problems
        if len(raw) > self._max_file_size:
            problems.append(f"File exceeds {self._max_file_size} bytes")
        if attachment.sha256 and hashlib.sha256(raw).hexdigest() != attachment.sha256.lower():
            problems.append("File digest does not match file data")
        return problems
