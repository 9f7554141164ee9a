"""Protocol for content-addressed storage backends."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from certchain.modules.storage.client import UploadResult


@runtime_checkable
class ContentStore(Protocol):
    """Upload bytes for a CID and read them back by CID."""

    async def upload(
        self, payload: bytes, name: str, tags: dict[str, str] | None = None
    ) -> UploadResult:
        """Store ``payload`` and return the CID assigned by the service."""
        ...

    async def fetch(self, cid: str) -> bytes:
        """Return the payload stored under ``cid``. Raises ``NotFoundError``."""
        ...

    def gateway_url(self, cid: str) -> str:
        """Public retrieval URL for ``cid``."""
        ...

    async def test_authentication(self) -> bool:
        """Check the configured credentials."""
        ...

    async def close(self) -> None:
        ...
