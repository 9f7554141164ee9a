"""
Content-addressed storage client (Pinata pinning API + IPFS gateway).

Uploads go to the pinning API, which returns the CID computed by the storage
service; reads go through a public gateway at ``<gateway>/ipfs/<cid>``. The
client never computes CIDs locally.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, cast

import httpx
import structlog

from certchain.core.config import Settings
from certchain.core.errors import NotFoundError, StorageRejectedError, StorageUnavailableError
from certchain.core.logging import get_logger

logger = get_logger(__name__)

_CID_V0 = re.compile(r"^Qm[1-9A-HJ-NP-Za-km-z]{44}$")
_CID_V1_BASE32 = re.compile(r"^b[a-z2-7]{58,}$")


def is_valid_cid(value: str) -> bool:
    """Syntactic check for CIDv0 (base58 ``Qm...``) and base32 CIDv1 (``b...``)."""
    if not isinstance(value, str):
        return False
    candidate = value.strip()
    return bool(_CID_V0.match(candidate) or _CID_V1_BASE32.match(candidate))


@dataclass
class StorageConfig:
    """Connection settings for the pinning API and the retrieval gateway."""

    api_url: str = "https://api.pinata.cloud"
    gateway_url: str = "https://gateway.pinata.cloud"
    api_key: str = ""
    secret_api_key: str = ""
    jwt: str = ""
    cid_version: int = 1
    timeout_seconds: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> StorageConfig:
        return cls(
            api_url=settings.pinata_api_url,
            gateway_url=settings.ipfs_gateway_url,
            api_key=settings.pinata_api_key,
            secret_api_key=settings.pinata_secret_api_key,
            jwt=settings.pinata_jwt,
            cid_version=settings.ipfs_cid_version,
            timeout_seconds=settings.storage_timeout_seconds,
        )


@dataclass(frozen=True)
class UploadResult:
    cid: str
    size: int
    timestamp: str | None = None
    tags: dict[str, str] = field(default_factory=dict)


class PinataContentStore:
    """
    ContentStore backed by Pinata.

    Authenticates with a scoped JWT when configured, otherwise with the
    ``pinata_api_key`` / ``pinata_secret_api_key`` header pair.
    """

    def __init__(
        self,
        config: StorageConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        log: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._log = log or logger
        self._api_client: httpx.AsyncClient | None = None
        self._gateway_client: httpx.AsyncClient | None = None

    def _auth_headers(self) -> dict[str, str]:
        if self._config.jwt:
            return {"Authorization": f"Bearer {self._config.jwt}"}
        if self._config.api_key and self._config.secret_api_key:
            return {
                "pinata_api_key": self._config.api_key,
                "pinata_secret_api_key": self._config.secret_api_key,
            }
        raise StorageRejectedError("Content store credentials are not configured")

    def _timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self._config.timeout_seconds, connect=10.0)

    async def _get_api_client(self) -> httpx.AsyncClient:
        """Return (or lazily create) the authenticated pinning API client."""
        if self._api_client is None:
            self._api_client = httpx.AsyncClient(
                base_url=self._config.api_url.rstrip("/"),
                headers=self._auth_headers(),
                timeout=self._timeout(),
                transport=self._transport,
            )
        return self._api_client

    async def _get_gateway_client(self) -> httpx.AsyncClient:
        if self._gateway_client is None:
            self._gateway_client = httpx.AsyncClient(
                base_url=self._config.gateway_url.rstrip("/"),
                timeout=self._timeout(),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._gateway_client

    def gateway_url(self, cid: str) -> str:
        """Public retrieval URL for ``cid``."""
        return f"{self._config.gateway_url.rstrip('/')}/ipfs/{cid}"

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def upload(
        self,
        payload: bytes,
        name: str,
        tags: dict[str, str] | None = None,
    ) -> UploadResult:
        """Pin ``payload`` and return the CID assigned by the storage service.

        Raises
        ------
        StorageUnavailableError
            Network failure, timeout, 429 or 5xx. Safe to retry: pinning
            identical bytes yields the same CID.
        StorageRejectedError
            Any other non-success response, e.g. invalid credentials.
        """
        client = await self._get_api_client()
        tags = dict(tags or {})
        metadata = {"name": name, "keyvalues": tags}
        options = {"cidVersion": self._config.cid_version}

        self._log.info("content_upload_started", name=name, size=len(payload))

        try:
            response = await client.post(
                "/pinning/pinFileToIPFS",
                files={"file": (name, payload, "application/json")},
                data={
                    "pinataMetadata": json.dumps(metadata),
                    "pinataOptions": json.dumps(options),
                },
            )
        except httpx.TimeoutException as exc:
            raise StorageUnavailableError(f"Content store upload timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise StorageUnavailableError(f"Content store unreachable: {exc}") from exc

        self._raise_for_status(response, operation="upload")

        try:
            body = cast(dict[str, Any], response.json())
            cid = str(body["IpfsHash"])
        except (ValueError, KeyError, TypeError) as exc:
            raise StorageRejectedError(
                "Content store returned an unexpected upload response",
                status_code=response.status_code,
            ) from exc

        size = int(body.get("PinSize", len(payload)))
        self._log.info("content_upload_succeeded", name=name, cid=cid, size=size)
        return UploadResult(cid=cid, size=size, timestamp=body.get("Timestamp"), tags=tags)

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    async def fetch(self, cid: str) -> bytes:
        """Retrieve the payload stored under ``cid``.

        An empty 200 response is a valid empty payload.

        Raises
        ------
        NotFoundError
            The gateway has no content for ``cid`` (404/410).
        StorageUnavailableError
            Network failure, timeout, 429 or 5xx.
        """
        client = await self._get_gateway_client()
        try:
            response = await client.get(f"/ipfs/{cid}")
        except httpx.TimeoutException as exc:
            raise StorageUnavailableError(f"Gateway fetch timed out for {cid}: {exc}") from exc
        except httpx.TransportError as exc:
            raise StorageUnavailableError(f"Gateway unreachable: {exc}") from exc

        if response.status_code in (404, 410):
            self._log.info("content_not_found", cid=cid, status_code=response.status_code)
            raise NotFoundError(f"No content stored under {cid}")

        self._raise_for_status(response, operation="fetch")
        return response.content

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    async def test_authentication(self) -> bool:
        """Check that the configured credentials are accepted by the pinning API."""
        try:
            client = await self._get_api_client()
            response = await client.get("/data/testAuthentication")
        except StorageRejectedError:
            return False
        except httpx.HTTPError as exc:
            self._log.warning("content_store_auth_check_failed", error=str(exc))
            return False
        return response.status_code == 200

    def _raise_for_status(self, response: httpx.Response, *, operation: str) -> None:
        status = response.status_code
        if status < 400:
            return
        detail = response.text[:200]
        if status == 429 or status >= 500:
            self._log.warning(
                "content_store_unavailable", operation=operation, status_code=status
            )
            raise StorageUnavailableError(
                f"Content store {operation} failed with HTTP {status}: {detail}"
            )
        self._log.error("content_store_rejected", operation=operation, status_code=status)
        raise StorageRejectedError(
            f"Content store {operation} rejected with HTTP {status}: {detail}",
            status_code=status,
        )

    async def close(self) -> None:
        """Close the underlying HTTP clients."""
        if self._api_client is not None:
            await self._api_client.aclose()
            self._api_client = None
        if self._gateway_client is not None:
            await self._gateway_client.aclose()
            self._gateway_client = None
