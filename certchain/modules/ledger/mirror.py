"""
Read-only client for the ledger mirror node REST API.

Only the endpoints needed to read proofs back are wrapped. Missing entities
return ``None``; infrastructure failures raise ``AnchorUnavailableError``.
"""

from __future__ import annotations

import base64
import binascii
from typing import Any, cast

import httpx
import structlog

from certchain.core.errors import AnchorRejectedError, AnchorUnavailableError
from certchain.core.logging import get_logger
from certchain.modules.ledger.base import mirror_transaction_id

logger = get_logger(__name__)


def decode_base64(value: str | None) -> bytes | None:
    """Decode a base64 message or metadata field. ``None`` if absent or malformed."""
    if not value:
        return None
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return None


class MirrorNodeClient:
    """Async mirror node client with lazy ``httpx.AsyncClient`` creation."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        log: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = httpx.Timeout(timeout_seconds, connect=10.0)
        self._transport = transport
        self._log = log or logger
        self._http_client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self._base_url,
                headers={"Accept": "application/json"},
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._http_client

    async def _get_json(
        self, path: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        client = await self._get_client()
        try:
            response = await client.get(path, params=params)
        except httpx.TimeoutException as exc:
            raise AnchorUnavailableError(f"Mirror node timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise AnchorUnavailableError(f"Mirror node unreachable: {exc}") from exc

        if response.status_code == 404:
            return None
        if response.status_code == 429 or response.status_code >= 500:
            self._log.warning(
                "mirror_node_unavailable", path=path, status_code=response.status_code
            )
            raise AnchorUnavailableError(
                f"Mirror node returned HTTP {response.status_code} for {path}"
            )
        if response.status_code >= 400:
            # Malformed ids surface as 400 from the mirror node.
            if response.status_code == 400:
                return None
            raise AnchorRejectedError(
                f"Mirror node rejected {path} with HTTP {response.status_code}"
            )
        return cast(dict[str, Any], response.json())

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def get_transaction(self, transaction_id: str) -> dict[str, Any] | None:
        """Transaction record for a transaction id in either accepted form."""
        body = await self._get_json(f"/api/v1/transactions/{mirror_transaction_id(transaction_id)}")
        transactions = (body or {}).get("transactions") or []
        if not transactions:
            return None
        # Scheduled or child records share the id; the parent comes first.
        return cast(dict[str, Any], transactions[0])

    async def find_transaction_by_timestamp(
        self, consensus_timestamp: str
    ) -> dict[str, Any] | None:
        body = await self._get_json(
            "/api/v1/transactions", params={"timestamp": consensus_timestamp, "limit": 1}
        )
        transactions = (body or {}).get("transactions") or []
        return cast(dict[str, Any], transactions[0]) if transactions else None

    # ------------------------------------------------------------------
    # Consensus topics
    # ------------------------------------------------------------------

    async def get_topic_message(
        self, topic_id: str, sequence_number: int
    ) -> dict[str, Any] | None:
        return await self._get_json(f"/api/v1/topics/{topic_id}/messages/{sequence_number}")

    async def get_topic_message_by_timestamp(
        self, consensus_timestamp: str
    ) -> dict[str, Any] | None:
        return await self._get_json(f"/api/v1/topics/messages/{consensus_timestamp}")

    async def list_topic_messages(self, topic_id: str, *, limit: int = 100) -> list[dict[str, Any]]:
        """Most recent messages of a topic, newest first."""
        body = await self._get_json(
            f"/api/v1/topics/{topic_id}/messages", params={"limit": limit, "order": "desc"}
        )
        return list((body or {}).get("messages") or [])

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    async def get_nft(self, token_id: str, serial_number: int) -> dict[str, Any] | None:
        return await self._get_json(f"/api/v1/tokens/{token_id}/nfts/{serial_number}")

    async def list_nfts(self, token_id: str, *, limit: int = 100) -> list[dict[str, Any]]:
        """Most recently minted NFTs of a collection, newest first."""
        body = await self._get_json(
            f"/api/v1/tokens/{token_id}/nfts", params={"limit": limit, "order": "desc"}
        )
        return list((body or {}).get("nfts") or [])

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    async def ping(self) -> bool:
        """Whether the mirror node answers a trivial query."""
        try:
            body = await self._get_json("/api/v1/network/nodes", params={"limit": 1})
        except (AnchorUnavailableError, AnchorRejectedError) as exc:
            self._log.warning("mirror_node_ping_failed", error=str(exc))
            return False
        return body is not None

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
