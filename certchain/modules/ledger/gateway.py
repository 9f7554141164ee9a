"""
Signed client for the ledger gateway.

The gateway submits topic and token transactions on behalf of the operator
account and waits for the receipt. Each request body is canonical JSON signed
with the operator key; the gateway rejects requests whose
``X-Operator-Signature`` does not verify against the account's public key.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any, cast

import httpx
import structlog

from certchain.core.config import Settings
from certchain.core.crypto.canonicalization import canonicalize_jcs_bytes
from certchain.core.crypto.signing import OperatorPrivateKey, load_operator_key, sign_payload
from certchain.core.errors import (
    AnchorConfigurationError,
    AnchorRejectedError,
    AnchorUnavailableError,
    InsufficientFundsError,
)
from certchain.core.logging import get_logger

logger = get_logger(__name__)

# Receipt statuses that require the operator to top up the account.
INSUFFICIENT_FUNDS_STATUSES = frozenset(
    {
        "INSUFFICIENT_PAYER_BALANCE",
        "INSUFFICIENT_TX_FEE",
        "INSUFFICIENT_ACCOUNT_BALANCE",
        "INSUFFICIENT_BALANCES_FOR_RENEWAL_FEES",
    }
)
# Statuses for which the transaction was provably not submitted.
NOT_SUBMITTED_STATUSES = frozenset(
    {"BUSY", "PLATFORM_NOT_ACTIVE", "PLATFORM_TRANSACTION_NOT_CREATED"}
)


@dataclass
class GatewayConfig:
    """Connection and operator settings for the ledger gateway."""

    base_url: str
    operator_account_id: str = ""
    operator_private_key: str = ""
    timeout_seconds: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> GatewayConfig:
        return cls(
            base_url=settings.ledger_gateway_url,
            operator_account_id=settings.ledger_operator_account_id,
            operator_private_key=settings.ledger_operator_private_key,
            timeout_seconds=settings.ledger_timeout_seconds,
        )


class LedgerGatewayClient:
    """Writes topic messages and token mints through the ledger gateway."""

    def __init__(
        self,
        config: GatewayConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        log: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._log = log or logger
        self._http_client: httpx.AsyncClient | None = None
        self._private_key: OperatorPrivateKey | None = None

    def _operator_key(self) -> OperatorPrivateKey:
        if self._private_key is None:
            if not (self._config.operator_account_id and self._config.operator_private_key):
                raise AnchorConfigurationError("Ledger operator credentials are not configured")
            try:
                self._private_key = load_operator_key(self._config.operator_private_key)
            except (TypeError, ValueError) as exc:
                raise AnchorConfigurationError(f"Invalid ledger operator key: {exc}") from exc
        return self._private_key

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self._config.base_url.rstrip("/"),
                headers={"Content-Type": "application/json"},
                timeout=httpx.Timeout(self._config.timeout_seconds, connect=10.0),
                transport=self._transport,
            )
        return self._http_client

    async def _signed_post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        """POST a signed request and return the receipt body.

        Raises
        ------
        AnchorUnavailableError
            ``may_have_landed`` is ``False`` only when the request never
            reached the gateway or the ledger reported it was not submitted.
        InsufficientFundsError
            HTTP 402 or an ``INSUFFICIENT_*`` receipt status.
        AnchorRejectedError
            Any other rejection.
        """
        key = self._operator_key()
        payload = canonicalize_jcs_bytes(body)
        headers = {
            "X-Operator-Account": self._config.operator_account_id,
            "X-Operator-Signature": sign_payload(payload, key),
        }
        client = await self._get_client()

        try:
            response = await client.post(path, content=payload, headers=headers)
        except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
            raise AnchorUnavailableError(
                f"Ledger gateway unreachable: {exc}", may_have_landed=False
            ) from exc
        except httpx.TimeoutException as exc:
            raise AnchorUnavailableError(f"Ledger gateway timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise AnchorUnavailableError(f"Ledger gateway transport error: {exc}") from exc

        result = self._decode(response)
        status = str(result.get("status") or "")

        if response.status_code == 402 or status in INSUFFICIENT_FUNDS_STATUSES:
            self._log.error("ledger_insufficient_funds", path=path, status=status or None)
            raise InsufficientFundsError(
                f"Operator account {self._config.operator_account_id} cannot pay for "
                f"the transaction ({status or 'HTTP 402'})"
            )
        if status in NOT_SUBMITTED_STATUSES or response.status_code == 429:
            raise AnchorUnavailableError(
                f"Ledger is not accepting transactions ({status or 'HTTP 429'})",
                may_have_landed=False,
            )
        if response.status_code >= 500:
            self._log.warning("ledger_gateway_error", path=path, status_code=response.status_code)
            raise AnchorUnavailableError(
                f"Ledger gateway returned HTTP {response.status_code}"
            )
        if response.status_code >= 400 or (status and status != "SUCCESS"):
            self._log.error(
                "ledger_transaction_rejected",
                path=path,
                status_code=response.status_code,
                status=status or None,
            )
            raise AnchorRejectedError(
                f"Ledger rejected the transaction ({status or f'HTTP {response.status_code}'})",
                status=status or None,
            )
        return result

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return cast(dict[str, Any], body) if isinstance(body, dict) else {}

    # ------------------------------------------------------------------
    # Consensus topics
    # ------------------------------------------------------------------

    async def create_topic(self, memo: str) -> str:
        """Create a topic whose admin and submit keys are the operator key."""
        result = await self._signed_post("/api/v1/topics", {"memo": memo})
        topic_id = result.get("topicId")
        if not topic_id:
            raise AnchorRejectedError("Ledger gateway did not return a topic id")
        return str(topic_id)

    async def submit_message(self, topic_id: str, message: bytes) -> dict[str, Any]:
        """Submit a topic message.

        Returns the receipt with ``transactionId``, ``topicSequenceNumber``
        and ``consensusTimestamp``.
        """
        result = await self._signed_post(
            f"/api/v1/topics/{topic_id}/messages",
            {"message": base64.b64encode(message).decode("ascii")},
        )
        if not result.get("transactionId") or result.get("topicSequenceNumber") is None:
            raise AnchorRejectedError("Ledger gateway returned an incomplete topic receipt")
        return result

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    async def create_token(self, name: str, symbol: str, memo: str) -> str:
        """Create a non-fungible token collection with the operator as treasury."""
        result = await self._signed_post(
            "/api/v1/tokens",
            {
                "name": name,
                "symbol": symbol,
                "memo": memo,
                "tokenType": "NON_FUNGIBLE_UNIQUE",
                "supplyType": "INFINITE",
                "treasuryAccountId": self._config.operator_account_id,
            },
        )
        token_id = result.get("tokenId")
        if not token_id:
            raise AnchorRejectedError("Ledger gateway did not return a token id")
        return str(token_id)

    async def mint_token(self, token_id: str, metadata: bytes) -> dict[str, Any]:
        """Mint one NFT carrying ``metadata``.

        Returns the receipt with ``transactionId``, ``serials`` and
        ``consensusTimestamp``.
        """
        result = await self._signed_post(
            f"/api/v1/tokens/{token_id}/mint",
            {"metadata": [base64.b64encode(metadata).decode("ascii")]},
        )
        if not result.get("transactionId") or not result.get("serials"):
            raise AnchorRejectedError("Ledger gateway returned an incomplete mint receipt")
        return result

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
