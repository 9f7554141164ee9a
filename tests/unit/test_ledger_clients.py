"""Tests for the mirror node reader and the signed ledger gateway client."""

from __future__ import annotations

import base64
import json
from collections.abc import Callable

import httpx
import pytest

from certchain.core.crypto.signing import generate_operator_keypair, verify_payload_signature
from certchain.core.errors import (
    AnchorConfigurationError,
    AnchorRejectedError,
    AnchorUnavailableError,
    InsufficientFundsError,
)
from certchain.modules.ledger.base import (
    canonical_transaction_id,
    is_valid_transaction_id,
    mirror_transaction_id,
)
from certchain.modules.ledger.gateway import GatewayConfig, LedgerGatewayClient
from certchain.modules.ledger.mirror import MirrorNodeClient, decode_base64

PRIVATE_PEM, PUBLIC_PEM = generate_operator_keypair()

Handler = Callable[[httpx.Request], httpx.Response]


def _gateway(handler: Handler, **overrides: str) -> LedgerGatewayClient:
    config = GatewayConfig(
        base_url="https://gateway.test",
        operator_account_id=overrides.get("account", "0.0.2"),
        operator_private_key=overrides.get("key", PRIVATE_PEM),
    )
    return LedgerGatewayClient(config, transport=httpx.MockTransport(handler))


def _mirror(handler: Handler) -> MirrorNodeClient:
    return MirrorNodeClient("https://mirror.test/", transport=httpx.MockTransport(handler))


class TestTransactionIds:
    def test_accepts_both_forms(self) -> None:
        assert canonical_transaction_id("0.0.2-1700000000-000000001") == (
            "0.0.2@1700000000.000000001"
        )
        assert mirror_transaction_id("0.0.2@1700000000.000000001") == (
            "0.0.2-1700000000-000000001"
        )

    @pytest.mark.parametrize("value", ["", "0.0.2", "abc@1.2", "0.0.2@1700000000"])
    def test_rejects_malformed(self, value: str) -> None:
        assert not is_valid_transaction_id(value)


class TestMirrorNodeClient:
    @pytest.mark.asyncio
    async def test_get_transaction_uses_mirror_form(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            return httpx.Response(200, json={"transactions": [{"name": "TOKENMINT"}]})

        mirror = _mirror(handler)
        transaction = await mirror.get_transaction("0.0.2@1700000000.000000001")
        assert transaction == {"name": "TOKENMINT"}
        assert seen == ["/api/v1/transactions/0.0.2-1700000000-000000001"]
        await mirror.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [400, 404])
    async def test_missing_entities_return_none(self, status_code: int) -> None:
        mirror = _mirror(lambda request: httpx.Response(status_code))
        assert await mirror.get_topic_message("0.0.5005", 1) is None
        assert await mirror.get_transaction("0.0.2@1.1") is None
        await mirror.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [429, 500, 503])
    async def test_server_errors_are_unavailable(self, status_code: int) -> None:
        mirror = _mirror(lambda request: httpx.Response(status_code))
        with pytest.raises(AnchorUnavailableError):
            await mirror.get_nft("0.0.6006", 1)
        await mirror.close()

    @pytest.mark.asyncio
    async def test_forbidden_is_rejected(self) -> None:
        mirror = _mirror(lambda request: httpx.Response(403))
        with pytest.raises(AnchorRejectedError):
            await mirror.list_nfts("0.0.6006")
        await mirror.close()

    @pytest.mark.asyncio
    async def test_timeout_is_unavailable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        mirror = _mirror(handler)
        with pytest.raises(AnchorUnavailableError):
            await mirror.list_topic_messages("0.0.5005")
        await mirror.close()

    @pytest.mark.asyncio
    async def test_list_topic_messages_newest_first(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"messages": [{"sequence_number": 2}]})

        mirror = _mirror(handler)
        messages = await mirror.list_topic_messages("0.0.5005", limit=5)
        assert messages == [{"sequence_number": 2}]
        assert seen[0].url.params["order"] == "desc"
        assert seen[0].url.params["limit"] == "5"
        await mirror.close()

    @pytest.mark.asyncio
    async def test_ping(self) -> None:
        up = _mirror(lambda request: httpx.Response(200, json={"nodes": []}))
        down = _mirror(lambda request: httpx.Response(503))
        assert await up.ping() is True
        assert await down.ping() is False
        await up.close()
        await down.close()

    def test_decode_base64(self) -> None:
        assert decode_base64(base64.b64encode(b"proof").decode()) == b"proof"
        assert decode_base64("not base64!") is None
        assert decode_base64(None) is None


class TestLedgerGatewayClient:
    @pytest.mark.asyncio
    async def test_submit_message_is_signed(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "status": "SUCCESS",
                    "transactionId": "0.0.2@1700000000.000000001",
                    "topicSequenceNumber": 4,
                },
            )

        gateway = _gateway(handler)
        result = await gateway.submit_message("0.0.5005", b"hello")

        assert result["topicSequenceNumber"] == 4
        request = seen[0]
        assert request.url.path == "/api/v1/topics/0.0.5005/messages"
        assert json.loads(request.content) == {"message": base64.b64encode(b"hello").decode()}
        assert request.headers["X-Operator-Account"] == "0.0.2"
        assert verify_payload_signature(
            request.content, request.headers["X-Operator-Signature"], PUBLIC_PEM
        )
        await gateway.close()

    @pytest.mark.asyncio
    async def test_missing_credentials_is_configuration_error(self) -> None:
        gateway = _gateway(lambda request: httpx.Response(200), key="")
        with pytest.raises(AnchorConfigurationError):
            await gateway.create_topic("memo")

    @pytest.mark.asyncio
    async def test_invalid_key_is_configuration_error(self) -> None:
        gateway = _gateway(lambda request: httpx.Response(200), key="garbage")
        with pytest.raises(AnchorConfigurationError):
            await gateway.create_topic("memo")

    @pytest.mark.asyncio
    async def test_connect_error_did_not_land(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        gateway = _gateway(handler)
        with pytest.raises(AnchorUnavailableError) as excinfo:
            await gateway.submit_message("0.0.5005", b"x")
        assert excinfo.value.may_have_landed is False
        await gateway.close()

    @pytest.mark.asyncio
    async def test_read_timeout_may_have_landed(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("no receipt", request=request)

        gateway = _gateway(handler)
        with pytest.raises(AnchorUnavailableError) as excinfo:
            await gateway.submit_message("0.0.5005", b"x")
        assert excinfo.value.may_have_landed is True
        await gateway.close()

    @pytest.mark.asyncio
    async def test_server_error_may_have_landed(self) -> None:
        gateway = _gateway(lambda request: httpx.Response(502))
        with pytest.raises(AnchorUnavailableError) as excinfo:
            await gateway.mint_token("0.0.6006", b"x")
        assert excinfo.value.may_have_landed is True
        await gateway.close()

    @pytest.mark.asyncio
    async def test_busy_did_not_land(self) -> None:
        gateway = _gateway(lambda request: httpx.Response(503, json={"status": "BUSY"}))
        with pytest.raises(AnchorUnavailableError) as excinfo:
            await gateway.submit_message("0.0.5005", b"x")
        assert excinfo.value.may_have_landed is False
        await gateway.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(402),
            httpx.Response(200, json={"status": "INSUFFICIENT_PAYER_BALANCE"}),
            httpx.Response(400, json={"status": "INSUFFICIENT_TX_FEE"}),
        ],
    )
    async def test_insufficient_funds(self, response: httpx.Response) -> None:
        gateway = _gateway(lambda request: response)
        with pytest.raises(InsufficientFundsError):
            await gateway.submit_message("0.0.5005", b"x")
        await gateway.close()

    @pytest.mark.asyncio
    async def test_rejection_carries_status(self) -> None:
        gateway = _gateway(
            lambda request: httpx.Response(400, json={"status": "INVALID_SIGNATURE"})
        )
        with pytest.raises(AnchorRejectedError) as excinfo:
            await gateway.submit_message("0.0.5005", b"x")
        assert excinfo.value.status == "INVALID_SIGNATURE"
        await gateway.close()

    @pytest.mark.asyncio
    async def test_incomplete_mint_receipt_is_rejected(self) -> None:
        gateway = _gateway(
            lambda request: httpx.Response(
                200, json={"status": "SUCCESS", "transactionId": "0.0.2@1.1"}
            )
        )
        with pytest.raises(AnchorRejectedError):
            await gateway.mint_token("0.0.6006", b"x")
        await gateway.close()

    @pytest.mark.asyncio
    async def test_create_token(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"status": "SUCCESS", "tokenId": "0.0.6006"})

        gateway = _gateway(handler)
        assert await gateway.create_token("Certificates", "CERT", "memo") == "0.0.6006"
        body = json.loads(seen[0].content)
        assert body["tokenType"] == "NON_FUNGIBLE_UNIQUE"
        assert body["treasuryAccountId"] == "0.0.2"
        await gateway.close()
