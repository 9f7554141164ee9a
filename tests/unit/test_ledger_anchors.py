"""Tests for the consensus-log and token-mint anchoring strategies."""

from __future__ import annotations

import base64
import json

import httpx
import pytest

from certchain.core.crypto.hashing import hash_bytes
from certchain.core.crypto.signing import generate_operator_keypair
from certchain.core.errors import AnchorConfigurationError, AnchorRejectedError
from certchain.modules.certificates.schemas import AnchorReceipt, Proof, TokenMetadata
from certchain.modules.ledger.consensus import ConsensusLogAnchor
from certchain.modules.ledger.gateway import GatewayConfig, LedgerGatewayClient
from certchain.modules.ledger.mirror import MirrorNodeClient
from certchain.modules.ledger.token import TokenMintAnchor, encode_metadata

PRIVATE_PEM, _PUBLIC_PEM = generate_operator_keypair()
TOPIC = "0.0.5005"
TOKEN = "0.0.6006"
TX_ID = "0.0.2@1700000000.000000001"
TX_MIRROR = "0.0.2-1700000000-000000001"
CONSENSUS_TS = "1700000001.000000002"
CID = "bafkreihdwdcefgh4dqkjv67uzcmw7ojee6xedzdetojuzjevtenxquvyku"


def _proof(**overrides: object) -> Proof:
    values: dict[str, object] = {
        "certificate_id": "6f1c1a52-4a53-4d52-9a0e-0c1f5a9b7c11",
        "ipfs_cid": CID,
        "cid_hash": hash_bytes(CID),
        "certificate_hash": "ab" * 32,
        "recipient_hash": "cd" * 32,
        "course_hash": "ef" * 32,
        "issuer_identity": "Acme",
        "timestamp": 1700000000000,
    }
    values.update(overrides)
    return Proof.model_validate(values)


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


class FakeLedger:
    """Routes gateway and mirror requests to canned JSON bodies and records them."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], tuple[int, object]] = {}

    def on(self, method: str, url: str, body: object, status_code: int = 200) -> None:
        self.routes[(method, url)] = (status_code, body)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = f"{request.url.host}{request.url.path}"
        if request.url.query:
            url = f"{url}?{request.url.query.decode()}"
        route = self.routes.get((request.method, url))
        if route is None:
            return httpx.Response(404)
        status_code, body = route
        return httpx.Response(status_code, json=body)

    def posts(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "POST"]


def _clients(ledger: FakeLedger) -> tuple[LedgerGatewayClient, MirrorNodeClient]:
    transport = httpx.MockTransport(ledger)
    gateway = LedgerGatewayClient(
        GatewayConfig(
            base_url="https://gateway.test",
            operator_account_id="0.0.2",
            operator_private_key=PRIVATE_PEM,
        ),
        transport=transport,
    )
    mirror = MirrorNodeClient("https://mirror.test", transport=transport)
    return gateway, mirror


def _topic_message(proof: Proof | bytes, sequence: int = 7) -> dict[str, object]:
    raw = proof if isinstance(proof, bytes) else proof.to_wire()
    return {
        "topic_id": TOPIC,
        "sequence_number": sequence,
        "consensus_timestamp": CONSENSUS_TS,
        "message": _b64(raw),
        "chunk_info": {
            "initial_transaction_id": {
                "account_id": "0.0.2",
                "transaction_valid_start": "1700000000.000000001",
            }
        },
    }


class TestConsensusLogAnchor:
    @pytest.mark.asyncio
    async def test_anchor_submits_canonical_proof(self) -> None:
        ledger = FakeLedger()
        ledger.on(
            "POST",
            f"gateway.test/api/v1/topics/{TOPIC}/messages",
            {
                "status": "SUCCESS",
                "transactionId": TX_MIRROR,
                "topicSequenceNumber": 7,
                "consensusTimestamp": CONSENSUS_TS,
            },
        )
        anchor = ConsensusLogAnchor(*_clients(ledger), TOPIC)
        proof = _proof()

        receipt = await anchor.anchor(proof)

        assert receipt.transaction_reference == TX_ID
        assert receipt.ledger_locator == f"{TOPIC}/7"
        assert receipt.strategy == "consensus_log"
        assert receipt.nft_token_id is None
        body = json.loads(ledger.posts()[0].content)
        assert base64.b64decode(body["message"]) == proof.to_wire()
        await anchor.close()

    @pytest.mark.asyncio
    async def test_anchor_without_topic_is_configuration_error(self) -> None:
        ledger = FakeLedger()
        anchor = ConsensusLogAnchor(*_clients(ledger), None)
        with pytest.raises(AnchorConfigurationError):
            await anchor.anchor(_proof())
        assert ledger.requests == []

    @pytest.mark.asyncio
    async def test_bootstrap_creates_topic_once(self) -> None:
        ledger = FakeLedger()
        ledger.on("POST", "gateway.test/api/v1/topics", {"status": "SUCCESS", "topicId": TOPIC})
        ledger.on(
            "POST",
            f"gateway.test/api/v1/topics/{TOPIC}/messages",
            {"status": "SUCCESS", "transactionId": TX_ID, "topicSequenceNumber": 1},
        )
        anchor = ConsensusLogAnchor(*_clients(ledger), None, bootstrap_enabled=True)

        await anchor.anchor(_proof())
        await anchor.anchor(_proof())

        paths = [r.url.path for r in ledger.posts()]
        assert paths.count("/api/v1/topics") == 1
        assert anchor.resource_id == TOPIC
        await anchor.close()

    @pytest.mark.asyncio
    async def test_oversized_message_is_rejected(self) -> None:
        ledger = FakeLedger()
        anchor = ConsensusLogAnchor(*_clients(ledger), TOPIC, max_message_bytes=64)
        with pytest.raises(AnchorRejectedError) as excinfo:
            await anchor.anchor(_proof())
        assert excinfo.value.status == "MESSAGE_SIZE_TOO_LARGE"
        assert ledger.posts() == []

    @pytest.mark.asyncio
    async def test_lookup_reads_proof_back(self) -> None:
        proof = _proof()
        ledger = FakeLedger()
        ledger.on("GET", f"mirror.test/api/v1/topics/{TOPIC}/messages/7", _topic_message(proof))
        anchor = ConsensusLogAnchor(*_clients(ledger), TOPIC)
        receipt = AnchorReceipt(
            transaction_reference=TX_ID, ledger_locator=f"{TOPIC}/7", strategy="consensus_log"
        )

        anchored = await anchor.lookup(receipt)

        assert anchored is not None
        assert anchored.proof == proof
        assert anchored.receipt.transaction_reference == TX_ID
        await anchor.close()

    @pytest.mark.asyncio
    async def test_lookup_of_missing_message_is_none(self) -> None:
        anchor = ConsensusLogAnchor(*_clients(FakeLedger()), TOPIC)
        receipt = AnchorReceipt(
            transaction_reference=TX_ID, ledger_locator=f"{TOPIC}/99", strategy="consensus_log"
        )
        assert await anchor.lookup(receipt) is None
        await anchor.close()

    @pytest.mark.asyncio
    async def test_resolve_transaction(self) -> None:
        proof = _proof()
        ledger = FakeLedger()
        ledger.on(
            "GET",
            f"mirror.test/api/v1/transactions/{TX_MIRROR}",
            {
                "transactions": [
                    {
                        "name": "CONSENSUSSUBMITMESSAGE",
                        "result": "SUCCESS",
                        "consensus_timestamp": CONSENSUS_TS,
                    }
                ]
            },
        )
        ledger.on(
            "GET", f"mirror.test/api/v1/topics/messages/{CONSENSUS_TS}", _topic_message(proof)
        )
        anchor = ConsensusLogAnchor(*_clients(ledger), TOPIC)

        anchored = await anchor.resolve_transaction(TX_MIRROR)

        assert anchored is not None
        assert anchored.proof == proof
        assert anchored.receipt.transaction_reference == TX_ID
        assert anchored.receipt.ledger_locator == f"{TOPIC}/7"
        await anchor.close()

    @pytest.mark.asyncio
    async def test_resolve_other_transaction_type_is_none(self) -> None:
        ledger = FakeLedger()
        ledger.on(
            "GET",
            f"mirror.test/api/v1/transactions/{TX_MIRROR}",
            {"transactions": [{"name": "CRYPTOTRANSFER", "result": "SUCCESS"}]},
        )
        anchor = ConsensusLogAnchor(*_clients(ledger), TOPIC)
        assert await anchor.resolve_transaction(TX_ID) is None
        await anchor.close()

    @pytest.mark.asyncio
    async def test_find_proof_skips_foreign_messages(self) -> None:
        proof = _proof()
        ledger = FakeLedger()
        ledger.on(
            "GET",
            f"mirror.test/api/v1/topics/{TOPIC}/messages?limit=100&order=desc",
            {
                "messages": [
                    _topic_message(b"hello world", sequence=9),
                    _topic_message(b'{"type":"OTHER"}', sequence=8),
                    _topic_message(proof, sequence=7),
                ]
            },
        )
        anchor = ConsensusLogAnchor(*_clients(ledger), TOPIC)

        by_cid = await anchor.find_proof(cid=CID)
        by_id = await anchor.find_proof(certificate_id=proof.certificate_id)
        missing = await anchor.find_proof(cid="bafkreiother")

        assert by_cid is not None
        assert by_cid.receipt.ledger_locator == f"{TOPIC}/7"
        assert by_cid.receipt.transaction_reference == TX_ID
        assert by_id is not None
        assert by_id.proof == proof
        assert missing is None
        await anchor.close()


class TestTokenMintAnchor:
    def test_metadata_is_deterministic_and_truncated(self) -> None:
        proof = _proof(issuer_identity="An Organization With A Long Name")
        metadata = proof.token_metadata()
        assert metadata.hash == proof.certificate_hash[:32]
        assert metadata.org == "An Organization With"
        assert metadata.to_bytes().startswith(b'{"cid":')
        assert TokenMetadata.from_bytes(metadata.to_bytes()) == metadata

    @pytest.mark.asyncio
    async def test_150_byte_metadata_is_rejected_against_100_byte_limit(self) -> None:
        proof = _proof(ipfs_cid="bafkrei" + "a" * 62, issuer_identity="x" * 20)
        assert len(proof.token_metadata().to_bytes()) == 150

        ledger = FakeLedger()
        anchor = TokenMintAnchor(
            *_clients(ledger), TOKEN, bootstrap_enabled=True, max_metadata_bytes=100
        )
        with pytest.raises(AnchorRejectedError) as excinfo:
            await anchor.anchor(proof)
        assert excinfo.value.status == "METADATA_TOO_LONG"
        # Nothing was minted and no collection was created.
        assert ledger.requests == []

    def test_encode_metadata_within_limit(self) -> None:
        proof = _proof()
        assert encode_metadata(proof, 200) == proof.token_metadata().to_bytes()

    @pytest.mark.asyncio
    async def test_mint_returns_nft_locator(self) -> None:
        proof = _proof()
        ledger = FakeLedger()
        ledger.on(
            "POST",
            f"gateway.test/api/v1/tokens/{TOKEN}/mint",
            {"status": "SUCCESS", "transactionId": TX_ID, "serials": [3]},
        )
        anchor = TokenMintAnchor(*_clients(ledger), TOKEN, max_metadata_bytes=200)

        receipt = await anchor.anchor(proof)

        assert receipt.ledger_locator == f"{TOKEN}/3"
        assert receipt.nft_token_id == f"{TOKEN}-3"
        body = json.loads(ledger.posts()[0].content)
        assert base64.b64decode(body["metadata"][0]) == proof.token_metadata().to_bytes()
        await anchor.close()

    @pytest.mark.asyncio
    async def test_lookup_nft_resolves_minting_transaction(self) -> None:
        proof = _proof()
        ledger = FakeLedger()
        ledger.on(
            "GET",
            f"mirror.test/api/v1/tokens/{TOKEN}/nfts/3",
            {
                "token_id": TOKEN,
                "serial_number": 3,
                "created_timestamp": CONSENSUS_TS,
                "metadata": _b64(proof.token_metadata().to_bytes()),
            },
        )
        ledger.on(
            "GET",
            f"mirror.test/api/v1/transactions?timestamp={CONSENSUS_TS}&limit=1",
            {"transactions": [{"transaction_id": TX_MIRROR}]},
        )
        anchor = TokenMintAnchor(*_clients(ledger), TOKEN)

        anchored = await anchor.lookup_nft(TOKEN, 3)

        assert anchored is not None
        assert anchored.proof is None
        assert anchored.cid == CID
        assert anchored.token_metadata == proof.token_metadata()
        assert anchored.receipt.transaction_reference == TX_ID
        await anchor.close()

    @pytest.mark.asyncio
    async def test_lookup_nft_with_foreign_metadata_is_none(self) -> None:
        ledger = FakeLedger()
        ledger.on(
            "GET",
            f"mirror.test/api/v1/tokens/{TOKEN}/nfts/4",
            {"token_id": TOKEN, "serial_number": 4, "metadata": _b64(b"ipfs://x")},
        )
        anchor = TokenMintAnchor(*_clients(ledger), TOKEN)
        assert await anchor.lookup_nft(TOKEN, 4) is None
        await anchor.close()

    @pytest.mark.asyncio
    async def test_find_proof_by_certificate_id_is_unsupported(self) -> None:
        ledger = FakeLedger()
        anchor = TokenMintAnchor(*_clients(ledger), TOKEN)
        assert await anchor.find_proof(certificate_id="6f1c1a52") is None
        assert ledger.requests == []
        await anchor.close()
