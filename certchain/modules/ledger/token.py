"""Token-mint anchoring: each proof is one NFT of a certificate collection."""

from __future__ import annotations

from typing import Any

import structlog
from pydantic import ValidationError as PydanticValidationError

from certchain.core.errors import AnchorRejectedError
from certchain.modules.certificates.schemas import (
    AnchoredProof,
    AnchorReceipt,
    Proof,
    TokenMetadata,
)
from certchain.modules.ledger.base import (
    GatewayBackedAnchor,
    StrategyName,
    canonical_transaction_id,
    is_valid_transaction_id,
    successful,
)
from certchain.modules.ledger.gateway import LedgerGatewayClient
from certchain.modules.ledger.mirror import MirrorNodeClient, decode_base64

TOKEN_MEMO = "CertChain certificate proofs"


def encode_metadata(proof: Proof, max_bytes: int) -> bytes:
    """NFT metadata for ``proof``, rejected rather than truncated when oversized."""
    metadata = proof.token_metadata().to_bytes()
    if len(metadata) > max_bytes:
        raise AnchorRejectedError(
            f"Token metadata is {len(metadata)} bytes; the ledger accepts at most {max_bytes}",
            status="METADATA_TOO_LONG",
        )
    return metadata


class TokenMintAnchor(GatewayBackedAnchor):
    """
    Mints one NFT per certificate, embedding ``{"cid", "hash", "org"}``.

    The metadata carries only the CID, the first 32 hex characters of the
    certificate hash and a truncated issuer organization; the full proof is
    not on the ledger for this strategy.
    """

    strategy: StrategyName = "token_mint"
    resource_setting = "certificate_token_id"

    def __init__(
        self,
        gateway: LedgerGatewayClient,
        mirror: MirrorNodeClient,
        token_id: str | None,
        *,
        token_name: str = "Certificate Proof NFT",
        token_symbol: str = "CERTP",
        bootstrap_enabled: bool = False,
        max_metadata_bytes: int = 100,
        scan_limit: int = 100,
        log: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        super().__init__(
            gateway,
            mirror,
            token_id,
            bootstrap_enabled=bootstrap_enabled,
            scan_limit=scan_limit,
            log=log,
        )
        self._token_name = token_name
        self._token_symbol = token_symbol
        self._max_metadata_bytes = max_metadata_bytes

    async def _create_resource(self) -> str:
        return await self._gateway.create_token(self._token_name, self._token_symbol, TOKEN_MEMO)

    async def anchor(self, proof: Proof) -> AnchorReceipt:
        # Size is checked before bootstrap so an oversized proof never creates a collection.
        metadata = encode_metadata(proof, self._max_metadata_bytes)
        token_id = await self._require_resource()

        self._log.info(
            "token_anchor_minting",
            certificate_id=proof.certificate_id,
            token_id=token_id,
            size=len(metadata),
        )
        result = await self._gateway.mint_token(token_id, metadata)
        serial = int(result["serials"][0])
        receipt = AnchorReceipt(
            transaction_reference=canonical_transaction_id(str(result["transactionId"])),
            ledger_locator=f"{token_id}/{serial}",
            strategy=self.strategy,
            consensus_timestamp=result.get("consensusTimestamp"),
        )
        self._log.info(
            "token_anchor_committed",
            certificate_id=proof.certificate_id,
            transaction_id=receipt.transaction_reference,
            nft_token_id=receipt.nft_token_id,
        )
        return receipt

    @staticmethod
    def _parse_metadata(nft: dict[str, Any]) -> TokenMetadata | None:
        raw = decode_base64(nft.get("metadata"))
        if raw is None:
            return None
        try:
            return TokenMetadata.from_bytes(raw)
        except (PydanticValidationError, ValueError):
            return None

    async def _anchored(
        self, nft: dict[str, Any], transaction_reference: str | None
    ) -> AnchoredProof | None:
        metadata = self._parse_metadata(nft)
        if metadata is None:
            return None
        if transaction_reference is None:
            transaction_reference = await self._transaction_at(nft.get("created_timestamp"))
        if transaction_reference is None:
            return None
        receipt = AnchorReceipt(
            transaction_reference=transaction_reference,
            ledger_locator=f"{nft['token_id']}/{int(nft['serial_number'])}",
            strategy=self.strategy,
            consensus_timestamp=nft.get("created_timestamp"),
        )
        return AnchoredProof(receipt=receipt, token_metadata=metadata)

    async def lookup(self, receipt: AnchorReceipt) -> AnchoredProof | None:
        token_id, serial = receipt.locator_parts
        nft = await self._mirror.get_nft(token_id, serial)
        if nft is None:
            return None
        return await self._anchored(nft, receipt.transaction_reference)

    async def lookup_nft(self, token_id: str, serial: int) -> AnchoredProof | None:
        """Read an NFT proof by ``token_id`` and serial without a known transaction."""
        nft = await self._mirror.get_nft(token_id, serial)
        if nft is None:
            return None
        return await self._anchored(nft, None)

    async def resolve_transaction(self, transaction_reference: str) -> AnchoredProof | None:
        if not is_valid_transaction_id(transaction_reference):
            return None
        transaction = await self._mirror.get_transaction(transaction_reference)
        if transaction is None or not successful(transaction, "TOKENMINT"):
            return None
        transfers = transaction.get("nft_transfers") or []
        if not transfers:
            return None
        nft = await self._mirror.get_nft(
            str(transfers[0]["token_id"]), int(transfers[0]["serial_number"])
        )
        if nft is None:
            return None
        return await self._anchored(nft, canonical_transaction_id(transaction_reference))

    async def find_proof(
        self, *, cid: str | None = None, certificate_id: str | None = None
    ) -> AnchoredProof | None:
        # Token metadata carries no certificate id; only the CID can be matched.
        if not self._resource_id or not cid:
            return None
        nfts = await self._mirror.list_nfts(self._resource_id, limit=self._scan_limit)
        for nft in nfts:
            metadata = self._parse_metadata(nft)
            if metadata is not None and metadata.cid == cid:
                return await self._anchored(nft, None)
        return None
