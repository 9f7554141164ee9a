"""Consensus-log anchoring: proofs are appended as messages to a topic."""

from __future__ import annotations

from typing import Any

import structlog
from pydantic import ValidationError as PydanticValidationError

from certchain.core.errors import AnchorRejectedError
from certchain.modules.certificates.schemas import AnchoredProof, AnchorReceipt, Proof
from certchain.modules.ledger.base import (
    GatewayBackedAnchor,
    StrategyName,
    canonical_transaction_id,
    is_valid_transaction_id,
    successful,
)
from certchain.modules.ledger.gateway import LedgerGatewayClient
from certchain.modules.ledger.mirror import MirrorNodeClient, decode_base64

TOPIC_MEMO = "CertChain certificate anchoring"


class ConsensusLogAnchor(GatewayBackedAnchor):
    """
    Appends the canonical proof JSON to a consensus topic.

    Re-anchoring identical proof content produces a new message; duplicate
    submission is prevented by the issuance pipeline, not here.
    """

    strategy: StrategyName = "consensus_log"
    resource_setting = "certificate_topic_id"

    def __init__(
        self,
        gateway: LedgerGatewayClient,
        mirror: MirrorNodeClient,
        topic_id: str | None,
        *,
        bootstrap_enabled: bool = False,
        max_message_bytes: int = 1024,
        scan_limit: int = 100,
        log: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        super().__init__(
            gateway,
            mirror,
            topic_id,
            bootstrap_enabled=bootstrap_enabled,
            scan_limit=scan_limit,
            log=log,
        )
        self._max_message_bytes = max_message_bytes

    async def _create_resource(self) -> str:
        return await self._gateway.create_topic(TOPIC_MEMO)

    async def anchor(self, proof: Proof) -> AnchorReceipt:
        topic_id = await self._require_resource()
        message = proof.to_wire()
        if len(message) > self._max_message_bytes:
            raise AnchorRejectedError(
                f"Proof message is {len(message)} bytes; the topic accepts at most "
                f"{self._max_message_bytes}",
                status="MESSAGE_SIZE_TOO_LARGE",
            )

        self._log.info(
            "consensus_anchor_submitting",
            certificate_id=proof.certificate_id,
            topic_id=topic_id,
            size=len(message),
        )
        result = await self._gateway.submit_message(topic_id, message)
        receipt = AnchorReceipt(
            transaction_reference=canonical_transaction_id(str(result["transactionId"])),
            ledger_locator=f"{topic_id}/{int(result['topicSequenceNumber'])}",
            strategy=self.strategy,
            consensus_timestamp=result.get("consensusTimestamp"),
        )
        self._log.info(
            "consensus_anchor_committed",
            certificate_id=proof.certificate_id,
            transaction_id=receipt.transaction_reference,
            ledger_locator=receipt.ledger_locator,
        )
        return receipt

    def _parse_message(self, message: dict[str, Any]) -> Proof | None:
        raw = decode_base64(message.get("message"))
        if raw is None:
            return None
        try:
            return Proof.from_wire(raw)
        except (PydanticValidationError, ValueError):
            # Topics are public; foreign or malformed messages are skipped.
            return None

    async def _anchored(
        self, message: dict[str, Any], transaction_reference: str | None
    ) -> AnchoredProof | None:
        proof = self._parse_message(message)
        if proof is None:
            return None
        if transaction_reference is None:
            transaction_reference = _initial_transaction_id(message) or await self._transaction_at(
                message.get("consensus_timestamp")
            )
        if transaction_reference is None:
            return None
        receipt = AnchorReceipt(
            transaction_reference=transaction_reference,
            ledger_locator=f"{message['topic_id']}/{int(message['sequence_number'])}",
            strategy=self.strategy,
            consensus_timestamp=message.get("consensus_timestamp"),
        )
        return AnchoredProof(receipt=receipt, proof=proof)

    async def lookup(self, receipt: AnchorReceipt) -> AnchoredProof | None:
        topic_id, sequence_number = receipt.locator_parts
        message = await self._mirror.get_topic_message(topic_id, sequence_number)
        if message is None:
            return None
        return await self._anchored(message, receipt.transaction_reference)

    async def resolve_transaction(self, transaction_reference: str) -> AnchoredProof | None:
        if not is_valid_transaction_id(transaction_reference):
            return None
        transaction = await self._mirror.get_transaction(transaction_reference)
        if transaction is None or not successful(transaction, "CONSENSUSSUBMITMESSAGE"):
            return None
        message = await self._mirror.get_topic_message_by_timestamp(
            str(transaction["consensus_timestamp"])
        )
        if message is None:
            return None
        return await self._anchored(message, canonical_transaction_id(transaction_reference))

    async def find_proof(
        self, *, cid: str | None = None, certificate_id: str | None = None
    ) -> AnchoredProof | None:
        if not self._resource_id or not (cid or certificate_id):
            return None
        messages = await self._mirror.list_topic_messages(
            self._resource_id, limit=self._scan_limit
        )
        for message in messages:
            proof = self._parse_message(message)
            if proof is None:
                continue
            if (cid and proof.ipfs_cid == cid) or (
                certificate_id and proof.certificate_id == certificate_id
            ):
                return await self._anchored(message, None)
        return None


def _initial_transaction_id(message: dict[str, Any]) -> str | None:
    """Transaction id recorded in a message's ``chunk_info``, when present."""
    initial = (message.get("chunk_info") or {}).get("initial_transaction_id") or {}
    account = initial.get("account_id")
    valid_start = initial.get("transaction_valid_start")
    if not (account and valid_start):
        return None
    return canonical_transaction_id(f"{account}@{valid_start}")
