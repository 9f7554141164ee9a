"""
Ledger anchoring contract and helpers shared by both strategies.

A ``LedgerAnchor`` commits a ``Proof`` to an append-only ledger and reads it
back. Writes go through a signed ledger gateway; reads go through the public
mirror node, so verification never needs operator credentials.
"""

from __future__ import annotations

import asyncio
import re
from typing import TYPE_CHECKING, Any, Literal, Protocol, runtime_checkable

import structlog

from certchain.core.errors import AnchorConfigurationError
from certchain.core.logging import get_logger

if TYPE_CHECKING:
    from certchain.modules.certificates.schemas import AnchoredProof, AnchorReceipt, Proof
    from certchain.modules.ledger.gateway import LedgerGatewayClient
    from certchain.modules.ledger.mirror import MirrorNodeClient

logger = get_logger(__name__)

StrategyName = Literal["consensus_log", "token_mint"]

_TRANSACTION_ID = re.compile(
    r"^(?P<account>\d+\.\d+\.\d+)[@-](?P<seconds>\d+)[.-](?P<nanos>\d+)$"
)


def parse_transaction_id(value: str) -> tuple[str, str, str]:
    """Split a transaction id into ``(account, seconds, nanos)``.

    Accepts the SDK form ``0.0.x@seconds.nanos`` and the mirror-node form
    ``0.0.x-seconds-nanos``.
    """
    match = _TRANSACTION_ID.match(value.strip()) if isinstance(value, str) else None
    if match is None:
        raise ValueError(f"Invalid transaction id: {value!r}")
    return match.group("account"), match.group("seconds"), match.group("nanos")


def is_valid_transaction_id(value: str) -> bool:
    try:
        parse_transaction_id(value)
    except ValueError:
        return False
    return True


def canonical_transaction_id(value: str) -> str:
    """SDK form ``0.0.x@seconds.nanos`` stored in the side-table."""
    account, seconds, nanos = parse_transaction_id(value)
    return f"{account}@{seconds}.{nanos}"


def mirror_transaction_id(value: str) -> str:
    """Mirror-node path form ``0.0.x-seconds-nanos``."""
    account, seconds, nanos = parse_transaction_id(value)
    return f"{account}-{seconds}-{nanos}"


@runtime_checkable
class LedgerAnchor(Protocol):
    """Protocol implemented by the consensus-log and token-mint strategies."""

    strategy: StrategyName

    async def anchor(self, proof: Proof) -> AnchorReceipt:
        """Commit ``proof`` and return where it landed."""
        ...

    async def lookup(self, receipt: AnchorReceipt) -> AnchoredProof | None:
        """Read a committed proof back. ``None`` if the ledger has no such entry."""
        ...

    async def resolve_transaction(self, transaction_reference: str) -> AnchoredProof | None:
        """Find the proof committed by a transaction."""
        ...

    async def find_proof(
        self, *, cid: str | None = None, certificate_id: str | None = None
    ) -> AnchoredProof | None:
        """Scan recent ledger entries for a proof of ``cid`` or ``certificate_id``."""
        ...

    async def bootstrap(self) -> str:
        """Create the topic/collection if none is configured and return its id."""
        ...

    async def close(self) -> None:
        ...


class GatewayBackedAnchor:
    """
    Shared plumbing for anchors that write through the gateway and read
    through the mirror node.

    Subclasses implement ``_create_resource`` for bootstrap and the
    ``LedgerAnchor`` operations.
    """

    strategy: StrategyName
    resource_setting: str = ""

    def __init__(
        self,
        gateway: LedgerGatewayClient,
        mirror: MirrorNodeClient,
        resource_id: str | None,
        *,
        bootstrap_enabled: bool = False,
        scan_limit: int = 100,
        log: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._gateway = gateway
        self._mirror = mirror
        self._resource_id = resource_id or None
        self._bootstrap_enabled = bootstrap_enabled
        self._scan_limit = scan_limit
        self._log = log or logger
        self._bootstrap_lock = asyncio.Lock()

    @property
    def resource_id(self) -> str | None:
        return self._resource_id

    async def _create_resource(self) -> str:
        raise NotImplementedError

    async def _require_resource(self) -> str:
        """Return the configured topic/collection id, bootstrapping if allowed."""
        if self._resource_id:
            return self._resource_id
        if not self._bootstrap_enabled:
            raise AnchorConfigurationError(
                f"{self.resource_setting} is not configured and ledger bootstrap is disabled"
            )
        return await self.bootstrap()

    async def bootstrap(self) -> str:
        async with self._bootstrap_lock:
            if self._resource_id:
                return self._resource_id
            resource_id = await self._create_resource()
            self._resource_id = resource_id
            self._log.warning(
                "ledger_resource_created",
                strategy=self.strategy,
                resource_id=resource_id,
                setting=self.resource_setting.upper(),
                action="persist this identifier in configuration",
            )
            return resource_id

    async def _transaction_at(self, consensus_timestamp: str | None) -> str | None:
        """Transaction id of the transaction that reached consensus at a timestamp."""
        if not consensus_timestamp:
            return None
        transaction = await self._mirror.find_transaction_by_timestamp(consensus_timestamp)
        if transaction is None:
            return None
        return canonical_transaction_id(str(transaction["transaction_id"]))

    async def close(self) -> None:
        await self._gateway.close()
        await self._mirror.close()


def successful(transaction: dict[str, Any] | None, name: str) -> bool:
    """Whether a mirror-node transaction record is a successful ``name`` transaction."""
    return (
        transaction is not None
        and transaction.get("name") == name
        and transaction.get("result") == "SUCCESS"
    )
