"""Ledger anchoring strategies and clients."""

from certchain.modules.ledger.base import (
    LedgerAnchor,
    canonical_transaction_id,
    is_valid_transaction_id,
    mirror_transaction_id,
)
from certchain.modules.ledger.consensus import ConsensusLogAnchor
from certchain.modules.ledger.factory import build_anchor, build_anchors
from certchain.modules.ledger.gateway import GatewayConfig, LedgerGatewayClient
from certchain.modules.ledger.mirror import MirrorNodeClient
from certchain.modules.ledger.token import TokenMintAnchor

__all__ = [
    "LedgerAnchor",
    "ConsensusLogAnchor",
    "TokenMintAnchor",
    "LedgerGatewayClient",
    "GatewayConfig",
    "MirrorNodeClient",
    "build_anchor",
    "build_anchors",
    "canonical_transaction_id",
    "is_valid_transaction_id",
    "mirror_transaction_id",
]
