"""Construct ledger anchors from settings."""

from __future__ import annotations

import httpx
import structlog

from certchain.core.config import Settings
from certchain.modules.ledger.base import LedgerAnchor
from certchain.modules.ledger.consensus import ConsensusLogAnchor
from certchain.modules.ledger.gateway import GatewayConfig, LedgerGatewayClient
from certchain.modules.ledger.mirror import MirrorNodeClient
from certchain.modules.ledger.token import TokenMintAnchor


def build_anchors(
    settings: Settings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    log: structlog.stdlib.BoundLogger | None = None,
) -> dict[str, LedgerAnchor]:
    """Both strategies, sharing one gateway and one mirror node client.

    Only the configured strategy writes; the other is kept so proofs anchored
    under a previous configuration remain verifiable.
    """
    gateway = LedgerGatewayClient(
        GatewayConfig.from_settings(settings), transport=transport, log=log
    )
    mirror = MirrorNodeClient(
        settings.mirror_node_url,
        timeout_seconds=settings.ledger_timeout_seconds,
        transport=transport,
        log=log,
    )
    consensus = ConsensusLogAnchor(
        gateway,
        mirror,
        settings.certificate_topic_id,
        bootstrap_enabled=(
            settings.ledger_bootstrap_enabled and settings.anchor_strategy == "consensus_log"
        ),
        max_message_bytes=settings.consensus_message_max_bytes,
        scan_limit=settings.proof_scan_limit,
        log=log,
    )
    token = TokenMintAnchor(
        gateway,
        mirror,
        settings.certificate_token_id,
        token_name=settings.certificate_token_name,
        token_symbol=settings.certificate_token_symbol,
        bootstrap_enabled=(
            settings.ledger_bootstrap_enabled and settings.anchor_strategy == "token_mint"
        ),
        max_metadata_bytes=settings.token_metadata_max_bytes,
        scan_limit=settings.proof_scan_limit,
        log=log,
    )
    return {consensus.strategy: consensus, token.strategy: token}


def build_anchor(
    settings: Settings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    log: structlog.stdlib.BoundLogger | None = None,
) -> LedgerAnchor:
    """The anchor selected by ``ANCHOR_STRATEGY``."""
    return build_anchors(settings, transport=transport, log=log)[settings.anchor_strategy]
