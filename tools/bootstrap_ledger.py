"""Create the certificate topic or NFT collection for the configured strategy."""

from __future__ import annotations

import argparse
import asyncio
import json
from datetime import UTC, datetime

from certchain.core.config import get_settings
from certchain.core.logging import configure_logging
from certchain.modules.ledger.factory import build_anchors


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Create the ledger resource certificate proofs are anchored to."
    )
    parser.add_argument(
        "--strategy",
        choices=("consensus_log", "token_mint"),
        default=None,
        help="Strategy to bootstrap. Defaults to ANCHOR_STRATEGY.",
    )
    return parser.parse_args()


async def _main() -> int:
    args = _parse_args()
    configure_logging()
    settings = get_settings()
    strategy = args.strategy or settings.anchor_strategy
    anchors = build_anchors(settings)
    anchor = anchors[strategy]
    try:
        existing = getattr(anchor, "resource_id", None)
        resource_id = await anchor.bootstrap()
        setting = "CERTIFICATE_TOKEN_ID" if strategy == "token_mint" else "CERTIFICATE_TOPIC_ID"
        summary = {
            "ran_at": datetime.now(UTC).isoformat(),
            "strategy": strategy,
            "network": settings.ledger_network,
            "created": existing is None,
            "setting": setting,
            "resource_id": resource_id,
        }
        print(json.dumps(summary, indent=2))
        return 0
    finally:
        await anchor.close()


if __name__ == "__main__":
    raise SystemExit(asyncio.run(_main()))
