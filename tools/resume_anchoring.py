"""Resume anchoring for certificates that failed after upload (for cron/operator use)."""

from __future__ import annotations

import argparse
import asyncio
import json
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import select

from certchain.core.config import get_settings
from certchain.core.errors import CertchainError
from certchain.core.logging import configure_logging
from certchain.db.models import CertificateRecord, CertificateStatus
from certchain.db.session import close_db, get_background_session, init_db
from certchain.modules.certificates.pipeline import IssuancePipeline
from certchain.modules.certificates.repository import CertificateRepository
from certchain.modules.ledger.factory import build_anchors
from certchain.modules.storage.client import PinataContentStore, StorageConfig


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Re-run the anchoring step for uploaded but unanchored certificates."
    )
    parser.add_argument(
        "--certificate-id",
        action="append",
        default=[],
        help="Certificate UUID to resume. May be repeated. Omit when using --all-failed.",
    )
    parser.add_argument(
        "--all-failed",
        action="store_true",
        help="Resume every failed certificate whose payload was uploaded.",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Anchor again even if a previous attempt may have committed. "
        "Only use after confirming on the explorer that it did not.",
    )
    return parser.parse_args()


async def _resolve_certificate_ids(*, ids: list[str], all_failed: bool) -> list[UUID]:
    if ids:
        return [UUID(value) for value in ids]
    if not all_failed:
        raise ValueError("Provide --certificate-id or --all-failed")

    async with get_background_session() as session:
        result = await session.execute(
            select(CertificateRecord.id)
            .where(
                CertificateRecord.status == CertificateStatus.FAILED,
                CertificateRecord.ipfs_hash.is_not(None),
            )
            .order_by(CertificateRecord.created_at)
        )
        return list(result.scalars().all())


async def _main() -> int:
    args = _parse_args()
    configure_logging()
    settings = get_settings()
    await init_db()
    store = PinataContentStore(StorageConfig.from_settings(settings))
    anchors = build_anchors(settings)
    anchor = anchors[settings.anchor_strategy]
    try:
        certificate_ids = await _resolve_certificate_ids(
            ids=args.certificate_id, all_failed=args.all_failed
        )
        summary: dict[str, object] = {
            "ran_at": datetime.now(UTC).isoformat(),
            "certificate_count": len(certificate_ids),
            "anchored": [],
            "errors": [],
        }
        for certificate_id in certificate_ids:
            try:
                async with get_background_session() as session:
                    pipeline = IssuancePipeline(
                        CertificateRepository(session), store, anchor, settings=settings
                    )
                    result = await pipeline.resume_anchoring(certificate_id, force=args.force)
                    summary["anchored"].append(
                        {
                            "certificate_id": result.certificate_id,
                            "transaction_id": result.transaction_id,
                            "ledger_locator": result.ledger_locator,
                        }
                    )
            except CertchainError as exc:
                summary["errors"].append(
                    {
                        "certificate_id": str(certificate_id),
                        "error": type(exc).__name__,
                        "message": str(exc),
                    }
                )
        print(json.dumps(summary, indent=2))
        return 0 if not summary["errors"] else 1
    finally:
        await store.close()
        await anchor.close()
        await close_db()


if __name__ == "__main__":
    raise SystemExit(asyncio.run(_main()))
