"""Bounded exponential backoff for transient infrastructure failures."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from certchain.core.errors import AnchorUnavailableError, CertchainError, StorageUnavailableError
from certchain.core.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)

TRANSIENT_ERRORS: tuple[type[CertchainError], ...] = (
    StorageUnavailableError,
    AnchorUnavailableError,
)


async def retry_transient(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    base_delay: float,
    step: str,
    should_retry: Callable[[CertchainError], bool] | None = None,
    log: structlog.stdlib.BoundLogger | None = None,
) -> T:
    """Run ``operation`` retrying transient errors with exponential backoff.

    Delays are ``base_delay * 2**(attempt - 1)`` (1s, 2s, 4s with the default
    base). ``should_retry`` can veto a retry for a specific error, e.g. a ledger
    submission that may already have been committed. The last error is
    re-raised once ``attempts`` is exhausted.
    """
    log = log or logger
    attempt = 1
    while True:
        try:
            return await operation()
        except TRANSIENT_ERRORS as exc:
            if should_retry is not None and not should_retry(exc):
                raise
            if attempt >= attempts:
                log.warning("transient_retries_exhausted", step=step, attempts=attempt)
                raise
            delay = base_delay * 2 ** (attempt - 1)
            log.info(
                "transient_error_retrying",
                step=step,
                attempt=attempt,
                delay_seconds=delay,
                error=str(exc),
            )
            await asyncio.sleep(delay)
            attempt += 1
