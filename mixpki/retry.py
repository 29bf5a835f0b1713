"""Caller-side polling for documents that are not published yet.

The directory client never retries on its own. Callers that must wait for a
future epoch's document, or want to ride out a flaky connection, use the
bounded loop here. Verification failures are never retried: a peer that
served a bad document once gets no second chance inside this loop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from mixpki.client import DirectoryClient
from mixpki.config import ClientConfig, EpochConfig
from mixpki.epochtime import now
from mixpki.errors import NoDocumentError, RetryExhaustedError, TransportError
from mixpki.s11n import Document

logger = logging.getLogger(__name__)

RETRYABLE = (NoDocumentError, TransportError)


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Exponential delay before retry number ``attempt`` (1-based)."""

    return min(base * (2 ** (attempt - 1)), cap)


async def wait_for_document(
    client: DirectoryClient,
    epoch: int,
    *,
    max_attempts: int,
    backoff: float = 1.0,
    backoff_max: float = 30.0,
    timeout: Optional[float] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Document:
    """
    Poll :meth:`DirectoryClient.get` until ``epoch``'s document appears.

    Args:
        client: Directory client.
        epoch: Epoch to fetch.
        max_attempts: Total number of ``get`` calls allowed.
        backoff: Delay after the first failure, doubled after each one.
        backoff_max: Upper bound on a single delay.
        timeout: Per-attempt timeout.
        sleep: Awaitable sleep, replaceable in tests.

    Raises:
        RetryExhaustedError: ``max_attempts`` calls all failed with
            :class:`NoDocumentError` or :class:`TransportError`.
        VerificationError, EpochMismatchError: Raised immediately.
    """
    if max_attempts <= 0:
        raise ValueError("max_attempts must be positive")

    last_error: Optional[Exception] = None
    for attempt in range(1, max_attempts + 1):
        try:
            return await client.get(epoch, timeout=timeout)
        except RETRYABLE as e:
            last_error = e
            logger.info("document for epoch %d unavailable (attempt %d/%d): %s", epoch, attempt, max_attempts, e)
        if attempt < max_attempts:
            await sleep(backoff_delay(attempt, backoff, backoff_max))
    raise RetryExhaustedError(max_attempts, last_error)


async def fetch_current_document(
    client: DirectoryClient,
    epoch_config: Optional[EpochConfig] = None,
    client_config: Optional[ClientConfig] = None,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Document:
    """Resolve the current epoch and fetch its document, polling if needed."""

    client_config = client_config or client.config
    current = await now(client, epoch_config)
    logger.debug("current epoch %d, %s remaining", current.epoch, current.remaining)
    return await wait_for_document(
        client,
        current.epoch,
        max_attempts=client_config.max_retrieval_attempts,
        backoff=client_config.retry_backoff,
        backoff_max=client_config.retry_backoff_max,
        timeout=client_config.initial_max_pki_retrieval_delay,
        sleep=sleep,
    )
