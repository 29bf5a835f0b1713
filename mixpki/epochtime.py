"""Wall-clock view of the ledger epoch.

Progress through an epoch is measured in blocks, which client and ledger
agree on regardless of clock skew. Converting blocks to time is advisory:
use it for pacing and display, never to decide protocol questions.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, TYPE_CHECKING

from mixpki.config import EpochConfig

if TYPE_CHECKING:
    from mixpki.client import DirectoryClient


@dataclass(frozen=True)
class EpochTime:
    epoch: int
    elapsed: timedelta
    remaining: timedelta


def split_period(elapsed_height: int, config: EpochConfig) -> tuple[timedelta, timedelta]:
    """Return ``(elapsed, remaining)`` for ``elapsed_height`` blocks into an epoch.

    Heights beyond ``heights_per_epoch`` are clamped, so ``remaining`` never
    goes negative. Arithmetic is in whole microseconds, rounding toward zero.
    """

    interval = config.heights_per_epoch
    height = min(max(elapsed_height, 0), interval)
    period_us = config.period // timedelta(microseconds=1)
    elapsed = timedelta(microseconds=period_us * height // interval)
    return elapsed, config.period - elapsed


async def now(
    client: "DirectoryClient",
    config: Optional[EpochConfig] = None,
    *,
    timeout: Optional[float] = None,
) -> EpochTime:
    """Current epoch with the time elapsed in it and the time left."""

    config = config or EpochConfig()
    epoch, elapsed_height = await client.get_epoch(timeout=timeout)
    elapsed, remaining = split_period(elapsed_height, config)
    return EpochTime(epoch=epoch, elapsed=elapsed, remaining=remaining)
