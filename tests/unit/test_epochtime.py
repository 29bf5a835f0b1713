"""Unit tests for mixpki.epochtime module."""

from datetime import timedelta

import pytest

from mixpki.client import DirectoryClient
from mixpki.config import EpochConfig
from mixpki.epochtime import EpochTime, now, split_period
from mixpki.ledger import MemoryLedger


class TestSplitPeriod:
    """Test block height to wall-clock conversion."""

    @pytest.fixture
    def config(self):
        return EpochConfig(period=timedelta(minutes=20), heights_per_epoch=5)

    @pytest.mark.parametrize(
        "height,elapsed",
        [
            (0, timedelta(0)),
            (1, timedelta(minutes=4)),
            (2, timedelta(minutes=8)),
            (5, timedelta(minutes=20)),
        ],
    )
    def test_proportional(self, config, height, elapsed):
        assert split_period(height, config) == (elapsed, timedelta(minutes=20) - elapsed)

    def test_clamped_past_end_of_epoch(self, config):
        """Test an overrunning epoch reports zero time remaining."""
        assert split_period(7, config) == (timedelta(minutes=20), timedelta(0))

    def test_clamped_below_zero(self, config):
        assert split_period(-3, config) == (timedelta(0), timedelta(minutes=20))

    def test_rounds_toward_zero(self):
        config = EpochConfig(period=timedelta(seconds=1), heights_per_epoch=3)
        elapsed, remaining = split_period(1, config)
        assert elapsed == timedelta(microseconds=333333)
        assert elapsed + remaining == timedelta(seconds=1)


class TestNow:
    """Test the current epoch view."""

    @pytest.mark.asyncio
    async def test_fresh_ledger(self):
        client = DirectoryClient(MemoryLedger(epoch=3))
        assert await now(client) == EpochTime(epoch=3, elapsed=timedelta(0), remaining=timedelta(minutes=20))

    @pytest.mark.asyncio
    async def test_mid_epoch(self):
        ledger = MemoryLedger(heights_per_epoch=10)
        ledger.advance(5)
        config = EpochConfig(period=timedelta(minutes=10), heights_per_epoch=10)
        current = await now(DirectoryClient(ledger), config)
        assert current.epoch == 1
        assert current.elapsed == timedelta(minutes=5)
        assert current.remaining == timedelta(minutes=5)

    @pytest.mark.asyncio
    async def test_follows_epoch_rollover(self):
        ledger = MemoryLedger(heights_per_epoch=5)
        ledger.advance(6)
        current = await now(DirectoryClient(ledger))
        assert current.epoch == 2
        assert current.elapsed == timedelta(minutes=4)
