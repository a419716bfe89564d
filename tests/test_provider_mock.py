"""Tests for the deterministic mock data source."""
from datetime import datetime, timedelta, timezone

import pytest

from marketwatcher.marketdata.provider_mock import MockProvider

NOW = datetime(2024, 1, 31, 12, 30, 40, tzinfo=timezone.utc)


@pytest.fixture
def provider():
    return MockProvider(
        symbols=["BTC/USDT"],
        listed_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        clock=lambda: NOW,
    )


@pytest.mark.asyncio
async def test_deterministic(provider):
    since = datetime(2024, 1, 31, 0, 0, tzinfo=timezone.utc)

    candles1 = await provider.get_candles("BTC/USDT", limit=60, since=since)
    candles2 = await provider.get_candles("BTC/USDT", limit=60, since=since)

    assert candles1 == candles2
    assert len(candles1) == 60
    assert all(c.low <= min(c.open, c.close) and c.high >= max(c.open, c.close) for c in candles1)


@pytest.mark.asyncio
async def test_since_is_aligned_and_inclusive(provider):
    since = datetime(2024, 1, 31, 0, 3, 20, tzinfo=timezone.utc)

    candles = await provider.get_candles("BTC/USDT", limit=5, since=since)

    assert candles[0].timestamp == datetime(2024, 1, 31, 0, 4, tzinfo=timezone.utc)
    assert [c.timestamp.second for c in candles] == [0] * 5


@pytest.mark.asyncio
async def test_latest_ends_at_current_minute(provider):
    candles = await provider.get_candles("BTC/USDT", limit=2)

    assert [c.timestamp for c in candles] == [
        datetime(2024, 1, 31, 12, 29, tzinfo=timezone.utc),
        datetime(2024, 1, 31, 12, 30, tzinfo=timezone.utc),
    ]


@pytest.mark.asyncio
async def test_nothing_before_listing(provider):
    early = datetime(2023, 6, 1, tzinfo=timezone.utc)

    first = await provider.get_candles("BTC/USDT", limit=500, since=early)
    second = await provider.get_candles("BTC/USDT", limit=500, since=early - timedelta(minutes=500))

    assert first[0].timestamp == datetime(2024, 1, 1, tzinfo=timezone.utc)
    # Older requests keep returning the same oldest candle
    assert second[0].timestamp == first[0].timestamp


@pytest.mark.asyncio
async def test_nothing_after_now(provider):
    candles = await provider.get_candles("BTC/USDT", limit=500, since=NOW - timedelta(minutes=3))

    assert len(candles) == 3


@pytest.mark.asyncio
async def test_exchange_info(provider):
    assert await provider.get_exchange_info("BTC/USDT") is True
    assert await provider.get_exchange_info("DOGE/EUR") is False
