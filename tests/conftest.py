"""Shared fakes for watcher tests."""
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from marketwatcher.errors import TransientFetchError
from marketwatcher.marketdata.models import Base, MEASUREMENT_OHLC
from marketwatcher.marketdata.types import OHLCV, SeriesKey

NOW = datetime(2024, 1, 10, 0, 0, tzinfo=timezone.utc)
KEY = SeriesKey(exchange="binance", base="BTC", quote="USDT")


def make_candles(start: datetime, count: int, close: float = 100.0) -> List[OHLCV]:
    return [
        OHLCV(
            timestamp=start + timedelta(minutes=i),
            open=close,
            high=close + 1,
            low=close - 1,
            close=close + i * 0.5,
            volume=1.0,
        )
        for i in range(count)
    ]


class FakeSource:
    """Scripted data source recording every call into a shared event log."""

    def __init__(self, pages=None, latest=None, symbols=("BTC/USDT",), log=None) -> None:
        self.pages = list(pages or [])
        self.latest = latest if latest is not None else make_candles(NOW - timedelta(minutes=1), 2)
        self.symbols = set(symbols)
        self.log = log if log is not None else []
        self.calls = []
        self.info_calls = 0
        self.fail_latest = False
        self.fail_since = False

    async def get_exchange_info(self, symbol: str) -> bool:
        self.info_calls += 1
        return symbol in self.symbols

    async def get_candles(self, symbol: str, *, limit: int, since: Optional[datetime] = None) -> List[OHLCV]:
        self.calls.append((limit, since))
        self.log.append(("fetch", since))
        if since is None:
            if self.fail_latest:
                raise TransientFetchError("latest unavailable")
            return self.latest
        if self.fail_since:
            raise TransientFetchError("history unavailable")
        return self.pages.pop(0) if self.pages else []

    @property
    def since_calls(self):
        return [since for _, since in self.calls if since is not None]


class FakeStore:
    """In-memory store double recording calls."""

    def __init__(self, count: int = 0, missing=None, log=None) -> None:
        self.count_value = count
        self.missing = list(missing or [])
        self.log = log if log is not None else []
        self.writes = []
        self.refreshes = []
        self.drops = []
        self.missing_calls = 0
        self.fail_count = False
        self.fail_write = False
        self.fail_refresh = False
        self.fail_drop = False

    async def count(self, measurement: str, key: SeriesKey) -> int:
        if self.fail_count:
            raise RuntimeError("count failed")
        return self.count_value

    async def write_candles(self, key: SeriesKey, candles, measurement: str = MEASUREMENT_OHLC) -> int:
        self.log.append(("write", measurement))
        if self.fail_write:
            raise RuntimeError("write failed")
        self.writes.append((measurement, list(candles)))
        return len(candles)

    async def get_missing_timestamps(self, measurement: str, key: SeriesKey, granularity: str = "1m"):
        self.missing_calls += 1
        return list(self.missing)

    async def refresh_derived(self, key: SeriesKey, full_rebuild: bool = False, since=None) -> int:
        self.log.append(("refresh", full_rebuild))
        if self.fail_refresh:
            raise RuntimeError("refresh failed")
        self.refreshes.append((full_rebuild, since))
        return 0

    async def drop_series(self, measurement: str, key: SeriesKey) -> int:
        if self.fail_drop:
            raise RuntimeError("drop failed")
        self.drops.append((measurement, key))
        return 0

    def writes_to(self, measurement: str):
        return [candles for m, candles in self.writes if m == measurement]


@pytest_asyncio.fixture
async def session_factory():
    """In-memory SQLite database with the ohlc tables."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()
