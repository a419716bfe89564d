"""Value types shared by data sources and the candle store."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone


GRANULARITY_MINUTES = {
    "1m": 1,
    "5m": 5,
    "15m": 15,
    "30m": 30,
    "1h": 60,
    "4h": 240,
    "1d": 1440,
}


@dataclass(frozen=True)
class OHLCV:
    """One minute-aligned candle as returned by a data source."""

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class SeriesKey:
    """Identifies one series in both the raw and the filled measurement."""

    exchange: str
    base: str
    quote: str

    @property
    def symbol(self) -> str:
        return f"{self.base}/{self.quote}"

    def tags(self) -> dict[str, str]:
        return {"exchange": self.exchange, "base": self.base, "quote": self.quote}

    def __str__(self) -> str:
        return f"{self.exchange} ({self.symbol})"


def as_utc(ts: datetime) -> datetime:
    """Return ts as an aware UTC datetime (naive values are taken as UTC)."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def floor_minute(ts: datetime) -> datetime:
    return as_utc(ts).replace(second=0, microsecond=0)


def granularity_step(granularity: str) -> timedelta:
    if granularity not in GRANULARITY_MINUTES:
        raise ValueError(f"Invalid granularity: {granularity}")
    return timedelta(minutes=GRANULARITY_MINUTES[granularity])
