"""Market data source abstraction."""
from datetime import datetime
from typing import List, Optional, Protocol

from marketwatcher.marketdata.types import OHLCV


class MarketDataSource(Protocol):
    """Protocol for remote market data sources."""

    async def get_exchange_info(self, symbol: str) -> bool:
        """Return True if the pair (e.g. 'BTC/USDT') is listed on the source."""
        ...

    async def get_candles(
        self,
        symbol: str,
        *,
        limit: int,
        since: Optional[datetime] = None,
    ) -> List[OHLCV]:
        """
        Fetch 1-minute candles for a symbol.

        Args:
            symbol: Pair in 'BASE/QUOTE' form
            limit: Maximum number of candles to return
            since: Inclusive lower bound (UTC). When omitted the most recent
                ``limit`` candles are returned.

        Returns:
            Candles sorted ascending by timestamp, all timestamps
            timezone-aware UTC and minute-aligned. The newest candle may
            still be in progress.
        """
        ...
