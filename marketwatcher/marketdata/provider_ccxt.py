"""Market data source backed by ``ccxt.async_support``."""
import logging
from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence

import ccxt.async_support as ccxt_async

from marketwatcher.errors import TransientFetchError
from marketwatcher.marketdata.types import OHLCV, as_utc

logger = logging.getLogger(__name__)

TIMEFRAME = "1m"


class CcxtProvider:
    """Fetch 1-minute candles from any exchange ccxt supports."""

    def __init__(self, exchange_id: str, exchange: Any = None) -> None:
        self.exchange_id = exchange_id.lower()
        if exchange is None:
            if not hasattr(ccxt_async, self.exchange_id):
                raise ValueError(f"Unknown ccxt exchange id: {self.exchange_id}")
            klass = getattr(ccxt_async, self.exchange_id)
            exchange = klass({"enableRateLimit": True})
        self.exchange = exchange

    async def get_exchange_info(self, symbol: str) -> bool:
        try:
            markets = await self.exchange.load_markets()
        except ccxt_async.BaseError as e:
            raise TransientFetchError(f"Failed to load markets from {self.exchange_id}: {e}") from e
        return symbol in markets

    async def get_candles(
        self,
        symbol: str,
        *,
        limit: int,
        since: Optional[datetime] = None,
    ) -> List[OHLCV]:
        since_ms = int(as_utc(since).timestamp() * 1000) if since is not None else None
        try:
            rows = await self.exchange.fetch_ohlcv(
                symbol,
                timeframe=TIMEFRAME,
                since=since_ms,
                limit=limit,
            )
        except ccxt_async.BaseError as e:
            raise TransientFetchError(
                f"fetch_ohlcv failed on {self.exchange_id} for {symbol} (since={since_ms}, limit={limit}): {e}"
            ) from e

        candles = sorted((self._to_candle(row) for row in rows or []), key=lambda c: c.timestamp)
        logger.debug(f"{self.exchange_id} returned {len(candles)} candles for {symbol}")
        return candles[:limit]

    async def close(self) -> None:
        await self.exchange.close()

    @staticmethod
    def _to_candle(row: Sequence[Any]) -> OHLCV:
        # ccxt order: [ms, open, high, low, close, volume]
        return OHLCV(
            timestamp=datetime.fromtimestamp(int(row[0]) / 1000, tz=timezone.utc),
            open=float(row[1]),
            high=float(row[2]),
            low=float(row[3]),
            close=float(row[4]),
            volume=float(row[5] or 0.0),
        )
