"""Deterministic mock market data source."""
import logging
import hashlib
from typing import Callable, Iterable, List, Optional
from datetime import datetime, timedelta, timezone

from marketwatcher.marketdata.types import OHLCV, as_utc, floor_minute

logger = logging.getLogger(__name__)

ONE_MINUTE = timedelta(minutes=1)
DEFAULT_LISTED_AT = datetime(2017, 8, 17, tzinfo=timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MockProvider:
    """Deterministic mock source - same inputs produce same outputs."""

    def __init__(
        self,
        symbols: Optional[Iterable[str]] = None,
        listed_at: datetime = DEFAULT_LISTED_AT,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.symbols = {s.upper() for s in symbols} if symbols is not None else None
        self.listed_at = floor_minute(listed_at)
        self.clock = clock
        logger.info("MockProvider initialized (deterministic)")

    async def get_exchange_info(self, symbol: str) -> bool:
        if self.symbols is None:
            return True
        return symbol.upper() in self.symbols

    async def get_candles(
        self,
        symbol: str,
        *,
        limit: int,
        since: Optional[datetime] = None,
    ) -> List[OHLCV]:
        """
        Generate deterministic 1-minute candles.

        Ensures:
        - Same symbol/range => same output
        - Candles aligned to minute boundaries
        - Nothing before ``listed_at`` and nothing after the current minute
        - Ascending order
        """
        if limit < 1:
            return []

        newest = floor_minute(self.clock())
        if since is None:
            start = newest - (limit - 1) * ONE_MINUTE
        else:
            # Align since to minute boundary (ceil)
            since = as_utc(since)
            start = floor_minute(since)
            if start < since:
                start += ONE_MINUTE
        start = max(start, self.listed_at)

        candles = []
        current = start
        while current <= newest and len(candles) < limit:
            candles.append(self._generate_candle(symbol, current))
            current += ONE_MINUTE

        logger.debug(
            f"MockProvider generated {len(candles)} candles "
            f"for {symbol} (since={since}, limit={limit})"
        )
        return candles

    def _generate_candle(self, symbol: str, open_time: datetime) -> OHLCV:
        """Generate single deterministic candle."""
        # Deterministic seed based on symbol and time
        seed_str = f"{symbol}:1m:{open_time.isoformat()}"
        seed = int(hashlib.md5(seed_str.encode()).hexdigest(), 16)

        base_price = 20000.0 if symbol.upper().startswith("BTC") else 100.0

        # Generate OHLC using deterministic randomness
        price_seed = seed % 1000000
        open_price = base_price * (1 + (price_seed % 100 - 50) / 10000)

        high_offset = abs((seed // 1000000) % 100) / 10000
        low_offset = abs((seed // 2000000) % 100) / 10000
        close_offset = ((seed // 3000000) % 100 - 50) / 10000

        close_price = open_price * (1 + close_offset)
        high_price = max(open_price, close_price) * (1 + high_offset)
        low_price = min(open_price, close_price) * (1 - low_offset)

        volume = (seed % 100000) / 100

        return OHLCV(
            timestamp=open_time,
            open=round(open_price, 2),
            high=round(high_price, 2),
            low=round(low_price, 2),
            close=round(close_price, 2),
            volume=float(volume),
        )
