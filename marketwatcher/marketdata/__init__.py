"""Market data package: value types, sources and the candle store."""
from marketwatcher.marketdata.models import MEASUREMENT_OHLC, MEASUREMENT_OHLC_FILLED, OHLC, OHLCFilled
from marketwatcher.marketdata.types import OHLCV, SeriesKey

__all__ = [
    "MEASUREMENT_OHLC",
    "MEASUREMENT_OHLC_FILLED",
    "OHLC",
    "OHLCFilled",
    "OHLCV",
    "SeriesKey",
]
