"""Market watcher: keeps a gap-free OHLCV series for one trading pair."""

__version__ = "1.0.0"
