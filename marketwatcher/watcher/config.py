"""Immutable watcher configuration."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from marketwatcher.errors import ConfigError
from marketwatcher.marketdata.types import SeriesKey, as_utc


DEFAULT_HISTORY_START = datetime(2018, 1, 1, tzinfo=timezone.utc)
MIN_REFRESH_INTERVAL_MS = 1000


def parse_history_start(value: str) -> datetime:
    """Parse an ISO-8601 timestamp ('Z' suffix accepted) into UTC."""
    try:
        return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError as e:
        raise ConfigError(f"Invalid history start '{value}' (use ISO-8601): {e}")


@dataclass(frozen=True)
class WatcherConfig:
    series_key: SeriesKey
    refresh_interval_ms: int = 30000
    history_start: datetime = DEFAULT_HISTORY_START
    batch_size: int = 500
    type: str = field(default="MarketWatcher")

    def __post_init__(self) -> None:
        # Can't watch a market with a refresh interval under 1 second
        if self.refresh_interval_ms < MIN_REFRESH_INTERVAL_MS:
            raise ConfigError(
                f"Cannot create market watcher with refresh interval < {MIN_REFRESH_INTERVAL_MS} ms "
                f"(got {self.refresh_interval_ms})"
            )
        if self.batch_size < 1:
            raise ConfigError(f"batch_size must be positive (got {self.batch_size})")
        object.__setattr__(self, "history_start", as_utc(self.history_start))

    @property
    def refresh_interval(self) -> float:
        """Refresh interval in seconds."""
        return self.refresh_interval_ms / 1000
