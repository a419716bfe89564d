"""Watcher error taxonomy."""


class WatcherError(Exception):
    """Base class for all market watcher errors."""


class ConfigError(WatcherError, ValueError):
    """Invalid watcher or process configuration."""


class SymbolNotFoundError(WatcherError):
    """The configured pair does not exist on the data source."""


class TransientFetchError(WatcherError):
    """The data source failed to answer a candle or market request."""


class TransientWriteError(WatcherError):
    """The store failed to apply a write, refresh or delete."""


class LoopFatalError(WatcherError, RuntimeError):
    """Steady-state poll loop failure; terminates the watcher."""


class BackfillIntegrityError(WatcherError, RuntimeError):
    """History or gap backfill could not complete."""
