"""Market watcher: reconciliation, polling and lifecycle."""
from marketwatcher.watcher.config import WatcherConfig
from marketwatcher.watcher.gaps import GapRun, coalesce_missing
from marketwatcher.watcher.market_watcher import MarketWatcher, WatcherState
from marketwatcher.watcher.poller import Poller
from marketwatcher.watcher.reconciler import ReconcileOutcome, Reconciler

__all__ = [
    "GapRun",
    "MarketWatcher",
    "Poller",
    "ReconcileOutcome",
    "Reconciler",
    "WatcherConfig",
    "WatcherState",
    "coalesce_missing",
]
