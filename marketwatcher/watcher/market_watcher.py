"""Market watcher lifecycle: init, run, stop."""
import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

from marketwatcher.errors import SymbolNotFoundError
from marketwatcher.marketdata.models import MEASUREMENT_OHLC, MEASUREMENT_OHLC_FILLED
from marketwatcher.marketdata.provider_base import MarketDataSource
from marketwatcher.marketdata.store import CandleStore
from marketwatcher.notifier import Notifier
from marketwatcher.watcher.config import WatcherConfig
from marketwatcher.watcher.poller import Poller
from marketwatcher.watcher.reconciler import ReconcileOutcome, Reconciler
from marketwatcher.watcher.runstate import RunState

logger = logging.getLogger(__name__)

# Seconds a flushing stop waits for the run to wind down before dropping data
STOP_TIMEOUT = 30.0


class WatcherState(Enum):
    STOPPED = "stopped"
    RECONCILING = "reconciling"
    RUNNING = "running"
    ERROR = "error"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MarketWatcher:
    """
    Monitor one market: keep its raw OHLC series complete in the store and
    the filled view refreshed.
    """

    def __init__(
        self,
        conf: WatcherConfig,
        source: MarketDataSource,
        store: CandleStore,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.conf = conf
        self.key = conf.series_key
        self.symbol = self.key.symbol
        self.source = source
        self.store = store
        self.notifier = notifier
        self.clock = clock

        self.state = WatcherState.STOPPED
        self.poller = self._new_poller()
        self.last_reconcile: Optional[ReconcileOutcome] = None
        self.last_error: Optional[str] = None
        self.started_at: Optional[datetime] = None
        self._run_state: Optional[RunState] = None
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._run_state is not None and self._run_state.running

    async def init(self) -> None:
        """Fail fast if the pair is not listed on the data source."""
        if not await self.source.get_exchange_info(self.symbol):
            raise SymbolNotFoundError(
                f"[WATCHER] symbol {self.symbol} doesn't exist on {self.key.exchange}"
            )

    async def start(self) -> None:
        """Check the symbol, reconcile the series, then poll until stopped."""
        state = self._open_run_state()
        try:
            await self.init()
        except Exception:
            self._close_run_state(state)
            raise
        await self._run(state)

    async def run(self) -> None:
        """Reconcile then poll; blocks until stopped or a fatal loop error."""
        await self._run(self._open_run_state())

    async def stop(self, flush_data: bool = False) -> None:
        """
        Stop the watcher, waking it if it is sleeping between polls.

        The run itself releases its state once it winds down, so a new run
        cannot begin while the previous iteration is still in flight.

        With ``flush_data`` the stop waits (up to ``STOP_TIMEOUT``) for the run
        and its pending raw writes to settle, then drops both the raw and the
        filled series; drop failures are logged only. Calling stop again is a
        no-op.
        """
        if self._stopped:
            return
        self._stopped = True
        logger.info(f"[WATCHER] Watcher stopped on {self.key}")

        state = self._run_state
        if state is not None:
            state.token.cancel()
            if flush_data:
                await self._wait_finished(state)

        if flush_data:
            await self.poller.drain()
            for measurement in (MEASUREMENT_OHLC_FILLED, MEASUREMENT_OHLC):
                try:
                    await self.store.drop_series(measurement, self.key)
                except Exception as e:
                    logger.error(f"Failed to flush {measurement} for {self.key}: {e}")

        await self._notify("send_stopped", str(self.key), flush_data)

    def get_status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "running": self.running,
            "exchange": self.key.exchange,
            "symbol": self.symbol,
            "refresh_interval_ms": self.conf.refresh_interval_ms,
            "iterations": self.poller.iterations,
            "last_reconcile": self.last_reconcile.value if self.last_reconcile else None,
            "last_error": self.last_error,
            "started_at": self.started_at.isoformat() if self.started_at else None,
        }

    async def _run(self, state: RunState) -> None:
        logger.info(f"[WATCHER] Watcher started on {self.key}")
        await self._notify("send_started", str(self.key))
        try:
            if not state.token.cancelled:
                self.state = WatcherState.RECONCILING
                reconciler = Reconciler(
                    self.source,
                    self.store,
                    self.key,
                    batch_size=self.conf.batch_size,
                    token=state.token,
                    clock=self.clock,
                )
                self.last_reconcile = await reconciler.reconcile(self.conf.history_start)

            if not state.token.cancelled:
                self.state = WatcherState.RUNNING
                await self.poller.run(self.conf.refresh_interval_ms, state.token)
        except Exception as e:
            self.state = WatcherState.ERROR
            self.last_error = str(e)
            await self._notify("send_error", str(self.key), e)
            raise
        else:
            self.state = WatcherState.STOPPED
        finally:
            self._close_run_state(state)

    def _open_run_state(self) -> RunState:
        if self._run_state is not None:
            raise RuntimeError(f"Watcher already running on {self.key}")
        self._run_state = RunState()
        self.poller = self._new_poller()
        self._stopped = False
        self.last_error = None
        self.started_at = self._run_state.started_at
        return self._run_state

    def _close_run_state(self, state: RunState) -> None:
        state.running = False
        state.finished.set()
        if self._run_state is state:
            self._run_state = None

    def _new_poller(self) -> Poller:
        return Poller(self.source, self.store, self.key, clock=self.clock)

    async def _wait_finished(self, state: RunState) -> None:
        try:
            await asyncio.wait_for(state.finished.wait(), timeout=STOP_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning(f"Run on {self.key} still active after {STOP_TIMEOUT}s, flushing anyway")

    async def _notify(self, method: str, *args: Any) -> None:
        if self.notifier is None:
            return
        await asyncio.to_thread(getattr(self.notifier, method), *args)
