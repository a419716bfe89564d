"""Steady-state polling loop."""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Set

from marketwatcher.errors import LoopFatalError
from marketwatcher.marketdata.provider_base import MarketDataSource
from marketwatcher.marketdata.store import CandleStore
from marketwatcher.marketdata.types import OHLCV, SeriesKey
from marketwatcher.watcher.runstate import CancellationToken

logger = logging.getLogger(__name__)

# Two candles so the in-progress bucket of the previous tick gets overwritten
POLL_LIMIT = 2
REFRESH_WINDOW = timedelta(minutes=100)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Poller:
    """Fetch the newest candles every interval, append them, refresh the filled view."""

    def __init__(
        self,
        source: MarketDataSource,
        store: CandleStore,
        key: SeriesKey,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.source = source
        self.store = store
        self.key = key
        self.clock = clock
        self.iterations = 0
        self._pending_writes: Set[asyncio.Task] = set()

    async def run(self, refresh_interval_ms: int, token: CancellationToken) -> None:
        """
        Poll until ``token`` is cancelled.

        Iterations never overlap: fetch, write, refresh and sleep run in
        sequence. The sleep returns as soon as the token is cancelled.

        Raises:
            LoopFatalError: on any failure other than the best-effort raw write
        """
        try:
            while not token.cancelled:
                await self.poll_once()
                await token.sleep(refresh_interval_ms / 1000)
        finally:
            await self.drain()

    async def poll_once(self) -> None:
        try:
            data = await self.source.get_candles(self.key.symbol, limit=POLL_LIMIT)
            self.write_best_effort(data)
            await self.store.refresh_derived(
                self.key, full_rebuild=True, since=self.clock() - REFRESH_WINDOW
            )
        except Exception as e:
            logger.error(f"Error in market watcher loop {self.key}: {e}", exc_info=True)
            raise LoopFatalError(f"Error while running market watcher loop {self.key}") from e
        self.iterations += 1

    def write_best_effort(self, data: List[OHLCV]) -> None:
        """
        Schedule a raw write without waiting for it.

        A failed write is only logged: the missing point is picked up by the
        next gap scan, and a slow store never stalls the poll loop.
        """
        if not data:
            return
        task = asyncio.create_task(self.store.write_candles(self.key, data))
        self._pending_writes.add(task)
        task.add_done_callback(self._on_write_done)

    def _on_write_done(self, task: asyncio.Task) -> None:
        self._pending_writes.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"Raw candle write failed for {self.key}: {error}")

    async def drain(self) -> None:
        """Wait for scheduled raw writes to settle."""
        if self._pending_writes:
            await asyncio.gather(*self._pending_writes, return_exceptions=True)
