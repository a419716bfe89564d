"""Startup reconciliation: history backfill for new series, gap backfill otherwise."""
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from marketwatcher.errors import BackfillIntegrityError
from marketwatcher.marketdata.models import MEASUREMENT_OHLC, MEASUREMENT_OHLC_FILLED
from marketwatcher.marketdata.provider_base import MarketDataSource
from marketwatcher.marketdata.store import CandleStore
from marketwatcher.marketdata.types import SeriesKey, as_utc
from marketwatcher.watcher.gaps import coalesce_missing
from marketwatcher.watcher.runstate import CancellationToken

logger = logging.getLogger(__name__)

GAP_GRANULARITY = "1m"


class ReconcileOutcome(Enum):
    HISTORY = "history"
    GAPS = "gaps"
    FAILED = "failed"
    CANCELLED = "cancelled"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Reconciler:
    """Bring the stored raw series up to date before steady-state polling."""

    def __init__(
        self,
        source: MarketDataSource,
        store: CandleStore,
        key: SeriesKey,
        *,
        batch_size: int = 500,
        token: Optional[CancellationToken] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.source = source
        self.store = store
        self.key = key
        self.batch_size = batch_size
        self.token = token or CancellationToken()
        self.clock = clock

    @property
    def symbol(self) -> str:
        return self.key.symbol

    async def reconcile(self, history_start: datetime) -> ReconcileOutcome:
        """
        Backfill history if the series is empty, fill gaps otherwise.

        Never raises: a failed reconciliation is logged and the watcher still
        enters steady state, which catches up on its own more slowly.
        """
        if self.token.cancelled:
            return ReconcileOutcome.CANCELLED
        try:
            if await self.store.count(MEASUREMENT_OHLC, self.key) == 0:
                await self.fill_history(history_start)
                outcome = ReconcileOutcome.HISTORY
            else:
                await self.fill_gaps()
                outcome = ReconcileOutcome.GAPS
        except Exception as e:
            logger.error(f"Reconciliation failed for {self.key}: {e}", exc_info=True)
            return ReconcileOutcome.FAILED

        if self.token.cancelled:
            return ReconcileOutcome.CANCELLED
        return outcome

    async def fill_history(self, from_ts: datetime) -> None:
        """
        Walk backward from now in batches until ``from_ts`` or until the
        source runs out of history, then fetch the edge at ``from_ts``.

        Raises:
            BackfillIntegrityError: on any fetch or write failure
        """
        batch = timedelta(minutes=self.batch_size)
        start = as_utc(from_ts)
        cursor = self.clock() - batch
        oldest_fetched: Optional[datetime] = None
        batches = 0

        logger.info(f"Filling history for {self.key} from {start.isoformat()}")
        try:
            while not self.token.cancelled and cursor - start > batch:
                data = await self.source.get_candles(self.symbol, limit=self.batch_size, since=cursor)
                # Same oldest candle as the previous batch (or nothing at all):
                # the source has no older history
                if not data or (oldest_fetched is not None and data[0].timestamp == oldest_fetched):
                    logger.info(
                        f"History exhausted for {self.key} after {batches} batches "
                        f"(oldest={oldest_fetched.isoformat() if oldest_fetched else None})"
                    )
                    await self.store.refresh_derived(self.key, full_rebuild=True)
                    return
                await self.store.write_candles(self.key, data)
                oldest_fetched = data[0].timestamp
                batches += 1
                cursor -= batch

            if self.token.cancelled:
                logger.info(f"History fill cancelled for {self.key} after {batches} batches")
                return

            # Edge batch anchored at the requested start
            data = await self.source.get_candles(self.symbol, limit=self.batch_size, since=start)
            if data:
                await self.store.write_candles(self.key, data)
            await self.store.refresh_derived(self.key, full_rebuild=True)
        except Exception as e:
            logger.error(f"History fill failed for {self.key}: {e}", exc_info=True)
            raise BackfillIntegrityError(f"Error when filling history {self.key}") from e

        logger.info(f"History filled for {self.key}: {batches + 1} batches")

    async def fill_gaps(self) -> int:
        """
        Fetch every missing minute of the raw series, one request per run.

        Returns:
            Number of missing points that were scanned

        Raises:
            BackfillIntegrityError: on any scan, fetch or write failure
        """
        try:
            missing = await self.store.get_missing_timestamps(MEASUREMENT_OHLC, self.key, GAP_GRANULARITY)
            if not missing:
                return 0

            runs = coalesce_missing(missing, self.batch_size)
            for run in runs:
                if self.token.cancelled:
                    break
                data = await self.source.get_candles(self.symbol, limit=self.batch_size, since=run.start)
                if data:
                    await self.store.write_candles(self.key, data)
                    await self.store.write_candles(self.key, data, MEASUREMENT_OHLC_FILLED)

            logger.info(
                f"{len(missing)} missing points filled in {len(runs)} requests for {self.key}"
            )
            # Resolve carry-forward points left between runs; nothing before
            # the first gap changes
            await self.store.refresh_derived(self.key, since=missing[0])
        except Exception as e:
            logger.error(f"Gap fill failed for {self.key}: {e}", exc_info=True)
            raise BackfillIntegrityError(f"Error when filling gap {self.key}") from e

        return len(missing)
