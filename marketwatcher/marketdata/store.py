"""Time-series store for the raw and filled OHLCV measurements."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Protocol

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketwatcher.errors import TransientWriteError
from marketwatcher.marketdata.integrity import find_missing_timestamps, forward_fill
from marketwatcher.marketdata.models import (
    MEASUREMENT_OHLC, MEASUREMENT_OHLC_FILLED, OHLC, OHLCFilled, model_for
)
from marketwatcher.marketdata.types import OHLCV, SeriesKey, as_utc, floor_minute, granularity_step

logger = logging.getLogger(__name__)

ONE_MINUTE = timedelta(minutes=1)
# Rows per INSERT statement (keeps bound parameters under SQLite limits)
WRITE_CHUNK_SIZE = 500
# Rows read per query when scanning or refreshing a series
SCAN_PAGE_SIZE = 10_000
PRICE_COLUMNS = ("open", "high", "low", "close", "volume")


class CandleStore(Protocol):
    """Operations the watcher needs from a time-series store."""

    async def count(self, measurement: str, key: SeriesKey) -> int:
        ...

    async def write_candles(
        self,
        key: SeriesKey,
        candles: List[OHLCV],
        measurement: str = MEASUREMENT_OHLC,
    ) -> int:
        ...

    async def get_missing_timestamps(
        self,
        measurement: str,
        key: SeriesKey,
        granularity: str = "1m",
    ) -> List[datetime]:
        ...

    async def refresh_derived(
        self,
        key: SeriesKey,
        full_rebuild: bool = False,
        since: Optional[datetime] = None,
    ) -> int:
        ...

    async def drop_series(self, measurement: str, key: SeriesKey) -> int:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _series_filter(model, key: SeriesKey):
    return (
        (model.exchange == key.exchange) &
        (model.base == key.base) &
        (model.quote == key.quote)
    )


def _chunks(rows: Iterable[Dict[str, Any]], size: int) -> Iterable[List[Dict[str, Any]]]:
    chunk: List[Dict[str, Any]] = []
    for row in rows:
        chunk.append(row)
        if len(chunk) >= size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk


class SqlCandleStore:
    """CandleStore on SQLAlchemy asyncio (PostgreSQL or SQLite)."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock=_utcnow,
    ) -> None:
        self.session_factory = session_factory
        self.clock = clock

    async def count(self, measurement: str, key: SeriesKey) -> int:
        model = model_for(measurement)
        try:
            async with self.session_factory() as session:
                stmt = select(func.count(model.id)).where(_series_filter(model, key))
                result = await session.execute(stmt)
                return int(result.scalar() or 0)
        except SQLAlchemyError as e:
            raise TransientWriteError(f"Count failed on {measurement} for {key}: {e}") from e

    async def write_candles(
        self,
        key: SeriesKey,
        candles: List[OHLCV],
        measurement: str = MEASUREMENT_OHLC,
    ) -> int:
        """
        Upsert candles into a measurement.

        Invalid candles (high < low, prices outside [low, high]) are skipped
        with a warning. Existing points at the same time are overwritten.

        Returns:
            Number of rows written
        """
        rows = []
        for candle in candles:
            try:
                rows.append(self._normalize_and_validate(candle, key))
            except ValueError as e:
                logger.warning(f"Skipping invalid candle for {key}: {e}")

        if not rows:
            return 0
        if measurement == MEASUREMENT_OHLC_FILLED:
            for row in rows:
                row["filled"] = False

        model = model_for(measurement)
        try:
            async with self.session_factory() as session:
                for chunk in _chunks(rows, WRITE_CHUNK_SIZE):
                    await session.execute(self._upsert(session, model, chunk, overwrite=True))
                await session.commit()
        except SQLAlchemyError as e:
            raise TransientWriteError(f"Write to {measurement} failed for {key}: {e}") from e

        logger.debug(f"Wrote {len(rows)} candles to {measurement} for {key}")
        return len(rows)

    async def get_missing_timestamps(
        self,
        measurement: str,
        key: SeriesKey,
        granularity: str = "1m",
    ) -> List[datetime]:
        """
        Return missing timestamps between the first stored point and the last
        closed bucket before now, ascending. An empty series has no gaps.

        Stored timestamps are read in pages of ``SCAN_PAGE_SIZE`` so a long
        series is never held in memory at once.
        """
        model = model_for(measurement)
        step = granularity_step(granularity)
        missing: List[datetime] = []
        stored = 0
        last: Optional[datetime] = None
        try:
            async with self.session_factory() as session:
                while True:
                    stmt = select(model.time).where(_series_filter(model, key))
                    if last is not None:
                        stmt = stmt.where(model.time > last)
                    stmt = stmt.order_by(model.time.asc()).limit(SCAN_PAGE_SIZE)
                    page = (await session.execute(stmt)).scalars().all()
                    if not page:
                        break
                    # Previous page's last point bridges gaps across the page boundary
                    window = ([last] if last is not None else []) + list(page)
                    missing.extend(find_missing_timestamps(window, step))
                    stored += len(page)
                    last = page[-1]
                    if len(page) < SCAN_PAGE_SIZE:
                        break
        except SQLAlchemyError as e:
            raise TransientWriteError(f"Gap scan on {measurement} failed for {key}: {e}") from e

        if last is not None:
            # The current bucket is still in progress
            until = floor_minute(self.clock()) - step
            missing.extend(find_missing_timestamps([last], step, until=until))
        logger.info(f"Gap scan {measurement} {key}: stored={stored}, missing={len(missing)}")
        return missing

    async def refresh_derived(
        self,
        key: SeriesKey,
        full_rebuild: bool = False,
        since: Optional[datetime] = None,
    ) -> int:
        """
        Materialize ohlc_filled from ohlc.

        Raw rows are read in pages of ``SCAN_PAGE_SIZE``; each page is filled
        and committed before the next is read.

        Args:
            key: Series to refresh
            full_rebuild: Overwrite every point in the window from raw. When
                False only points missing from ohlc_filled are inserted.
            since: Window start (inclusive). Defaults to the first raw point.

        Returns:
            Number of points submitted to ohlc_filled
        """
        written = 0
        try:
            async with self.session_factory() as session:
                raw_filter = _series_filter(OHLC, key)
                columns = [OHLC.time] + [getattr(OHLC, c) for c in PRICE_COLUMNS]

                seed = None
                start = None
                if since is not None:
                    since = floor_minute(since)
                    start = since
                    seed_stmt = (
                        select(*columns)
                        .where(raw_filter & (OHLC.time < since))
                        .order_by(OHLC.time.desc())
                        .limit(1)
                    )
                    seed_row = (await session.execute(seed_stmt)).first()
                    seed = dict(seed_row._mapping) if seed_row is not None else None

                tags = key.tags()
                last: Optional[datetime] = None
                while True:
                    stmt = select(*columns).where(raw_filter)
                    if last is not None:
                        stmt = stmt.where(OHLC.time > last)
                    elif since is not None:
                        stmt = stmt.where(OHLC.time >= since)
                    stmt = stmt.order_by(OHLC.time.asc()).limit(SCAN_PAGE_SIZE)

                    raw_rows = [dict(r._mapping) for r in (await session.execute(stmt)).all()]
                    if not raw_rows:
                        break

                    points = (
                        {**tags, **point}
                        for point in forward_fill(raw_rows, ONE_MINUTE, seed=seed, start=start)
                    )
                    for chunk in _chunks(points, WRITE_CHUNK_SIZE):
                        await session.execute(
                            self._upsert(session, OHLCFilled, chunk, overwrite=full_rebuild)
                        )
                        written += len(chunk)
                    await session.commit()

                    seed = raw_rows[-1]
                    last = raw_rows[-1]["time"]
                    start = as_utc(last) + ONE_MINUTE
                    if len(raw_rows) < SCAN_PAGE_SIZE:
                        break
        except SQLAlchemyError as e:
            raise TransientWriteError(f"Refresh of {MEASUREMENT_OHLC_FILLED} failed for {key}: {e}") from e

        logger.debug(
            f"Refreshed {MEASUREMENT_OHLC_FILLED} for {key}: "
            f"points={written}, full_rebuild={full_rebuild}, since={since}"
        )
        return written

    async def drop_series(self, measurement: str, key: SeriesKey) -> int:
        model = model_for(measurement)
        try:
            async with self.session_factory() as session:
                result = await session.execute(delete(model).where(_series_filter(model, key)))
                await session.commit()
        except SQLAlchemyError as e:
            raise TransientWriteError(f"Drop of {measurement} failed for {key}: {e}") from e

        logger.info(f"Dropped {result.rowcount} points from {measurement} for {key}")
        return result.rowcount

    @staticmethod
    def _upsert(session: AsyncSession, model, rows: List[Dict[str, Any]], overwrite: bool):
        if session.get_bind().dialect.name == "postgresql":
            stmt = pg_insert(model).values(rows)
        else:
            stmt = sqlite_insert(model).values(rows)

        index_elements = ["exchange", "base", "quote", "time"]
        if not overwrite:
            return stmt.on_conflict_do_nothing(index_elements=index_elements)

        set_ = {c: getattr(stmt.excluded, c) for c in PRICE_COLUMNS}
        set_["ingested_at"] = func.now()
        if model is OHLCFilled:
            set_["filled"] = stmt.excluded.filled
        return stmt.on_conflict_do_update(index_elements=index_elements, set_=set_)

    @staticmethod
    def _normalize_and_validate(candle: OHLCV, key: SeriesKey) -> Dict[str, Any]:
        """
        Normalize a candle into a row and validate OHLC constraints.

        Raises ValueError if validation fails.
        """
        ts = candle.timestamp
        if not isinstance(ts, datetime):
            raise ValueError(f"timestamp must be datetime, got {type(ts)}")
        ts = floor_minute(as_utc(ts))

        o, h, l, c = (float(candle.open), float(candle.high), float(candle.low), float(candle.close))
        if not (h >= l):
            raise ValueError(f"High ({h}) must be >= Low ({l})")
        if not (h >= o and h >= c):
            raise ValueError(f"High ({h}) must be >= Open ({o}) and Close ({c})")
        if not (l <= o and l <= c):
            raise ValueError(f"Low ({l}) must be <= Open ({o}) and Close ({c})")

        return {
            **key.tags(),
            "time": ts,
            "open": o,
            "high": h,
            "low": l,
            "close": c,
            "volume": float(candle.volume or 0.0),
        }
