"""FastAPI routes for stored market data."""
import logging
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from marketwatcher.config import Config
from marketwatcher.marketdata.db import AsyncSessionLocal, get_session
from marketwatcher.marketdata.models import MEASUREMENT_OHLC, MEASUREMENT_OHLC_FILLED, model_for
from marketwatcher.marketdata.schemas import (
    CandleSchema, CandleListSchema, GapReportSchema, GapRunSchema
)
from marketwatcher.marketdata.store import CandleStore, SqlCandleStore
from marketwatcher.marketdata.types import SeriesKey, as_utc
from marketwatcher.watcher.gaps import coalesce_missing

logger = logging.getLogger(__name__)

MEASUREMENT_PATTERN = f"^({MEASUREMENT_OHLC}|{MEASUREMENT_OHLC_FILLED})$"

router = APIRouter(prefix="/v1/candles", tags=["market-data"])


def get_store() -> CandleStore:
    if AsyncSessionLocal is None:
        raise HTTPException(status_code=503, detail="Database not configured")
    return SqlCandleStore(AsyncSessionLocal)


def _series_key(exchange: str, base: str, quote: str) -> SeriesKey:
    return SeriesKey(exchange=exchange, base=base.upper(), quote=quote.upper())


def _parse_ts(value: str, name: str) -> datetime:
    try:
        return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid {name} datetime format (use ISO-8601)"
        )


def _to_schema(row) -> CandleSchema:
    candle = CandleSchema.model_validate(row)
    return candle.model_copy(update={"time": as_utc(candle.time)})


@router.get("/latest", response_model=CandleSchema)
async def get_latest_candle(
    measurement: str = Query(MEASUREMENT_OHLC, pattern=MEASUREMENT_PATTERN),
    exchange: str = Query(Config.EXCHANGE),
    base: str = Query(Config.BASE),
    quote: str = Query(Config.QUOTE),
    session: AsyncSession = Depends(get_session),
) -> CandleSchema:
    """Get latest stored candle of a series."""
    model = model_for(measurement)
    key = _series_key(exchange, base, quote)
    stmt = select(model).where(
        (model.exchange == key.exchange) &
        (model.base == key.base) &
        (model.quote == key.quote)
    ).order_by(model.time.desc()).limit(1)

    result = await session.execute(stmt)
    candle = result.scalar()

    if not candle:
        raise HTTPException(
            status_code=404,
            detail=f"No candles found in {measurement} for {key}"
        )

    return _to_schema(candle)


@router.get("", response_model=CandleListSchema)
async def get_candles(
    measurement: str = Query(MEASUREMENT_OHLC, pattern=MEASUREMENT_PATTERN),
    exchange: str = Query(Config.EXCHANGE),
    base: str = Query(Config.BASE),
    quote: str = Query(Config.QUOTE),
    start: Optional[str] = Query(None, description="Start time (ISO-8601 UTC)"),
    end: Optional[str] = Query(None, description="End time (ISO-8601 UTC)"),
    limit: int = Query(1000, ge=1, le=10000),
    session: AsyncSession = Depends(get_session),
) -> CandleListSchema:
    """
    Get candles of a series.

    - start: inclusive
    - end: exclusive
    - Returns candles in ascending time order
    """
    model = model_for(measurement)
    key = _series_key(exchange, base, quote)
    stmt = select(model).where(
        (model.exchange == key.exchange) &
        (model.base == key.base) &
        (model.quote == key.quote)
    )

    if start:
        stmt = stmt.where(model.time >= _parse_ts(start, "start"))
    if end:
        stmt = stmt.where(model.time < _parse_ts(end, "end"))

    stmt = stmt.order_by(model.time.asc()).limit(limit)

    result = await session.execute(stmt)
    candles = [_to_schema(c) for c in result.scalars().all()]

    return CandleListSchema(
        measurement=measurement,
        count=len(candles),
        candles=candles,
        earliest=candles[0].time if candles else None,
        latest=candles[-1].time if candles else None,
    )


@router.get("/gaps", response_model=GapReportSchema)
async def get_gaps(
    measurement: str = Query(MEASUREMENT_OHLC, pattern=MEASUREMENT_PATTERN),
    exchange: str = Query(Config.EXCHANGE),
    base: str = Query(Config.BASE),
    quote: str = Query(Config.QUOTE),
    store: CandleStore = Depends(get_store),
) -> GapReportSchema:
    """
    Report missing minutes of a series, grouped into the runs the watcher
    would fetch on its next reconciliation.
    """
    key = _series_key(exchange, base, quote)
    try:
        missing = await store.get_missing_timestamps(measurement, key, "1m")
    except Exception as e:
        logger.error(f"Gap scan failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Gap scan failed: {str(e)}")

    runs = coalesce_missing(missing, Config.BATCH_SIZE)
    return GapReportSchema(
        measurement=measurement,
        exchange=key.exchange,
        symbol=key.symbol,
        missing_count=len(missing),
        runs=[GapRunSchema(start=r.start, end=r.end, count=r.count) for r in runs],
        is_complete=not missing,
    )
