"""SQLAlchemy ORM models for the raw and filled OHLCV measurements."""
from sqlalchemy import (
    Boolean, Column, Integer, String, Float, DateTime, UniqueConstraint, Index, CheckConstraint
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()

MEASUREMENT_OHLC = "ohlc"
MEASUREMENT_OHLC_FILLED = "ohlc_filled"


class _OHLCColumns:
    """Columns shared by both measurements."""

    id = Column(Integer, primary_key=True, autoincrement=True)
    # Series tags
    exchange = Column(String(32), nullable=False, index=True)
    base = Column(String(20), nullable=False, index=True)
    quote = Column(String(20), nullable=False, index=True)
    time = Column(DateTime(timezone=True), nullable=False, index=True)

    # OHLCV
    open = Column(Float, nullable=False)
    high = Column(Float, nullable=False)
    low = Column(Float, nullable=False)
    close = Column(Float, nullable=False)
    volume = Column(Float, nullable=False, default=0.0)

    ingested_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}("
            f"exchange={self.exchange}, "
            f"symbol={self.base}/{self.quote}, "
            f"time={self.time.isoformat()}, "
            f"close={self.close})"
        )


class OHLC(_OHLCColumns, Base):
    """Raw candles exactly as fetched from the data source."""

    __tablename__ = MEASUREMENT_OHLC

    __table_args__ = (
        # Only one candle per series/time
        UniqueConstraint("exchange", "base", "quote", "time", name="uq_ohlc_series_time"),
        CheckConstraint("high >= low", name="ck_ohlc_high_gte_low"),
        Index("ix_ohlc_lookup", "exchange", "base", "quote", "time"),
    )


class OHLCFilled(_OHLCColumns, Base):
    """Gap-free view of OHLC: missing minutes carry the previous close forward."""

    __tablename__ = MEASUREMENT_OHLC_FILLED

    # True for points synthesized by the refresh, False for copies of raw points
    filled = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("exchange", "base", "quote", "time", name="uq_ohlc_filled_series_time"),
        CheckConstraint("high >= low", name="ck_ohlc_filled_high_gte_low"),
        Index("ix_ohlc_filled_lookup", "exchange", "base", "quote", "time"),
    )


MEASUREMENTS = {
    MEASUREMENT_OHLC: OHLC,
    MEASUREMENT_OHLC_FILLED: OHLCFilled,
}


def model_for(measurement: str):
    """Return the ORM model backing a measurement name."""
    if measurement not in MEASUREMENTS:
        raise ValueError(f"Unknown measurement: {measurement}")
    return MEASUREMENTS[measurement]
