"""Pydantic schemas for market data API."""
from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel, Field


class CandleSchema(BaseModel):
    """Stored candle."""

    exchange: str
    base: str
    quote: str
    time: datetime = Field(..., description="UTC timestamp of candle open")
    open: float
    high: float
    low: float
    close: float
    volume: float
    filled: bool = False
    ingested_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CandleListSchema(BaseModel):
    """List of candles."""

    measurement: str
    count: int
    candles: List[CandleSchema]
    earliest: Optional[datetime] = None
    latest: Optional[datetime] = None


class GapRunSchema(BaseModel):
    start: datetime
    end: datetime
    count: int


class GapReportSchema(BaseModel):
    """Missing timestamps of a series, grouped into fetch runs."""

    measurement: str
    exchange: str
    symbol: str
    missing_count: int
    runs: List[GapRunSchema] = Field(default_factory=list)
    is_complete: bool
