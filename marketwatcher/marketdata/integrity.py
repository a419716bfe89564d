"""Series continuity: missing-timestamp detection and carry-forward filling."""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Iterator, List, Optional

from marketwatcher.marketdata.types import as_utc

logger = logging.getLogger(__name__)


def find_missing_timestamps(
    times: Iterable[datetime],
    step: timedelta,
    until: Optional[datetime] = None,
) -> List[datetime]:
    """
    Detect missing points in an ascending series of timestamps.

    Args:
        times: Stored timestamps, ascending
        step: Expected distance between two consecutive points
        until: Last timestamp the series is expected to reach (inclusive).
            Points missing between the last stored timestamp and ``until``
            are reported too.

    Returns:
        Ascending list of missing timestamps
    """
    missing: List[datetime] = []
    prev_time: Optional[datetime] = None

    for raw in times:
        current = as_utc(raw)
        if prev_time is not None:
            expected_next = prev_time + step
            while expected_next < current:
                missing.append(expected_next)
                expected_next += step
        prev_time = current if prev_time is None else max(prev_time, current)

    if prev_time is not None and until is not None:
        expected_next = prev_time + step
        until = as_utc(until)
        while expected_next <= until:
            missing.append(expected_next)
            expected_next += step

    return missing


def forward_fill(
    rows: Iterable[Dict[str, Any]],
    step: timedelta,
    seed: Optional[Dict[str, Any]] = None,
    start: Optional[datetime] = None,
) -> Iterator[Dict[str, Any]]:
    """
    Yield a continuous series from raw rows, one point per step.

    Raw points are copied with ``filled=False``. Each missing point repeats the
    previous close as open/high/low/close with zero volume and ``filled=True``.

    Args:
        rows: Raw rows (dicts with time/open/high/low/close/volume), ascending
        step: Series granularity
        seed: Last raw row before ``start``, used to fill leading gaps
        start: First timestamp to emit; defaults to the first raw row
    """
    prev = seed
    cursor = as_utc(start) if start is not None else None

    for row in rows:
        current = as_utc(row["time"])
        if cursor is None:
            cursor = current
        while cursor < current:
            if prev is not None:
                yield _carry_forward(prev, cursor)
            cursor += step
        if current < cursor:
            # duplicate or out-of-order row; already emitted
            continue
        point = dict(row)
        point["time"] = current
        point["filled"] = False
        yield point
        prev = point
        cursor = current + step


def _carry_forward(prev: Dict[str, Any], ts: datetime) -> Dict[str, Any]:
    close = prev["close"]
    return {
        "time": ts,
        "open": close,
        "high": close,
        "low": close,
        "close": close,
        "volume": 0.0,
        "filled": True,
    }
