"""Coalesce missing timestamps into runs fetchable with one call."""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Sequence


@dataclass(frozen=True)
class GapRun:
    start: datetime
    end: datetime
    count: int


def coalesce_missing(
    missing: Sequence[datetime],
    batch_size: int,
    step: timedelta = timedelta(minutes=1),
) -> List[GapRun]:
    """
    Group ascending missing timestamps into maximal runs.

    A run starting at ``missing[i]`` absorbs every following timestamp that is
    less than ``batch_size`` steps after the run start, so a single request of
    ``batch_size`` candles anchored at the run start covers the whole run, no
    matter how sparse the gap is.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be positive")

    span = step * batch_size
    runs: List[GapRun] = []
    i = 0
    while i < len(missing):
        start = missing[i]
        j = i + 1
        while j < len(missing) and abs(missing[j] - start) < span:
            j += 1
        runs.append(GapRun(start=start, end=missing[j - 1], count=j - i))
        i = j
    return runs
