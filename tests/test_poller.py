"""Tests for the steady-state poll loop."""
import asyncio
import logging
from datetime import timedelta

import pytest

from conftest import KEY, NOW, FakeSource, FakeStore
from marketwatcher.errors import LoopFatalError, TransientFetchError
from marketwatcher.marketdata.models import MEASUREMENT_OHLC
from marketwatcher.watcher.poller import POLL_LIMIT, Poller
from marketwatcher.watcher.runstate import CancellationToken


class CountingToken(CancellationToken):
    """Token whose sleep returns at once and cancels after N sleeps."""

    def __init__(self, stop_after: int) -> None:
        super().__init__()
        self.stop_after = stop_after
        self.sleeps = []

    async def sleep(self, seconds: float) -> bool:
        self.sleeps.append(seconds)
        await asyncio.sleep(0)
        if len(self.sleeps) >= self.stop_after:
            self.cancel()
        return self.cancelled


def make_poller(source, store):
    return Poller(source, store, KEY, clock=lambda: NOW)


@pytest.mark.asyncio
async def test_iterations_fetch_latest_and_refresh_trailing_window():
    source = FakeSource()
    store = FakeStore()
    poller = make_poller(source, store)
    token = CountingToken(stop_after=3)

    await poller.run(30000, token)

    assert poller.iterations == 3
    assert source.calls == [(POLL_LIMIT, None)] * 3
    assert store.refreshes == [(True, NOW - timedelta(minutes=100))] * 3
    assert len(store.writes_to(MEASUREMENT_OHLC)) == 3
    assert token.sleeps == [30.0, 30.0, 30.0]


@pytest.mark.asyncio
async def test_iterations_never_overlap():
    log = []
    source = FakeSource(log=log)
    store = FakeStore(log=log)
    in_refresh = {"value": False}
    original_refresh = store.refresh_derived
    original_fetch = source.get_candles

    async def slow_refresh(*args, **kwargs):
        in_refresh["value"] = True
        await asyncio.sleep(0.01)
        result = await original_refresh(*args, **kwargs)
        in_refresh["value"] = False
        return result

    async def checked_fetch(*args, **kwargs):
        assert not in_refresh["value"], "fetch started while previous refresh was running"
        return await original_fetch(*args, **kwargs)

    store.refresh_derived = slow_refresh
    source.get_candles = checked_fetch

    await make_poller(source, store).run(1000, CountingToken(stop_after=4))

    steps = [event for event, _ in log if event in ("fetch", "refresh")]
    assert steps == ["fetch", "refresh"] * 4


@pytest.mark.asyncio
async def test_raw_write_failure_does_not_stop_loop(caplog):
    source = FakeSource()
    store = FakeStore()
    store.fail_write = True
    poller = make_poller(source, store)

    with caplog.at_level(logging.WARNING):
        await poller.run(1000, CountingToken(stop_after=2))

    assert poller.iterations == 2
    assert len(store.refreshes) == 2
    assert "Raw candle write failed" in caplog.text


@pytest.mark.asyncio
async def test_fetch_failure_is_fatal():
    source = FakeSource()
    source.fail_latest = True
    store = FakeStore()

    with pytest.raises(LoopFatalError) as exc_info:
        await make_poller(source, store).run(1000, CountingToken(stop_after=5))

    assert isinstance(exc_info.value.__cause__, TransientFetchError)
    assert store.refreshes == []


@pytest.mark.asyncio
async def test_refresh_failure_is_fatal():
    source = FakeSource()
    store = FakeStore()
    store.fail_refresh = True
    poller = make_poller(source, store)

    with pytest.raises(LoopFatalError):
        await poller.run(1000, CountingToken(stop_after=5))

    assert poller.iterations == 0


@pytest.mark.asyncio
async def test_cancelled_token_prevents_any_iteration():
    source = FakeSource()
    token = CancellationToken()
    token.cancel()

    await make_poller(source, FakeStore()).run(1000, token)

    assert source.calls == []


@pytest.mark.asyncio
async def test_cancel_wakes_the_interval_sleep():
    source = FakeSource()
    store = FakeStore()
    poller = make_poller(source, store)
    token = CancellationToken()

    # One hour between polls; cancellation must not wait for it
    task = asyncio.create_task(poller.run(3_600_000, token))
    while poller.iterations < 1:
        await asyncio.sleep(0.001)

    token.cancel()
    await asyncio.wait_for(task, timeout=1)

    assert poller.iterations == 1
