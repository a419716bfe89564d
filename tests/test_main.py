"""Tests for the watcher control routes."""
import asyncio

import httpx
import pytest
import pytest_asyncio

from conftest import KEY, NOW, FakeSource, FakeStore
from marketwatcher import main
from marketwatcher.marketdata.models import MEASUREMENT_OHLC, MEASUREMENT_OHLC_FILLED
from marketwatcher.watcher import MarketWatcher, WatcherConfig


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def store():
    return FakeStore(count=5)


@pytest_asyncio.fixture
async def client(monkeypatch, source, store):
    conf = WatcherConfig(series_key=KEY, refresh_interval_ms=3_600_000)
    watcher = MarketWatcher(conf, source, store, clock=lambda: NOW)
    monkeypatch.setattr(main, "watcher", watcher)
    monkeypatch.setattr(main, "watcher_task", None)

    transport = httpx.ASGITransport(app=main.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    await watcher.stop()
    if main.watcher_task is not None:
        await asyncio.wait_for(main.watcher_task, timeout=1)


async def wait_for_first_poll():
    while main.watcher.poller.iterations < 1:
        await asyncio.sleep(0.001)


@pytest.mark.asyncio
async def test_start_runs_watcher_in_background(client):
    resp = await client.post("/start")

    assert resp.status_code == 200
    await wait_for_first_poll()
    status = (await client.get("/status")).json()
    assert status["state"] == "running"
    assert status["running"] is True
    assert status["symbol"] == "BTC/USDT"


@pytest.mark.asyncio
async def test_second_start_rejected_while_task_alive(client, source):
    await client.post("/start")
    await wait_for_first_poll()
    first_task = main.watcher_task

    resp = await client.post("/start")

    assert resp.status_code == 400
    assert "already running" in resp.json()["detail"]
    assert main.watcher_task is first_task
    assert source.info_calls == 1


@pytest.mark.asyncio
async def test_start_unknown_symbol_rejected(client, source):
    source.symbols.clear()

    resp = await client.post("/start")

    assert resp.status_code == 400
    assert "BTC/USDT" in resp.json()["detail"]
    assert main.watcher_task is None
    assert source.calls == []


@pytest.mark.asyncio
async def test_stop_with_flush_drops_series(client, store):
    await client.post("/start")
    await wait_for_first_poll()

    resp = await client.post("/stop", params={"flush": "true"})

    assert resp.status_code == 200
    assert sorted(m for m, _ in store.drops) == [MEASUREMENT_OHLC, MEASUREMENT_OHLC_FILLED]
    await asyncio.wait_for(main.watcher_task, timeout=1)
    assert (await client.get("/status")).json()["state"] == "stopped"


@pytest.mark.asyncio
async def test_stop_without_flush_keeps_series(client, store):
    await client.post("/start")
    await wait_for_first_poll()

    resp = await client.post("/stop")

    assert resp.status_code == 200
    assert store.drops == []


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {"message": "OK"}
