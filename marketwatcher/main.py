"""FastAPI application entrypoint."""
import asyncio
import logging
import sys
from typing import Optional

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel

from marketwatcher import __version__
from marketwatcher.config import Config
from marketwatcher.errors import ConfigError
from marketwatcher.marketdata.db import AsyncSessionLocal, init_db, close_db
from marketwatcher.marketdata.router import router as marketdata_router
from marketwatcher.marketdata.store import SqlCandleStore
from marketwatcher.notifier import Notifier
from marketwatcher.watcher import MarketWatcher

# Configure logging
logging.basicConfig(
    level=Config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Validate config on startup
try:
    Config.validate()
except ConfigError as e:
    logger.error(f"Configuration error: {e}")
    sys.exit(1)


def build_source():
    """Create the configured market data source."""
    if Config.MARKET_DATA_PROVIDER == "ccxt":
        from marketwatcher.marketdata.provider_ccxt import CcxtProvider
        return CcxtProvider(Config.EXCHANGE)
    from marketwatcher.marketdata.provider_mock import MockProvider
    return MockProvider()


# Initialize FastAPI and watcher
app = FastAPI(title="Market Watcher", version=__version__)
source = build_source()
watcher = MarketWatcher(
    Config.watcher_config(),
    source,
    SqlCandleStore(AsyncSessionLocal),
    notifier=Notifier(Config.WEBHOOK_URL),
)
watcher_task: Optional[asyncio.Task] = None


class MessageResponse(BaseModel):
    """Standard response model."""
    message: str


class StatusResponse(BaseModel):
    """Status response model."""
    state: str
    running: bool
    exchange: str
    symbol: str
    refresh_interval_ms: int
    iterations: int
    last_reconcile: str | None
    last_error: str | None
    started_at: str | None


app.include_router(marketdata_router)


def _on_watcher_done(task: asyncio.Task) -> None:
    if task.cancelled():
        logger.info("Watcher task cancelled")
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Watcher terminated: {error}", exc_info=error)


@app.on_event("startup")
async def startup_event() -> None:
    """Initialize database on startup."""
    logger.info("Initializing market data store...")
    try:
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}", exc_info=True)
        raise


@app.on_event("shutdown")
async def shutdown_event() -> None:
    """Cleanup on shutdown."""
    logger.info("Shutting down...")

    if watcher_task is not None and not watcher_task.done():
        logger.info("Stopping watcher...")
        await watcher.stop()
        try:
            await asyncio.wait_for(asyncio.shield(watcher_task), timeout=10)
        except Exception as e:
            logger.warning(f"Watcher did not stop cleanly: {e}")

    close_source = getattr(source, "close", None)
    if close_source is not None:
        await close_source()

    logger.info("Closing database connections...")
    try:
        await close_db()
    except Exception as e:
        logger.warning(f"Error closing database: {e}")


@app.post("/start", response_model=MessageResponse)
async def start_watcher() -> MessageResponse:
    """Start the watcher in the background."""
    global watcher_task
    if watcher_task is not None and not watcher_task.done():
        raise HTTPException(status_code=400, detail="Watcher already running")
    try:
        await watcher.init()
    except Exception as e:
        raise HTTPException(status_code=400, detail=str(e))
    watcher_task = asyncio.create_task(watcher.run())
    watcher_task.add_done_callback(_on_watcher_done)
    return MessageResponse(message=f"Watcher started on {watcher.key}")


@app.post("/stop", response_model=MessageResponse)
async def stop_watcher(flush: bool = Query(False, description="Drop stored series")) -> MessageResponse:
    """Stop the watcher, optionally flushing its stored data."""
    await watcher.stop(flush_data=flush)
    return MessageResponse(message=f"Watcher stopped on {watcher.key}")


@app.get("/status", response_model=StatusResponse)
async def get_status() -> StatusResponse:
    """Get watcher status."""
    return StatusResponse(**watcher.get_status())


@app.get("/health")
async def health_check() -> MessageResponse:
    """Health check endpoint."""
    return MessageResponse(message="OK")


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting {Config.WATCHER_NAME} v{__version__} on 0.0.0.0:8000")
    logger.info(f"Market Data Provider: {Config.MARKET_DATA_PROVIDER}")
    logger.info(f"Series: {watcher.key}")

    uvicorn.run(
        "marketwatcher.main:app",
        host="0.0.0.0",
        port=8000,
        reload=False
    )
