"""
FastAPI Application - Collector Status API

Runs the Bithumb data collector as a long-lived service and exposes its
state over a small read-only HTTP API (plus two control endpoints).

Startup (lifespan):
    1. Validate configuration
    2. Initialize the database (a failure here aborts startup)
    3. Open the Bithumb HTTP session
    4. Start collecting settings.symbols_list every settings.collect_interval ms

Endpoints:
    - GET  /                  - Service information
    - GET  /health            - API / database / scheduler health
    - GET  /stats             - Collection statistics
    - GET  /logs              - Recent collection log entries
    - GET  /data/{symbol}     - Recent price observations
    - POST /collect/once      - One-shot collection of every ticker
    - POST /collector/stop    - Stop one symbol (or all)

Usage:
    uvicorn app.main:app --host 0.0.0.0 --port 8000
    coin-collector collect --daemon
"""

from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse

from core.config import settings, validate_configuration
from core.exceptions import ApiError, StorageError
from core.logging import logger
from core.schemas import CollectionLogEntry, CollectionOutcome, CollectionStatsSnapshot, PriceObservation
from exchanges.bithumb import BithumbAPIClient
from services.collector import DataCollector
from services.health import HealthReporter
from storage.database import Database


APP_VERSION = "1.0.0"

client = BithumbAPIClient()
database = Database()
collector = DataCollector(client, database)
reporter = HealthReporter(collector)


# ============================================
# Lifespan Management
# ============================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown."""
    logger.info("=== Application Starting ===")
    try:
        validate_configuration()
        await database.initialize()
        await database.test_connection()
        await client.initialize()
        await collector.start(settings.symbols_list, settings.collect_interval)
        logger.info("=== Started Successfully ===")
    except Exception as e:
        logger.error(f"Startup failed: {e}")
        raise

    yield

    logger.info("=== Shutting Down ===")
    try:
        await collector.graceful_shutdown()
        await client.close()
        await database.close()
        logger.info("=== Shutdown Complete ===")
    except Exception as e:
        logger.error(f"Shutdown error: {e}")


# ============================================
# FastAPI Application
# ============================================

app = FastAPI(
    title="Bithumb Coin Collector",
    description=(
        "Status API for the Bithumb ticker collector.\n\n"
        "The collector polls each configured symbol on its own timer, stores every "
        "observation and logs every collection attempt."
    ),
    version=APP_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)


# ============================================
# System Endpoints
# ============================================

@app.get("/", tags=["System"])
async def root():
    """Service information."""
    return {
        "name": "Bithumb Coin Collector",
        "version": APP_VERSION,
        "status": "running" if collector.is_running else "stopped",
        "docs": "/docs",
        "symbols": collector.active_symbols
    }


@app.get("/health", tags=["System"])
async def health_check():
    """Health check - probes the Bithumb API and the database."""
    report = await reporter.health_check()
    return {
        "status": "healthy" if report.healthy else "degraded",
        **report.model_dump(mode="json")
    }


@app.get("/stats", response_model=CollectionStatsSnapshot, tags=["System"])
async def get_stats():
    """Collection statistics since process start."""
    return collector.get_stats()


# ============================================
# Collected Data Endpoints
# ============================================

@app.get("/logs", response_model=List[CollectionLogEntry], tags=["Collection"])
async def get_logs(
    limit: int = Query(default=20, ge=1, le=1000, description="Number of entries"),
    errors: bool = Query(default=False, description="Only error entries"),
    symbol: Optional[str] = Query(default=None, description="Only entries for this symbol")
):
    """
    Recent collection log entries, newest first.

    Examples:
        GET /logs?limit=50
        GET /logs?errors=true&symbol=BTC
    """
    if errors:
        return await collector.logs.get_error_logs(symbol=symbol, limit=limit)
    return await collector.logs.get_recent_logs(limit=limit, symbol=symbol)


@app.get("/data/{symbol}", response_model=List[PriceObservation], tags=["Collection"])
async def get_data(
    symbol: str,
    limit: int = Query(default=10, ge=1, le=1000, description="Number of observations")
):
    """
    Recent price observations for a symbol, newest first.

    Example:
        GET /data/BTC?limit=10
    """
    return await collector.prices.get_latest(symbol.upper(), limit)


# ============================================
# Control Endpoints
# ============================================

@app.post("/collect/once", response_model=List[CollectionOutcome], tags=["Control"])
async def collect_once():
    """Fetch every ticker once and store each observation."""
    try:
        return await collector.collect_all_once()
    except ApiError as e:
        logger.error(f"One-shot collection failed: {e}")
        raise HTTPException(status_code=502, detail=f"Bithumb API error: {e}")


@app.post("/collector/stop", tags=["Control"])
async def stop_collector(symbol: Optional[str] = Query(default=None, description="Symbol to stop (all if omitted)")):
    """Stop collecting one symbol, or everything."""
    collector.stop(symbol)
    return {
        "stopped": symbol.upper() if symbol else "all",
        "running": collector.is_running,
        "active_symbols": collector.active_symbols
    }


# ============================================
# Error Handlers
# ============================================

@app.exception_handler(StorageError)
async def storage_error_handler(request, exc):
    """Database failures become 503 responses."""
    logger.error(f"Storage error on {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": "Database unavailable", "error": str(exc)})
