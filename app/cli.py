#!/usr/bin/env python3
"""
Command-line interface for the Bithumb coin collector.

Commands:
    collect    Start collecting (foreground, --daemon with the status API, or --once)
    status     Health and statistics (local probe, or a running daemon via --server)
    logs       Recent collection log entries
    data       Recent price observations for a symbol
    test-api   Fetch one ticker to verify Bithumb connectivity
    db-test    Verify database connectivity
    db-setup   Create tables and seed the coin reference data

Every command exits 0 on success and 1 on any reported failure.

Usage examples:
  coin-collector collect --symbols BTC,ETH,XRP --interval 60000
  coin-collector collect --once
  coin-collector collect --daemon
  coin-collector status --server http://localhost:8000
  coin-collector logs --limit 50 --errors --symbol BTC
  coin-collector data --symbol ETH --limit 5
"""

import argparse
import asyncio
import sys
from typing import List, Optional

import httpx

from core.config import parse_symbols, settings
from core.exceptions import ApiError, StorageError
from core.logging import logger, set_log_level
from core.schemas import CollectionStatus, HealthReport
from exchanges.bithumb import BithumbAPIClient
from services.collector import DataCollector
from services.health import HealthReporter
from storage.database import Database
from storage.repositories import CollectionLogRepository, PriceDataRepository
from storage.tables import metadata


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="coin-collector", description="Bithumb coin data collector")
    p.add_argument("--log-level", default=None, help="Override LOG_LEVEL (DEBUG, INFO, ...)")
    sub = p.add_subparsers(dest="command", required=True)

    collect = sub.add_parser("collect", help="Start collecting coin data")
    collect.add_argument("-s", "--symbols", default=settings.collect_symbols,
                         help=f"Comma-separated symbols (default: {settings.collect_symbols})")
    collect.add_argument("-i", "--interval", type=int, default=settings.collect_interval,
                         help=f"Collection interval in ms (default: {settings.collect_interval})")
    collect.add_argument("-d", "--daemon", action="store_true",
                         help="Run as a service with the HTTP status API")
    collect.add_argument("--once", action="store_true", help="Collect every ticker once and exit")

    status = sub.add_parser("status", help="Show collector health and statistics")
    status.add_argument("--server", default=None,
                        help="Query a running daemon instead (e.g., http://localhost:8000)")

    logs = sub.add_parser("logs", help="Show collection logs")
    logs.add_argument("-l", "--limit", type=int, default=20, help="Number of entries (default: 20)")
    logs.add_argument("-e", "--errors", action="store_true", help="Only error entries")
    logs.add_argument("-s", "--symbol", default=None, help="Only entries for this symbol")

    data = sub.add_parser("data", help="Show collected price data")
    data.add_argument("-s", "--symbol", default="BTC", help="Symbol (default: BTC)")
    data.add_argument("-l", "--limit", type=int, default=10, help="Number of observations (default: 10)")

    test_api = sub.add_parser("test-api", help="Test the Bithumb API connection")
    test_api.add_argument("-s", "--symbol", default="BTC", help="Symbol to fetch (default: BTC)")

    sub.add_parser("db-test", help="Test the database connection")
    sub.add_parser("db-setup", help="Create tables and seed coin reference data")

    return p.parse_args(argv)


# ============================================
# Helpers
# ============================================

def format_number(value: Optional[float]) -> str:
    if value is None:
        return "-"
    return f"{value:,.8f}".rstrip("0").rstrip(".")


async def open_database() -> Database:
    """
    Initialize the database and verify the connection.

    Raises:
        StorageError: If the database cannot be reached
    """
    database = Database()
    try:
        await database.initialize()
        await database.test_connection()
    except StorageError:
        await database.close()
        raise
    return database


def print_health(report: HealthReport) -> None:
    print("\n=== Bithumb Coin Collector Status ===")
    print(f"API:        {'✓ OK' if report.api_reachable else '✗ unreachable'}")
    print(f"Database:   {'✓ OK' if report.database_reachable else '✗ unreachable'}")
    print(f"Collector:  {'✓ running' if report.scheduler_running else '✗ stopped'}")
    if report.stats:
        stats = report.stats
        print(f"Symbols:    {', '.join(stats.active_symbols) or 'none'}")
        print(f"Attempts:   {stats.total_collections}")
        print(f"Success:    {stats.success_rate}%")
        print(f"Uptime:     {stats.uptime_ms // 1000}s")
        print(f"Last run:   {stats.last_collection_time or 'never'}")
    if report.error:
        print(f"Error:      {report.error}")
    print()


# ============================================
# Commands
# ============================================

async def cmd_collect(args: argparse.Namespace) -> int:
    symbols = parse_symbols(args.symbols)
    if not symbols:
        print("[Error] No symbols given")
        return 1

    logger.info("Checking database connection...")
    try:
        database = await open_database()
    except StorageError as e:
        logger.critical(f"Database connection failed: {e}")
        return 1
    logger.info("Database connection OK")

    client = BithumbAPIClient()
    collector = DataCollector(client, database)

    try:
        async with client:
            if args.once:
                results = await collector.collect_all_once()
                failed = [r for r in results if r.status == CollectionStatus.ERROR]
                print(f"[OK] Collected {len(results) - len(failed)} of {len(results)} tickers")
                for outcome in failed:
                    print(f"  ✗ {outcome.symbol}: {outcome.error}")
                return 0

            collector.install_signal_handlers()
            await collector.start(symbols, args.interval)
            await collector.wait_closed()
            return 0
    except ApiError as e:
        logger.error(f"Collection failed: {e}")
        return 1
    finally:
        await database.close()


def run_daemon(symbols: List[str], interval_ms: int) -> int:
    """Serve the status API with the collector running inside it."""
    import uvicorn

    settings.collect_symbols = ",".join(symbols)
    settings.collect_interval = interval_ms

    from app.main import app

    logger.info(f"Running as daemon on {settings.app_host}:{settings.app_port}")
    try:
        uvicorn.run(app, host=settings.app_host, port=settings.app_port, log_level=settings.log_level.lower())
    except SystemExit as e:
        return 1 if e.code else 0
    return 0


async def cmd_status(args: argparse.Namespace) -> int:
    if args.server:
        url = f"{args.server.rstrip('/')}/health"
        try:
            async with httpx.AsyncClient(timeout=10.0) as http:
                resp = await http.get(url)
                resp.raise_for_status()
                report = HealthReport.model_validate(resp.json())
        except (httpx.HTTPError, ValueError) as e:
            print(f"[Error] Could not query {url}: {e}")
            return 1
    else:
        database = Database()
        client = BithumbAPIClient()
        try:
            await database.initialize(create_tables=False)
            async with client:
                report = await HealthReporter(DataCollector(client, database)).health_check()
        except StorageError as e:
            print(f"[Error] {e}")
            return 1
        finally:
            await database.close()

    print_health(report)
    return 0 if report.healthy else 1


async def cmd_logs(args: argparse.Namespace) -> int:
    try:
        database = await open_database()
    except StorageError as e:
        logger.error(f"Database connection failed: {e}")
        return 1

    try:
        repo = CollectionLogRepository(database)
        if args.errors:
            entries = await repo.get_error_logs(symbol=args.symbol, limit=args.limit)
        else:
            entries = await repo.get_recent_logs(limit=args.limit, symbol=args.symbol)
    except StorageError as e:
        logger.error(f"Failed to read logs: {e}")
        return 1
    finally:
        await database.close()

    print("\n=== Collection Logs ===")
    for entry in entries:
        mark = "✓" if entry.is_success else "✗"
        print(f"{entry.collected_at} [{mark}] {entry.symbol}: {entry.message}")
        if entry.execution_time is not None:
            print(f"  execution time: {entry.execution_time}ms")
    print()
    return 0


async def cmd_data(args: argparse.Namespace) -> int:
    symbol = args.symbol.upper()
    try:
        database = await open_database()
    except StorageError as e:
        logger.error(f"Database connection failed: {e}")
        return 1

    try:
        observations = await PriceDataRepository(database).get_latest(symbol, args.limit)
    except StorageError as e:
        logger.error(f"Failed to read data: {e}")
        return 1
    finally:
        await database.close()

    print(f"\n=== {symbol} Recent Data ===")
    for obs in observations:
        print(f"{obs.collected_at}: ₩{format_number(obs.closing_price)} (volume: {format_number(obs.units_traded)})")
    print()
    return 0


async def cmd_test_api(args: argparse.Namespace) -> int:
    symbol = args.symbol.upper()
    print("Testing Bithumb API connection...")
    try:
        async with BithumbAPIClient() as client:
            obs = await client.get_ticker(symbol)
    except (ApiError, RuntimeError) as e:
        logger.error(f"API test failed: {e}")
        print("✗ API connection failed")
        return 1

    print("\n=== API Test Result ===")
    print(f"Symbol:  {obs.symbol}")
    print(f"Price:   ₩{format_number(obs.closing_price)}")
    print(f"Open:    ₩{format_number(obs.opening_price)}")
    print(f"High:    ₩{format_number(obs.max_price)}")
    print(f"Low:     ₩{format_number(obs.min_price)}")
    print(f"Volume:  {format_number(obs.units_traded)}")
    print("✓ API connection OK\n")
    return 0


async def cmd_db_test(args: argparse.Namespace) -> int:
    print("Testing database connection...")
    try:
        database = await open_database()
    except StorageError as e:
        logger.error(f"Database connection failed: {e}")
        print("✗ Database connection failed")
        return 1
    await database.close()
    print("✓ Database connection OK")
    return 0


async def cmd_db_setup(args: argparse.Namespace) -> int:
    try:
        database = await open_database()
        try:
            inserted = await database.seed_coins()
        finally:
            await database.close()
    except StorageError as e:
        logger.error(f"Database setup failed: {e}")
        print(f"✗ Database setup failed: {e}")
        return 1

    print("✓ Database setup complete")
    print(f"Tables: {', '.join(sorted(metadata.tables))}")
    print(f"Coins seeded: {inserted}")
    return 0


COMMANDS = {
    "collect": cmd_collect,
    "status": cmd_status,
    "logs": cmd_logs,
    "data": cmd_data,
    "test-api": cmd_test_api,
    "db-test": cmd_db_test,
    "db-setup": cmd_db_setup,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    if args.log_level:
        set_log_level(args.log_level)

    if args.command == "collect" and args.interval <= 0:
        print(f"[Error] Interval must be positive, got {args.interval}")
        return 1

    if args.command == "collect" and args.daemon and not args.once:
        return run_daemon(parse_symbols(args.symbols), args.interval)

    try:
        return asyncio.run(COMMANDS[args.command](args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
