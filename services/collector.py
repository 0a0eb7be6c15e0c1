"""
Bithumb Data Collector

Scheduled collection loop: polls the Bithumb ticker for each tracked symbol
on its own fixed-cadence timer, persists every observation, writes one
collection log entry per attempt and keeps running statistics.

Scheduling model:
    - One timer task per symbol. It spawns a tick at t0, t0 + interval,
      t0 + 2*interval, ... and never waits for a tick to finish, so a slow or
      hung fetch cannot delay the next tick or another symbol's schedule.
    - Ticks for the same symbol may overlap. Each tick is an independent task;
      statistics are plain counter increments done synchronously on the event
      loop, so overlapping ticks cannot corrupt them.
    - stop() cancels timers only. In-flight ticks run to completion and still
      write their log entry.

Failure model:
    Every failure inside a tick is contained: it becomes an "error" log entry
    and a failed-attempt increment. Nothing a tick raises can stop another
    symbol's timer or the process.
"""

import asyncio
import signal
import traceback
from typing import Dict, Iterable, List, Optional, Set

from core.config import settings
from core.logging import get_logger
from core.schemas import (
    CollectionLogEntry,
    CollectionOutcome,
    CollectionStatsSnapshot,
    CollectionStatus,
    PriceObservation,
)
from core.utils.time import current_utc_datetime, elapsed_ms, monotonic_ms
from exchanges.bithumb import BithumbAPIClient
from storage.database import Database
from storage.repositories import CollectionLogRepository, PriceDataRepository


class CollectionStatistics:
    """
    Process-wide collection counters, owned by DataCollector.

    Updated once at the end of every poll attempt; reset only by restarting
    the process.
    """

    def __init__(self) -> None:
        self.total_collections = 0
        self.successful_collections = 0
        self.failed_collections = 0
        self.last_collection_time = None
        self.start_time = current_utc_datetime()
        self._started_ms = monotonic_ms()

    def record(self, success: bool) -> None:
        """Count one finished attempt."""
        if success:
            self.successful_collections += 1
        else:
            self.failed_collections += 1
        self.total_collections += 1
        self.last_collection_time = current_utc_datetime()

    @property
    def success_rate(self) -> float:
        """Percentage of successful attempts (two decimals), 0 before the first attempt."""
        if self.total_collections == 0:
            return 0.0
        return round(self.successful_collections / self.total_collections * 100, 2)

    def snapshot(self, active_symbols: Iterable[str]) -> CollectionStatsSnapshot:
        return CollectionStatsSnapshot(
            total_collections=self.total_collections,
            successful_collections=self.successful_collections,
            failed_collections=self.failed_collections,
            success_rate=self.success_rate,
            last_collection_time=self.last_collection_time,
            start_time=self.start_time,
            uptime_ms=elapsed_ms(self._started_ms),
            active_symbols=list(active_symbols),
        )


class DataCollector:
    """
    Collection Scheduler

    Owns the registry of per-symbol timers, drives the
    fetch -> normalize -> persist -> log cycle and exposes statistics.

    Attributes:
        client: Bithumb API client used for every fetch
        database: Database the repositories write to
        prices: Repository for PriceObservation rows
        logs: Repository for CollectionLogEntry rows
        is_running: True between start() and a full stop()
        shutdown_grace_period: Seconds in-flight ticks get on graceful shutdown

    Example:
        >>> collector = DataCollector(client, database)
        >>> await collector.start(["BTC", "ETH"], interval_ms=60_000)
        >>> ...
        >>> collector.stop("BTC")       # ETH keeps running
        >>> await collector.graceful_shutdown()
    """

    def __init__(
        self,
        client: Optional[BithumbAPIClient] = None,
        database: Optional[Database] = None,
        price_repository: Optional[PriceDataRepository] = None,
        log_repository: Optional[CollectionLogRepository] = None,
        shutdown_grace_period: Optional[float] = None
    ):
        self.client = client or BithumbAPIClient()
        self.database = database or Database()
        self.prices = price_repository or PriceDataRepository(self.database)
        self.logs = log_repository or CollectionLogRepository(self.database)
        self.shutdown_grace_period = (
            settings.shutdown_grace_period if shutdown_grace_period is None else shutdown_grace_period
        )
        self.is_running = False
        self.logger = get_logger(__name__)

        self._stats = CollectionStatistics()
        self._timers: Dict[str, asyncio.Task] = {}
        self._inflight: Set[asyncio.Task] = set()
        self._closed = asyncio.Event()
        self._shutdown_task: Optional[asyncio.Task] = None

    # ============================================
    # Lifecycle
    # ============================================

    async def start(self, symbols: Iterable[str], interval_ms: Optional[int] = None) -> None:
        """
        Start one independent timer per symbol.

        Each symbol is collected immediately, then every interval_ms on a
        fixed cadence. Does nothing (besides a warning) if already running.

        Args:
            symbols: Symbols to poll (case-insensitive, duplicates ignored)
            interval_ms: Polling interval in milliseconds (default: settings.collect_interval)
        """
        if self.is_running:
            self.logger.warning("Data collection is already running")
            return

        if interval_ms is None:
            interval_ms = settings.collect_interval
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {interval_ms}")

        unique_symbols = list(dict.fromkeys(s.strip().upper() for s in symbols if s and s.strip()))

        self.is_running = True
        self._closed.clear()
        self._shutdown_task = None
        self.logger.info(f"Starting data collection: {', '.join(unique_symbols)} (interval: {interval_ms}ms)")

        for symbol in unique_symbols:
            self._start_symbol_collection(symbol, interval_ms)

    def _start_symbol_collection(self, symbol: str, interval_ms: int) -> None:
        previous = self._timers.pop(symbol, None)
        if previous is not None:
            previous.cancel()

        self._timers[symbol] = asyncio.create_task(
            self._run_timer(symbol, interval_ms),
            name=f"collector-timer:{symbol}"
        )
        self.logger.info(f"{symbol} collection scheduled (interval: {interval_ms}ms)")

    async def _run_timer(self, symbol: str, interval_ms: int) -> None:
        loop = asyncio.get_running_loop()
        interval = interval_ms / 1000
        next_tick = loop.time()

        while True:
            self._spawn_tick(symbol)
            next_tick += interval
            now = loop.time()
            # Loop was blocked for more than a whole interval: drop the missed ticks
            if next_tick < now - interval:
                next_tick = now
            await asyncio.sleep(max(0.0, next_tick - now))

    def _spawn_tick(self, symbol: str) -> None:
        task = asyncio.create_task(self._collect_tick(symbol), name=f"collector-tick:{symbol}")
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    def stop(self, symbol: Optional[str] = None) -> None:
        """
        Cancel timers.

        Args:
            symbol: Stop only this symbol's timer; if omitted, stop every timer
                    and mark the collector as not running

        In-flight ticks are not cancelled.
        """
        if symbol:
            symbol = symbol.strip().upper()
            task = self._timers.pop(symbol, None)
            if task is None:
                self.logger.warning(f"{symbol} is not being collected")
                return
            task.cancel()
            self.logger.info(f"{symbol} collection stopped")
            return

        for sym, task in self._timers.items():
            task.cancel()
            self.logger.info(f"{sym} collection stopped")
        self._timers.clear()
        self.is_running = False
        self.logger.info("All data collection stopped")

    def install_signal_handlers(self) -> None:
        """Run graceful_shutdown() on SIGINT / SIGTERM."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
            except (NotImplementedError, RuntimeError):
                # Windows event loops do not support add_signal_handler
                self.logger.warning(f"Cannot install handler for {sig.name}; use Ctrl+C")

    def _on_signal(self, sig: signal.Signals) -> None:
        self.logger.info(f"Received {sig.name}")
        if self._shutdown_task is None:
            self._shutdown_task = asyncio.create_task(self.graceful_shutdown())

    async def graceful_shutdown(self) -> None:
        """
        Stop every timer, give in-flight ticks up to shutdown_grace_period
        seconds to settle, then release wait_closed().

        Draining is advisory: ticks still running after the grace period are
        left alone.
        """
        self.logger.info("Shutting down data collector...")
        self.stop()

        pending = [task for task in self._inflight if not task.done()]
        if pending:
            self.logger.info(f"Waiting up to {self.shutdown_grace_period}s for {len(pending)} in-flight collection(s)")
            await asyncio.wait(pending, timeout=self.shutdown_grace_period)

        self._closed.set()
        self.logger.info("Data collector shut down")

    async def wait_closed(self) -> None:
        """Block until graceful_shutdown() has finished."""
        await self._closed.wait()

    @property
    def active_symbols(self) -> List[str]:
        return list(self._timers)

    @property
    def inflight_count(self) -> int:
        return sum(1 for task in self._inflight if not task.done())

    # ============================================
    # Collection
    # ============================================

    async def _collect_tick(self, symbol: str) -> None:
        """One scheduled attempt: collect, count, log. Never raises."""
        started = monotonic_ms()

        try:
            observation = await self.collect_price_data(symbol)
        except Exception as e:
            execution_time = elapsed_ms(started)
            self.logger.error(f"{symbol} collection failed: {e}")
            entry = CollectionLogEntry(
                symbol=symbol,
                status=CollectionStatus.ERROR,
                message=f"{symbol} collection failed: {e}",
                error_details=self._error_details(e),
                execution_time=execution_time,
            )
            success = False
        else:
            entry = CollectionLogEntry(
                symbol=symbol,
                status=CollectionStatus.SUCCESS,
                message=f"{symbol} collected (closing price: {observation.closing_price})",
                execution_time=elapsed_ms(started),
            )
            success = True

        self._stats.record(success)
        await self._write_log(entry)

    async def _write_log(self, entry: CollectionLogEntry) -> None:
        try:
            await self.logs.insert(entry)
        except Exception as e:
            self.logger.error(f"Failed to write {entry.status.value} log for {entry.symbol}: {e}")

    @staticmethod
    def _error_details(error: Exception) -> dict:
        return {
            "message": str(error),
            "type": type(error).__name__,
            "traceback": "".join(traceback.format_exception(type(error), error, error.__traceback__)),
        }

    async def collect_price_data(self, symbol: str) -> PriceObservation:
        """
        Fetch, normalize and store the ticker for one symbol.

        Returns:
            The stored observation

        Raises:
            ApiError: If the fetch failed after all retries
            StorageError: If the observation could not be stored
        """
        self.logger.debug(f"Collecting {symbol} price data")

        observation = await self.client.get_ticker(symbol)
        stored = await self.prices.insert(observation)

        self.logger.debug(f"{symbol} price data stored: ₩{stored.closing_price}")
        return stored

    async def collect_all_once(self) -> List[CollectionOutcome]:
        """
        Fetch every ticker in one batch call and store each one independently.

        A symbol that fails to normalize or persist is reported in the result
        and does not stop the rest of the batch.

        Returns:
            One CollectionOutcome per symbol in the response

        Raises:
            ApiError: If the batch fetch itself failed
        """
        self.logger.info("Starting one-shot collection of all tickers")
        data = await self.client.fetch_all_ticker_data()
        results: List[CollectionOutcome] = []

        for symbol, payload in self.client.iter_ticker_payloads(data):
            try:
                observation = self.client.parse_price_data(payload, symbol)
                await self.prices.insert(observation)
            except Exception as e:
                self.logger.error(f"{symbol} processing failed: {e}")
                results.append(CollectionOutcome(symbol=symbol, status=CollectionStatus.ERROR, error=str(e)))
            else:
                self.logger.debug(f"{symbol} stored: ₩{observation.closing_price}")
                results.append(
                    CollectionOutcome(symbol=symbol, status=CollectionStatus.SUCCESS, price=observation.closing_price)
                )

        succeeded = sum(1 for r in results if r.status == CollectionStatus.SUCCESS)
        self.logger.info(
            f"One-shot collection finished: {succeeded} succeeded, {len(results) - succeeded} failed"
        )
        return results

    # ============================================
    # Statistics
    # ============================================

    def get_stats(self) -> CollectionStatsSnapshot:
        """Snapshot of the running statistics and active symbols."""
        return self._stats.snapshot(self._timers)
